"""
Agileboard HTTP client.

Wraps the REST API with a requests.Session. The session's cookie jar holds
the login cookies, so the session object is the auth context: pass it in
explicitly to share a login between clients.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from enums import TaskStatus, TaskPriority

logger = logging.getLogger(__name__)

UNSAFE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


class ApiError(Exception):
    """Any failed API call. status_code is 0 when the request never got a response."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message

    def __repr__(self):
        return f"ApiError({self.status_code}, {self.message!r})"


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@dataclass
class UserSummary:
    id: int
    email: str
    name: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "UserSummary":
        return cls(id=data["id"], email=data["email"], name=data.get("name"))

    @property
    def display_name(self) -> str:
        return self.name or self.email


@dataclass
class TaskRecord:
    """Client-side copy of a task row."""
    id: int
    title: str
    status: TaskStatus
    priority: TaskPriority
    project_id: int
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    assigned_to_id: Optional[int] = None
    assigned_to: Optional[UserSummary] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "TaskRecord":
        """Raises ValueError on an unknown status or priority."""
        assigned_to = data.get("assignedTo")
        return cls(
            id=data["id"],
            title=data["title"],
            status=TaskStatus.parse(data["status"]),
            priority=TaskPriority.parse(data["priority"]),
            project_id=data["projectId"],
            description=data.get("description"),
            due_date=_parse_datetime(data.get("dueDate")),
            created_at=_parse_datetime(data.get("createdAt")),
            updated_at=_parse_datetime(data.get("updatedAt")),
            assigned_to_id=data.get("assignedToId"),
            assigned_to=UserSummary.from_json(assigned_to) if assigned_to else None,
        )


@dataclass
class ProjectRecord:
    id: int
    title: str
    status: str
    priority: str
    owner_id: int
    description: Optional[str] = None
    my_role: Optional[str] = None
    task_count: int = 0
    member_count: int = 0
    members: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "ProjectRecord":
        return cls(
            id=data["id"],
            title=data["title"],
            status=data["status"],
            priority=data["priority"],
            owner_id=data["ownerId"],
            description=data.get("description"),
            my_role=data.get("myRole"),
            task_count=data.get("taskCount", 0),
            member_count=data.get("memberCount", 0),
            members=data.get("members", []),
        )


def task_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map snake_case task fields to the API's JSON body."""
    keys = {
        "title": "title",
        "description": "description",
        "status": "status",
        "priority": "priority",
        "due_date": "dueDate",
        "assigned_to_id": "assignedToId",
    }
    body = {}
    for key, value in data.items():
        if key not in keys:
            raise ValueError(f"Unknown task field: {key}")
        if key == "status" and value is not None:
            value = TaskStatus.parse(value).value
        elif key == "priority" and value is not None:
            value = TaskPriority.parse(value).value
        elif key == "due_date" and isinstance(value, datetime):
            # naive datetimes are UTC, same as on the server
            if value.tzinfo is None:
                value = value.replace(tzinfo=timezone.utc)
            value = value.isoformat()
        body[keys[key]] = value
    return body


class AgileboardClient:
    """HTTP client for the Agileboard API."""

    def __init__(self, base_url: str = "http://localhost:4000",
                 session: Optional[requests.Session] = None, timeout: float = 10):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout

    # ── transport ───────────────────────────────────

    def _request(self, method: str, path: str, json: Any = None,
                 params: Optional[Dict[str, Any]] = None) -> Any:
        headers = {}
        csrf = self.session.cookies.get("csrf_access_token")
        if csrf and method in UNSAFE_METHODS:
            headers["X-CSRF-TOKEN"] = csrf

        try:
            r = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise ApiError(0, str(e)) from e

        if not r.ok:
            raise ApiError(r.status_code, self._error_message(r))

        if r.status_code == 204 or not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            logger.warning("%s %s returned a non-JSON body: %s", method, path, e)
            raise ApiError(r.status_code, "Invalid JSON response") from e

    @staticmethod
    def _error_message(r: requests.Response) -> str:
        try:
            body = r.json()
        except ValueError:
            return r.reason or f"HTTP {r.status_code}"
        if isinstance(body, dict):
            return body.get("error") or body.get("message") or f"HTTP {r.status_code}"
        return f"HTTP {r.status_code}"

    # ── auth ────────────────────────────────────────

    def register(self, email: str, password: str, name: Optional[str] = None) -> UserSummary:
        body = {"email": email, "password": password}
        if name is not None:
            body["name"] = name
        data = self._request("POST", "/api/auth/register", json=body)
        return UserSummary.from_json(data["user"])

    def login(self, email: str, password: str) -> UserSummary:
        data = self._request("POST", "/api/auth/login", json={"email": email, "password": password})
        return UserSummary.from_json(data["user"])

    def logout(self) -> None:
        self._request("POST", "/api/auth/logout")

    def me(self) -> UserSummary:
        return UserSummary.from_json(self._request("GET", "/api/auth/me"))

    # ── projects ────────────────────────────────────

    def list_projects(self) -> List[ProjectRecord]:
        data = self._request("GET", "/api/projects")
        return [ProjectRecord.from_json(p) for p in data["projects"]]

    def create_project(self, title: str, description: Optional[str] = None) -> ProjectRecord:
        body = {"title": title}
        if description is not None:
            body["description"] = description
        return ProjectRecord.from_json(self._request("POST", "/api/projects", json=body))

    def get_project(self, project_id: int) -> ProjectRecord:
        return ProjectRecord.from_json(self._request("GET", f"/api/projects/{project_id}"))

    def add_member(self, project_id: int, user_id: int, role: str = "member") -> Dict[str, Any]:
        return self._request("POST", f"/api/projects/{project_id}/members",
                             json={"userId": user_id, "role": role})

    # ── tasks ───────────────────────────────────────

    def get_project_tasks(self, project_id: int) -> List[TaskRecord]:
        data = self._request("GET", f"/api/tasks/project/{project_id}")
        return [TaskRecord.from_json(t) for t in data]

    def create_task(self, project_id: int, **fields) -> TaskRecord:
        data = self._request("POST", f"/api/tasks/project/{project_id}", json=task_payload(fields))
        return TaskRecord.from_json(data)

    def update_task(self, task_id: int, **fields) -> TaskRecord:
        data = self._request("PUT", f"/api/tasks/{task_id}", json=task_payload(fields))
        return TaskRecord.from_json(data)

    def update_task_status(self, task_id: int, status: TaskStatus) -> TaskRecord:
        status = TaskStatus.parse(status)
        data = self._request("PATCH", f"/api/tasks/{task_id}/status", json={"status": status.value})
        return TaskRecord.from_json(data)

    def delete_task(self, task_id: int) -> None:
        self._request("DELETE", f"/api/tasks/{task_id}")

    # ── invitations ─────────────────────────────────

    def invite(self, project_id: int, email: str) -> Dict[str, Any]:
        return self._request("POST", f"/api/projects/{project_id}/invite", json={"email": email})

    def get_invitation(self, token: str) -> Dict[str, Any]:
        return self._request("GET", f"/api/invite/{token}")

    def accept_invitation(self, token: str) -> Dict[str, Any]:
        return self._request("POST", f"/api/invite/{token}/accept")

    def decline_invitation(self, token: str) -> Dict[str, Any]:
        return self._request("POST", f"/api/invite/{token}/decline")

    def my_invitations(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/api/user/invitations")
