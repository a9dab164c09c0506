"""
Tests for the task endpoints.
"""
import pytest


@pytest.fixture
def tasks_url(project):
    owner, created = project
    return f"/api/tasks/project/{created['id']}"


def test_create_task_defaults(project, tasks_url):
    owner, created = project
    resp = owner.post(tasks_url, json={"title": "Write docs"})
    assert resp.status_code == 201
    task = resp.get_json()
    assert task["status"] == "to-do"
    assert task["priority"] == "medium"
    assert task["projectId"] == created["id"]
    assert task["assignedTo"] is None


def test_create_task_requires_title(project, tasks_url):
    owner, _ = project
    resp = owner.post(tasks_url, json={"description": "no title"})
    assert resp.status_code == 400
    assert "title" in resp.get_json()["details"]


@pytest.mark.parametrize("field,value", [
    ("status", "blocked"),
    ("status", "Done"),
    ("priority", "critical"),
])
def test_create_task_rejects_unknown_values(project, tasks_url, field, value):
    owner, _ = project
    resp = owner.post(tasks_url, json={"title": "x", field: value})
    assert resp.status_code == 400
    assert field in resp.get_json()["details"]


def test_list_tasks_in_board_order(project, tasks_url):
    owner, _ = project
    for title, status in [("a", "done"), ("b", "to-do"), ("c", "in-progress"), ("d", "to-do")]:
        owner.post(tasks_url, json={"title": title, "status": status})

    tasks = owner.get(tasks_url).get_json()
    assert [t["status"] for t in tasks] == ["to-do", "to-do", "in-progress", "done"]
    # newest first inside a column
    assert [t["title"] for t in tasks[:2]] == ["d", "b"]


def test_list_tasks_filters(project, tasks_url):
    owner, _ = project
    owner.post(tasks_url, json={"title": "a", "priority": "high"})
    owner.post(tasks_url, json={"title": "b", "status": "done"})

    assert [t["title"] for t in owner.get(f"{tasks_url}?status=done").get_json()] == ["b"]
    assert [t["title"] for t in owner.get(f"{tasks_url}?priority=high").get_json()] == ["a"]
    assert owner.get(f"{tasks_url}?status=bogus").status_code == 400


def test_update_status(project, tasks_url):
    owner, _ = project
    task = owner.post(tasks_url, json={"title": "Move me"}).get_json()

    resp = owner.patch(f"/api/tasks/{task['id']}/status", json={"status": "in-progress"})
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "in-progress"
    assert owner.get(tasks_url).get_json()[0]["status"] == "in-progress"


def test_update_status_rejects_unknown_status(project, tasks_url):
    owner, _ = project
    task = owner.post(tasks_url, json={"title": "Stay"}).get_json()

    resp = owner.patch(f"/api/tasks/{task['id']}/status", json={"status": "archived"})
    assert resp.status_code == 400
    assert owner.get(tasks_url).get_json()[0]["status"] == "to-do"

    resp = owner.patch(f"/api/tasks/{task['id']}/status", json={})
    assert resp.status_code == 400


def test_update_status_unknown_task(project):
    owner, _ = project
    resp = owner.patch("/api/tasks/9999/status", json={"status": "done"})
    assert resp.status_code == 404


def test_outsider_cannot_touch_task(project, tasks_url, login_as):
    owner, _ = project
    task = owner.post(tasks_url, json={"title": "Private"}).get_json()
    outsider = login_as("outsider@example.com")

    assert outsider.get(tasks_url).status_code == 404
    assert outsider.post(tasks_url, json={"title": "x"}).status_code == 404
    assert outsider.patch(f"/api/tasks/{task['id']}/status", json={"status": "done"}).status_code == 404
    assert outsider.put(f"/api/tasks/{task['id']}", json={"title": "mine"}).status_code == 404
    assert outsider.delete(f"/api/tasks/{task['id']}").status_code == 404


def test_requires_login(client, project, tasks_url):
    assert client.get(tasks_url).status_code == 401


def test_update_task_fields(project, tasks_url, login_as):
    owner, created = project
    member = login_as("member@example.com", name="Mia")
    owner.post(f"/api/projects/{created['id']}/members", json={"userId": member.user["id"]})
    task = owner.post(tasks_url, json={"title": "Old"}).get_json()

    resp = owner.put(f"/api/tasks/{task['id']}", json={
        "title": "New",
        "priority": "urgent",
        "dueDate": "2030-06-01T09:30:00+02:00",
        "assignedToId": member.user["id"],
    })
    assert resp.status_code == 200
    updated = resp.get_json()
    assert updated["title"] == "New"
    assert updated["priority"] == "urgent"
    assert updated["dueDate"] == "2030-06-01T07:30:00+00:00"
    assert updated["assignedTo"]["name"] == "Mia"

    # members can work on the project's tasks too
    resp = member.patch(f"/api/tasks/{task['id']}/status", json={"status": "done"})
    assert resp.status_code == 200


def test_assignee_must_be_participant(project, tasks_url, login_as):
    owner, _ = project
    stranger = login_as("stranger@example.com")
    resp = owner.post(tasks_url, json={"title": "x", "assignedToId": stranger.user["id"]})
    assert resp.status_code == 400


def test_delete_task(project, tasks_url):
    owner, _ = project
    task = owner.post(tasks_url, json={"title": "Gone"}).get_json()

    assert owner.delete(f"/api/tasks/{task['id']}").status_code == 200
    assert owner.get(tasks_url).get_json() == []
    assert owner.delete(f"/api/tasks/{task['id']}").status_code == 404
