"""
Tests for projects, membership and access control.
"""


def test_create_and_list_projects(project):
    owner, created = project
    assert created["myRole"] == "owner"
    assert created["status"] == "pending"

    resp = owner.get("/api/projects")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["total"] == 1
    assert body["projects"][0]["id"] == created["id"]
    assert body["projects"][0]["taskCount"] == 0


def test_create_project_rejects_unknown_status(login_as):
    owner = login_as("owner@example.com")
    resp = owner.post("/api/projects", json={"title": "X", "status": "archived"})
    assert resp.status_code == 400
    assert "status" in resp.get_json()["details"]


def test_outsider_gets_not_found(project, login_as):
    owner, created = project
    outsider = login_as("outsider@example.com")

    resp = outsider.get(f"/api/projects/{created['id']}")
    assert resp.status_code == 404
    assert outsider.get("/api/projects").get_json()["total"] == 0


def test_add_member_grants_access(project, login_as):
    owner, created = project
    member = login_as("member@example.com")

    resp = owner.post(f"/api/projects/{created['id']}/members", json={"userId": member.user["id"]})
    assert resp.status_code == 201
    assert resp.get_json()["role"] == "member"

    resp = member.get(f"/api/projects/{created['id']}")
    assert resp.status_code == 200
    assert resp.get_json()["myRole"] == "member"

    listed = member.get("/api/projects").get_json()
    assert [p["id"] for p in listed["projects"]] == [created["id"]]


def test_add_member_errors(project, login_as):
    owner, created = project
    member = login_as("member@example.com")
    url = f"/api/projects/{created['id']}/members"

    assert owner.post(url, json={"userId": owner.user["id"]}).status_code == 400
    assert owner.post(url, json={"userId": 9999}).status_code == 404
    assert owner.post(url, json={"userId": member.user["id"]}).status_code == 201
    assert owner.post(url, json={"userId": member.user["id"]}).status_code == 409


def test_member_cannot_update_or_delete(project, login_as):
    owner, created = project
    member = login_as("member@example.com")
    owner.post(f"/api/projects/{created['id']}/members", json={"userId": member.user["id"]})

    assert member.put(f"/api/projects/{created['id']}", json={"title": "Mine"}).status_code == 403
    assert member.delete(f"/api/projects/{created['id']}").status_code == 403


def test_admin_can_update(project, login_as):
    owner, created = project
    admin = login_as("admin@example.com")
    owner.post(f"/api/projects/{created['id']}/members",
               json={"userId": admin.user["id"], "role": "admin"})

    resp = admin.patch(f"/api/projects/{created['id']}", json={"status": "in-progress"})
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "in-progress"


def test_member_role_change_and_removal(project, login_as):
    owner, created = project
    member = login_as("member@example.com")
    base = f"/api/projects/{created['id']}/members"
    owner.post(base, json={"userId": member.user["id"]})

    resp = owner.patch(f"{base}/{member.user['id']}", json={"role": "admin"})
    assert resp.status_code == 200
    assert resp.get_json()["role"] == "admin"

    # a member can leave on their own
    assert member.delete(f"{base}/{member.user['id']}").status_code == 204
    assert member.get(f"/api/projects/{created['id']}").status_code == 404


def test_delete_project_removes_tasks(project):
    owner, created = project
    task = owner.post(f"/api/tasks/project/{created['id']}", json={"title": "T"}).get_json()

    assert owner.delete(f"/api/projects/{created['id']}").status_code == 200
    assert owner.get(f"/api/projects/{created['id']}").status_code == 404
    assert owner.delete(f"/api/tasks/{task['id']}").status_code == 404


def test_project_stats(project):
    owner, created = project
    base = f"/api/tasks/project/{created['id']}"
    owner.post(base, json={"title": "a"})
    owner.post(base, json={"title": "b", "status": "done"})
    owner.post(base, json={"title": "c", "status": "done", "dueDate": "2000-01-01T00:00:00"})
    owner.post(base, json={"title": "d", "dueDate": "2000-01-01T00:00:00"})

    stats = owner.get(f"/api/projects/{created['id']}/stats").get_json()
    assert stats["tasks"]["total"] == 4
    assert stats["tasks"]["to-do"] == 2
    assert stats["tasks"]["done"] == 2
    assert stats["tasks"]["overdue"] == 1
    assert stats["completionRate"] == 50.0
