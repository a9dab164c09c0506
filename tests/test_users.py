"""
Tests for profile and password endpoints.
"""
from conftest import PASSWORD


def test_get_and_update_profile(login_as):
    user = login_as("pat@example.com", name="Pat")
    assert user.get("/api/user/profile").get_json()["name"] == "Pat"

    resp = user.put("/api/user/profile", json={"name": "Patricia"})
    assert resp.status_code == 200
    assert resp.get_json()["user"]["name"] == "Patricia"


def test_update_profile_needs_a_field(login_as):
    user = login_as("pat@example.com")
    assert user.patch("/api/user/profile", json={}).status_code == 400


def test_update_profile_email_taken(login_as):
    login_as("taken@example.com")
    user = login_as("pat@example.com")
    assert user.put("/api/user/profile", json={"email": "taken@example.com"}).status_code == 409


def test_change_password(app, login_as):
    user = login_as("pat@example.com")

    resp = user.put("/api/user/password", json={"currentPassword": "wrong", "newPassword": "newpassword1"})
    assert resp.status_code == 401

    resp = user.put("/api/user/password", json={"currentPassword": PASSWORD, "newPassword": "newpassword1"})
    assert resp.status_code == 200

    fresh = app.test_client()
    resp = fresh.post("/api/auth/login", json={"email": "pat@example.com", "password": "newpassword1"})
    assert resp.status_code == 200


def test_user_directory(login_as):
    login_as("b@example.com", name="Bea")
    user = login_as("a@example.com", name="Abe")

    users = user.get("/api/user/all").get_json()
    assert [u["name"] for u in users] == ["Abe", "Bea"]
    assert set(users[0]) == {"id", "name", "email"}
