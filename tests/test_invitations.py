"""
Tests for project invitations.
"""
from datetime import datetime, timedelta

import pytest

from models import db, ProjectInvitation


def invite(owner, project_id, email):
    return owner.post(f"/api/projects/{project_id}/invite", json={"email": email})


def token_of(resp):
    return resp.get_json()["invitationUrl"].rsplit("/", 1)[1]


@pytest.fixture
def invited(project, login_as):
    owner, created = project
    guest = login_as("guest@example.com")
    resp = invite(owner, created["id"], "Guest@Example.com")
    assert resp.status_code == 201
    return owner, created, guest, token_of(resp)


def test_invitation_url_points_at_frontend(invited):
    owner, created, guest, token = invited
    assert len(token) == 64

    info = guest.get(f"/api/invite/{token}").get_json()
    assert info["email"] == "guest@example.com"
    assert info["project"]["id"] == created["id"]


def test_invitation_is_public(client, invited):
    _, _, _, token = invited
    assert client.get(f"/api/invite/{token}").status_code == 200
    assert client.get("/api/invite/unknown-token").status_code == 404


def test_accept_invitation_adds_member(invited):
    owner, created, guest, token = invited
    assert guest.get(f"/api/projects/{created['id']}").status_code == 404

    resp = guest.post(f"/api/invite/{token}/accept")
    assert resp.status_code == 200
    assert guest.get(f"/api/projects/{created['id']}").get_json()["myRole"] == "member"

    # single use
    assert guest.post(f"/api/invite/{token}/accept").status_code == 400


def test_accept_requires_matching_email(invited, login_as):
    _, _, _, token = invited
    someone = login_as("someone@example.com")
    assert someone.post(f"/api/invite/{token}/accept").status_code == 403


def test_decline_invitation(invited):
    owner, created, guest, token = invited
    assert guest.post(f"/api/invite/{token}/decline").status_code == 200
    assert guest.get(f"/api/invite/{token}").status_code == 400
    assert guest.get(f"/api/projects/{created['id']}").status_code == 404

    history = owner.get(f"/api/projects/{created['id']}/invitations/history").get_json()
    assert len(history["declined"]) == 1
    assert history["total"] == 1


def test_duplicate_pending_invitation(invited):
    owner, created, _, token = invited
    resp = invite(owner, created["id"], "guest@example.com")
    assert resp.status_code == 409
    assert resp.get_json()["type"] == "pending_invitation_exists"
    assert token_of(resp) == token


def test_expired_invitation_is_replaced(app, invited):
    owner, created, guest, token = invited
    with app.app_context():
        invitation = ProjectInvitation.query.filter_by(token=token).first()
        invitation.expires_at = datetime.utcnow() - timedelta(minutes=1)
        db.session.commit()

    assert guest.get(f"/api/invite/{token}").status_code == 400

    resp = invite(owner, created["id"], "guest@example.com")
    assert resp.status_code == 201
    assert token_of(resp) != token


def test_invite_rules(project, login_as):
    owner, created = project
    member = login_as("member@example.com")
    owner.post(f"/api/projects/{created['id']}/members", json={"userId": member.user["id"]})

    assert invite(owner, created["id"], "owner@example.com").status_code == 400
    assert invite(owner, created["id"], "member@example.com").status_code == 409
    assert invite(owner, created["id"], "not-an-email").status_code == 400
    # only the owner invites
    assert invite(member, created["id"], "new@example.com").status_code == 404


def test_pending_lists_and_revoke(invited):
    owner, created, guest, token = invited

    mine = guest.get("/api/user/invitations").get_json()
    assert [inv["token"] for inv in mine] == [token]

    pending = owner.get(f"/api/projects/{created['id']}/invitations").get_json()
    assert len(pending) == 1

    resp = owner.delete(f"/api/projects/{created['id']}/invitations/{pending[0]['id']}")
    assert resp.status_code == 200
    assert guest.get(f"/api/invite/{token}").status_code == 404


def test_accept_when_already_member_closes_invitation(invited):
    owner, created, guest, token = invited
    owner.post(f"/api/projects/{created['id']}/members", json={"userId": guest.user["id"]})

    resp = guest.post(f"/api/invite/{token}/accept")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "You are already a member of this project"

    history = owner.get(f"/api/projects/{created['id']}/invitations/history").get_json()
    assert len(history["accepted"]) == 1
    assert guest.get(f"/api/invite/{token}").status_code == 400


def test_accept_when_already_member_rolls_back_on_db_error(invited, monkeypatch):
    owner, created, guest, token = invited
    owner.post(f"/api/projects/{created['id']}/members", json={"userId": guest.user["id"]})

    def failing_commit():
        raise RuntimeError("database is locked")

    monkeypatch.setattr(db.session, "commit", failing_commit)
    resp = guest.post(f"/api/invite/{token}/accept")
    monkeypatch.undo()

    assert resp.status_code == 500
    assert guest.get(f"/api/invite/{token}").status_code == 200
