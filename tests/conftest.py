"""
Shared fixtures: an app on in-memory SQLite, per-user Flask test clients,
and AgileboardClient instances routed into the app through a requests adapter.
"""
from urllib.parse import urlsplit

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from app import create_app
from client import AgileboardClient
from config import TestingConfig
from models import db

BASE_URL = "http://agileboard.test"
PASSWORD = "password123"


class FlaskTestAdapter(BaseAdapter):
    """requests transport that answers from a Flask test client."""

    def __init__(self, flask_client):
        super().__init__()
        self.flask_client = flask_client

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        parts = urlsplit(request.url)
        path = parts.path + (f"?{parts.query}" if parts.query else "")

        # the Flask client keeps its own cookie jar
        headers = {k: v for k, v in request.headers.items() if k.lower() != "cookie"}

        resp = self.flask_client.open(
            path,
            method=request.method,
            data=request.body,
            headers=headers,
        )

        response = requests.Response()
        response.status_code = resp.status_code
        response.reason = resp.status.split(" ", 1)[1] if " " in resp.status else ""
        response._content = resp.get_data()
        response.headers = CaseInsensitiveDict(dict(resp.headers.items()))
        response.encoding = "utf-8"
        response.url = request.url
        response.request = request
        return response

    def close(self):
        pass


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login_as(app):
    """Register a user on a fresh test client and return the logged-in client."""
    def _login_as(email, name=None):
        test_client = app.test_client()
        resp = test_client.post("/api/auth/register", json={
            "email": email,
            "password": PASSWORD,
            "name": name,
        })
        assert resp.status_code == 201, resp.get_json()
        test_client.user = resp.get_json()["user"]
        return test_client
    return _login_as


@pytest.fixture
def api_client(app):
    """AgileboardClient whose HTTP calls go to the test app."""
    def _api_client():
        session = requests.Session()
        session.mount(BASE_URL, FlaskTestAdapter(app.test_client()))
        return AgileboardClient(base_url=BASE_URL, session=session)
    return _api_client


@pytest.fixture
def project(login_as):
    """Owner client plus one of their projects."""
    owner = login_as("owner@example.com", name="Olivia Owner")
    resp = owner.post("/api/projects", json={"title": "Sprint board"})
    assert resp.status_code == 201, resp.get_json()
    return owner, resp.get_json()
