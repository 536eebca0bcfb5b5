"""
HTTP tests: status code mapping, credentials from header or cookie,
logout, and partial results.
"""

import asyncio
import re

import pytest
from fastapi.testclient import TestClient

from tracker.api.app import create_app
from tracker.core.models import Role
from tracker.storage.base import Collections

from conftest import PASSWORD


@pytest.fixture
def client(settings, storage, email):
    with TestClient(create_app(settings, storage, email)) as client:
        yield client


def signup(client, email, username: str) -> dict:
    """Register, verify and log in through the API. Returns the login payload."""
    response = client.post("/auth/register", json={
        "username": username,
        "name": username.title(),
        "email": f"{username}@example.com",
        "password": PASSWORD,
    })
    assert response.status_code == 201

    token = re.search(r"token=([0-9a-f]+)", email.sent[-1]["text"]).group(1)
    assert client.post("/auth/verify-email", json={"token": token}).status_code == 201

    response = client.post("/auth/login", json={"email": f"{username}@example.com", "password": PASSWORD})
    assert response.status_code == 200
    client.cookies.clear()
    return response.json()["data"]


def bearer(login: dict) -> dict:
    return {"Authorization": f"Bearer {login['tokens']['access_token']}"}


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


# =============================================================================
# Authentication
# =============================================================================


class TestAuth:
    def test_me_with_bearer(self, client, email):
        login = signup(client, email, "alice")

        response = client.get("/auth/me", headers=bearer(login))

        assert response.status_code == 200
        assert response.json()["data"]["username"] == "alice"

    def test_me_with_cookie(self, client, email):
        signup(client, email, "alice")
        client.post("/auth/login", json={"email": "alice@example.com", "password": PASSWORD})

        response = client.get("/auth/me")

        assert response.status_code == 200
        assert response.json()["data"]["username"] == "alice"

    def test_missing_credential(self, client):
        response = client.get("/auth/me")

        assert response.status_code == 401
        assert response.json()["detail"]["kind"] == "missing_credential"

    def test_bad_credential(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer nonsense"})

        assert response.status_code == 401
        assert response.json()["detail"]["kind"] == "unauthenticated"

    def test_wrong_password(self, client, email):
        signup(client, email, "alice")
        response = client.post("/auth/login", json={"email": "alice@example.com", "password": "nope"})
        assert response.status_code == 401

    def test_duplicate_registration(self, client, email):
        signup(client, email, "alice")
        response = client.post("/auth/register", json={
            "username": "alice",
            "name": "Alice",
            "email": "other@example.com",
            "password": PASSWORD,
        })
        assert response.status_code == 409
        assert response.json()["detail"]["kind"] == "conflict"

    def test_invalid_username_rejected(self, client):
        response = client.post("/auth/register", json={
            "username": "no spaces!",
            "name": "X",
            "email": "x@example.com",
            "password": PASSWORD,
        })
        assert response.status_code == 422

    def test_refresh(self, client, email):
        login = signup(client, email, "alice")

        response = client.post("/auth/refresh", json={"refresh_token": login["tokens"]["refresh_token"]})

        assert response.status_code == 200
        access = response.json()["data"]["access_token"]
        assert client.get("/auth/me", headers={"Authorization": f"Bearer {access}"}).status_code == 200

    def test_refresh_without_token(self, client):
        response = client.post("/auth/refresh")
        assert response.status_code == 401
        assert response.json()["detail"]["kind"] == "missing_credential"

    def test_logout_revokes_both_tokens(self, client, email):
        login = signup(client, email, "alice")

        response = client.post(
            "/auth/logout",
            headers=bearer(login),
            json={"refresh_token": login["tokens"]["refresh_token"]},
        )

        assert response.status_code == 200
        assert client.get("/auth/me", headers=bearer(login)).status_code == 401
        refreshed = client.post("/auth/refresh", json={"refresh_token": login["tokens"]["refresh_token"]})
        assert refreshed.status_code == 401

    def test_logout_twice_is_harmless(self, client, email):
        login = signup(client, email, "alice")
        client.post("/auth/logout", headers=bearer(login))
        assert client.post("/auth/logout", headers=bearer(login)).status_code == 200

    def test_deleted_user_token_is_refused(self, client, email, storage):
        login = signup(client, email, "alice")
        asyncio.run(storage.metadata.delete(Collections.USERS, login["user"]["id"]))

        response = client.get("/auth/me", headers=bearer(login))

        assert response.status_code == 401


# =============================================================================
# Workflows
# =============================================================================


class TestWorkflowRoutes:
    def test_project_and_ticket_flow(self, client, email):
        owner = signup(client, email, "owner")
        alice = signup(client, email, "alice")

        project = client.post("/projects", headers=bearer(owner), json={"name": "Apollo"})
        assert project.status_code == 201
        project_id = project.json()["data"]["id"]

        added = client.post(
            f"/projects/{project_id}/members", headers=bearer(owner), json={"user_id": alice["user"]["id"]}
        )
        assert added.status_code == 200

        ticket = client.post(
            "/tickets", headers=bearer(alice), json={"project_id": project_id, "name": "Paint", "priority": "HIGH"}
        )
        assert ticket.status_code == 201
        ticket_id = ticket.json()["data"]["id"]
        assert ticket.json()["data"]["number"] == 1

        assigned = client.post(
            f"/tickets/{ticket_id}/assignees", headers=bearer(owner), json={"user_ids": [alice["user"]["id"]]}
        )
        assert assigned.json()["data"]["status"] == "ASSIGNED"

        listed = client.get(f"/projects/{project_id}/tickets?status=ASSIGNED", headers=bearer(alice))
        assert [t["id"] for t in listed.json()["data"]["items"]] == [ticket_id]

    def test_error_mapping(self, client, email):
        owner = signup(client, email, "owner")
        bob = signup(client, email, "bob")
        project_id = client.post("/projects", headers=bearer(owner), json={"name": "Apollo"}).json()["data"]["id"]

        forbidden = client.post("/tickets", headers=bearer(bob), json={"project_id": project_id, "name": "x"})
        assert forbidden.status_code == 403
        assert forbidden.json()["detail"]["kind"] == "forbidden"

        missing = client.get("/projects/999", headers=bearer(owner))
        assert missing.status_code == 404

        conflict = client.post("/projects", headers=bearer(owner), json={"name": "Apollo"})
        assert conflict.status_code == 409

        invalid = client.post(f"/projects/{project_id}/leave", headers=bearer(owner))
        assert invalid.status_code == 400
        assert invalid.json()["detail"]["kind"] == "invalid_operation"

        not_member = client.delete(f"/projects/{project_id}/members/{bob['user']['id']}", headers=bearer(owner))
        assert not_member.status_code == 400
        assert not_member.json()["detail"]["kind"] == "not_a_member"

    def test_notification_failure_is_partial(self, client, email):
        owner = signup(client, email, "owner")
        alice = signup(client, email, "alice")
        project_id = client.post("/projects", headers=bearer(owner), json={"name": "Apollo"}).json()["data"]["id"]
        email.fail = True

        response = client.post(
            f"/projects/{project_id}/members", headers=bearer(owner), json={"user_id": alice["user"]["id"]}
        )

        assert response.status_code == 500
        body = response.json()
        assert body["error"]["kind"] == "notification_failed"
        assert alice["user"]["id"] in body["data"]["member_ids"]

    def test_role_review_requires_admin(self, client, email, storage):
        alice = signup(client, email, "alice")
        admin = signup(client, email, "boss")
        asyncio.run(storage.metadata.update(
            Collections.USERS, admin["user"]["id"], updates={"role": Role.ADMIN.value}
        ))

        requested = client.post("/roles/requests", headers=bearer(alice), json={"role": "PROJECT_OWNER"})
        assert requested.status_code == 201
        request_id = requested.json()["data"]["id"]

        assert client.get("/roles/requests", headers=bearer(alice)).status_code == 403

        approved = client.post(f"/roles/requests/{request_id}/approve", headers=bearer(admin))
        assert approved.status_code == 200
        assert approved.json()["data"]["role"] == "PROJECT_OWNER"

    def test_lookup_routes(self, client, email, storage):
        owner = signup(client, email, "owner")
        admin = signup(client, email, "boss")
        asyncio.run(storage.metadata.update(
            Collections.USERS, admin["user"]["id"], updates={"role": Role.ADMIN.value}
        ))
        client.post("/projects", headers=bearer(owner), json={"name": "Apollo"})
        client.post("/projects", headers=bearer(owner), json={"name": "Gemini"})

        assert client.get("/projects/all", headers=bearer(owner)).status_code == 403
        found = client.get("/projects/all", headers=bearer(admin), params={"contains": "APOL"})
        assert found.status_code == 200
        assert [p["name"] for p in found.json()["data"]["items"]] == ["Apollo"]
        assert found.json()["data"]["next_cursor"] is None

        by_name = client.get("/projects/by-name/owner/Gemini", headers=bearer(owner))
        assert by_name.json()["data"]["name"] == "Gemini"

        user = client.get("/users/by-username/owner", headers=bearer(admin))
        assert user.json()["data"]["id"] == owner["user"]["id"]
        assert client.get("/users/by-username/nobody", headers=bearer(admin)).status_code == 404

        comments = client.get(f"/users/{owner['user']['id']}/comments", headers=bearer(owner))
        assert comments.json()["data"] == {"items": [], "next_cursor": None}

    def test_file_upload(self, client, email):
        owner = signup(client, email, "owner")
        project_id = client.post("/projects", headers=bearer(owner), json={"name": "Apollo"}).json()["data"]["id"]
        ticket_id = client.post(
            "/tickets", headers=bearer(owner), json={"project_id": project_id, "name": "Docs"}
        ).json()["data"]["id"]

        response = client.post(
            f"/tickets/{ticket_id}/files",
            headers=bearer(owner),
            files={"file": ("plan.txt", b"step one", "text/plain")},
        )

        assert response.status_code == 201
        assert response.json()["data"]["filename"] == "plan.txt"
        assert response.json()["data"]["size"] == 8
