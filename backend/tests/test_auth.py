"""Tests for the auth module: token creation, validation, and dev mode bypass."""

import pytest

from shipnotes.core.config import settings
from shipnotes.core.tokens import create_token, decode_token

from conftest import make_organization


class TestTokens:

    def test_create_and_decode(self):
        token = create_token("user-1", "test-secret", email="dana@example.com", name="Dana")
        payload = decode_token(token, "test-secret")
        assert payload is not None
        assert payload.sub == "user-1"
        assert payload.email == "dana@example.com"
        assert payload.name == "Dana"

    def test_wrong_secret_returns_none(self):
        token = create_token("user-1", "correct-secret")
        assert decode_token(token, "wrong-secret") is None

    def test_expired_token_returns_none(self):
        token = create_token("user-1", "secret", expires_hours=-1)
        assert decode_token(token, "secret") is None

    def test_malformed_token_returns_none(self):
        assert decode_token("not.a.token", "secret") is None
        assert decode_token("", "secret") is None

    def test_unsupported_algorithm(self):
        with pytest.raises(ValueError):
            create_token("user-1", "secret", algorithm="RS256")
        token = create_token("user-1", "secret")
        assert decode_token(token, "secret", algorithm="RS256") is None


class TestAuthDisabledMode:
    """When AUTH_ENABLED=false (default), every caller is an anonymous member."""

    def test_create_organization_without_token(self, client):
        resp = client.post("/api/organizations", json={"name": "Acme", "slug": "acme"})
        assert resp.status_code == 201
        assert resp.json()["slug"] == "acme"

    def test_any_organization_is_readable(self, client, db):
        org = make_organization(db, slug="other", owner_id="someone-else")
        resp = client.get(f"/api/organizations/{org.id}")
        assert resp.status_code == 200


@pytest.fixture()
def auth_enabled(monkeypatch):
    monkeypatch.setattr(settings, "auth_enabled", True)


def _bearer(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_token(user_id, settings.jwt_secret_key)}"}


class TestAuthEnabled:
    """Bearer tokens are required and membership is enforced per organization."""

    def test_missing_token_is_401(self, client, db, auth_enabled):
        org = make_organization(db)
        resp = client.get(f"/api/organizations/{org.id}")
        assert resp.status_code == 401
        assert resp.json()["code"] == "UNAUTHORIZED"

    def test_invalid_token_is_401(self, client, db, auth_enabled):
        org = make_organization(db)
        resp = client.get(f"/api/organizations/{org.id}", headers={"Authorization": "Bearer junk"})
        assert resp.status_code == 401

    def test_member_is_allowed(self, client, db, auth_enabled):
        org = make_organization(db, owner_id="user-1")
        resp = client.get(f"/api/organizations/{org.id}", headers=_bearer("user-1"))
        assert resp.status_code == 200

    def test_non_member_is_403(self, client, db, auth_enabled):
        org = make_organization(db, owner_id="user-1")
        resp = client.get(f"/api/organizations/{org.id}/triggers", headers=_bearer("intruder"))
        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"

    def test_creator_becomes_owner(self, client, db, auth_enabled):
        resp = client.post(
            "/api/organizations", json={"name": "Beta", "slug": "beta"}, headers=_bearer("user-9"),
        )
        assert resp.status_code == 201
        org_id = resp.json()["id"]

        assert client.get(f"/api/organizations/{org_id}", headers=_bearer("user-9")).status_code == 200
        assert client.get(f"/api/organizations/{org_id}", headers=_bearer("user-10")).status_code == 403

    def test_only_owner_can_delete(self, client, db, auth_enabled):
        org = make_organization(db, owner_id="user-1")
        make_organization(db, slug="beta", owner_id="user-2")
        from shipnotes.models.organization import Member
        db.add(Member(id="m-admin", organization_id=org.id, user_id="user-2", role="admin"))
        db.commit()

        resp = client.delete(f"/api/organizations/{org.id}", headers=_bearer("user-2"))
        assert resp.status_code == 403

        resp = client.delete(f"/api/organizations/{org.id}", headers=_bearer("user-1"))
        assert resp.status_code == 204
