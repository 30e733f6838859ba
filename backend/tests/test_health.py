"""Tests for /health and / endpoints."""


class TestHealth:

    def test_health_returns_200(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["db"] == "ok"
        assert "uptime_seconds" in data
        assert "version" in data

    def test_root_returns_api_info(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.json()["name"] == "Shipnotes API"


class TestResponseHeaders:

    def test_response_includes_middleware_headers(self, client):
        resp = client.get("/health")
        assert "x-request-id" in resp.headers
        assert "x-response-time" in resp.headers

    def test_incoming_request_id_is_echoed(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "req-abc123"})
        assert resp.headers["x-request-id"] == "req-abc123"


class TestErrorBodies:
    """Every error response carries ``error`` and ``code``."""

    def test_not_found_body(self, client):
        resp = client.get("/api/organizations/missing-org")
        assert resp.status_code == 404
        body = resp.json()
        assert body["error"] == "Organization not found"
        assert body["code"] == "NOT_FOUND"

    def test_request_validation_is_400_with_issues(self, client):
        resp = client.post("/api/organizations", json={"name": "Acme", "slug": "Not A Slug"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"]["issues"]
        assert any("slug" in issue["path"] for issue in body["details"]["issues"])
