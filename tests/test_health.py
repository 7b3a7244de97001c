"""
tests/test_health.py -- Integration tests for GET /api/v1/health and the
app-wide guards around it.

Covers:
  - 200 response with status and version
  - No authentication required
  - Unknown Host headers rejected by TrustedHostMiddleware
"""

from __future__ import annotations

from api.main import VERSION


def test_health_returns_status_and_version(web_client):
    resp = web_client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": VERSION}


def test_health_does_not_touch_session(web_client):
    """An anonymous request that changes nothing must not create a session."""
    resp = web_client.get("/api/v1/health")
    assert "session_id" not in resp.headers.get("set-cookie", "")


def test_untrusted_host_rejected(web_client):
    resp = web_client.get("/api/v1/health", headers={"Host": "evil.example"})
    assert resp.status_code == 400
