"""
Tests for token handling and the permission matrix.

Covers:
    - access token round trip → Actor
    - expired / wrong-type / wrong-secret tokens rejected
    - role → permission matrix
    - request timing headers
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from cleanops.services.jwt_service import (
    ALGORITHM,
    actor_from_claims,
    decode_access_token,
    generate_access_token,
)
from cleanops.services.permission import Actor, PermissionDenied, check_permission, has_permission


def _encode(app, **claims):
    now = datetime.now(timezone.utc)
    payload = {"sub": "u-1", "role": "supervisor", "org_id": 1, "type": "access",
               "iat": now, "exp": now + timedelta(hours=1)}
    payload.update(claims)
    return jwt.encode(payload, app.config["JWT_SECRET_KEY"], algorithm=ALGORITHM)


class TestTokens:
    def test_round_trip(self):
        token = generate_access_token("worker-7", "janitor", 3)
        actor = actor_from_claims(decode_access_token(token))
        assert actor == Actor(user_id="worker-7", role="janitor", org_id=3)

    def test_expired(self, app):
        token = _encode(app, exp=datetime.now(timezone.utc) - timedelta(seconds=5))
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_access_token(token)

    def test_refresh_token_rejected(self, app):
        with pytest.raises(jwt.InvalidTokenError):
            decode_access_token(_encode(app, type="refresh"))

    def test_wrong_secret(self):
        token = jwt.encode({"sub": "u", "type": "access"}, "some-other-secret-of-32-bytes!!!",
                           algorithm=ALGORITHM)
        with pytest.raises(jwt.InvalidTokenError):
            decode_access_token(token)

    @pytest.mark.parametrize("claims", [{"sub": ""}, {"role": "owner"}, {"org_id": "1"}])
    def test_bad_claims(self, app, claims):
        payload = decode_access_token(_encode(app, **claims))
        with pytest.raises(jwt.InvalidTokenError):
            actor_from_claims(payload)

    def test_expired_token_over_http(self, app, client, org):
        token = _encode(app, org_id=org.id, exp=datetime.now(timezone.utc) - timedelta(seconds=5))
        res = client.get("/api/v1/activities", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Token expired"


class TestPermissionMatrix:
    @pytest.mark.parametrize("role,action,allowed", [
        ("supervisor", "activity_publish", True),
        ("admin", "task_inspect", True),
        ("janitor", "task_inspect", False),
        ("client", "report_view", True),
        ("client", "activity_cancel", False),
        ("supervisor", "settings_update", False),
        ("admin", "settings_update", True),
        ("admin", "no_such_action", False),
    ])
    def test_matrix(self, role, action, allowed):
        assert has_permission(Actor("u", role, 1), action) is allowed

    def test_check_permission_raises(self):
        with pytest.raises(PermissionDenied) as exc_info:
            check_permission(Actor("u-9", "janitor", 1), "activity_close")
        assert exc_info.value.action == "activity_close"


class TestRequestHeaders:
    def test_request_id_echoed(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers
