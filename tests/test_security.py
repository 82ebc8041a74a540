from __future__ import annotations

from datetime import UTC, datetime, timedelta

import jwt
import pytest
from fastapi.testclient import TestClient

from jobdesk.main import create_app
from jobdesk.security import JwtSecurityConfig, parse_and_validate_bearer_token, redact_sensitive

SECRET = "jwt_test_secret_for_jobdesk_suite_32b"


def _token(**overrides) -> str:
    now = datetime.now(UTC)
    claims = {
        "sub": "u_office",
        "name": "Olive Office",
        "role": "OFFICER",
        "department": "office",
        "exp": int((now + timedelta(minutes=5)).timestamp()),
        "iss": "test-issuer",
        "aud": "test-audience",
    }
    claims.update(overrides)
    return jwt.encode(claims, SECRET, algorithm="HS256")


def test_valid_token_yields_actor():
    cfg = JwtSecurityConfig.from_env()
    actor = parse_and_validate_bearer_token(authorization=f"Bearer {_token()}", cfg=cfg)
    assert actor.id == "u_office"
    assert actor.role == "OFFICER"
    assert actor.department == "OFFICE"


@pytest.mark.parametrize(
    "authorization",
    [
        None,
        "Token abc",
        "Bearer ",
        "Bearer a.b",
    ],
)
def test_malformed_authorization_is_rejected(authorization):
    from jobdesk.errors import ApiError

    with pytest.raises(ApiError) as exc:
        parse_and_validate_bearer_token(authorization=authorization, cfg=JwtSecurityConfig.from_env())
    assert exc.value.code == "AUTH_UNAUTHORIZED"
    assert exc.value.http_status == 401


def test_expired_wrong_audience_and_bad_signature_are_rejected():
    client = TestClient(create_app())
    expired = _token(exp=int((datetime.now(UTC) - timedelta(minutes=1)).timestamp()))
    wrong_aud = _token(aud="someone-else")
    forged = jwt.encode({"sub": "u_admin", "role": "ADMIN", "exp": 9999999999}, "x" * 40, algorithm="HS256")
    for token in (expired, wrong_aud, forged):
        resp = client.get("/api/v1/jobs", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "AUTH_UNAUTHORIZED"


def test_missing_token_is_unauthorized():
    client = TestClient(create_app())
    resp = client.get("/api/v1/jobs")
    assert resp.status_code == 401
    assert resp.headers.get("x-trace-id")


def test_header_actor_fallback_when_jwt_not_configured(monkeypatch):
    monkeypatch.delenv("JWT_SHARED_SECRET", raising=False)
    monkeypatch.delenv("JWT_ISSUER", raising=False)
    monkeypatch.delenv("JWT_AUDIENCE", raising=False)
    client = TestClient(create_app())

    resp = client.post(
        "/api/v1/jobs",
        json={"department": "OUTSOURCE", "customer": {"name": "Dev Customer"}},
        headers={"x-user-id": "u_dev", "x-user-role": "OFFICER", "x-user-department": "OFFICE"},
    )
    assert resp.status_code == 201
    assert resp.json()["data"]["createdById"] == "u_dev"

    anonymous = client.post("/api/v1/jobs", json={"department": "OUTSOURCE", "customer": {"name": "X"}})
    assert anonymous.status_code == 403


def test_redact_sensitive_masks_credentials():
    out = redact_sensitive({"Authorization": "Bearer abc", "x-trace-id": "t1", "nested": [{"password": "p"}]})
    assert out == {"Authorization": "***REDACTED***", "x-trace-id": "t1", "nested": [{"password": "***REDACTED***"}]}
