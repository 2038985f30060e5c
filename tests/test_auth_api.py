"""HTTP tests for email one-time-code sign-in."""

import asyncio
import uuid

import pytest
from sqlalchemy import select

from app.core.auth import decode_access_token
from app.core.config import settings
from app.core.database import async_session
from app.core.verification import VerificationCodeStore
from app.models.user import User
from shared_schemas.file_service import UserRole


def _request_code(client, email="carol@corp.example"):
    return client.post("/api/auth/request-code", json={"email": email})


def _verify(client, code, email="carol@corp.example"):
    return client.post("/api/auth/verify-code", json={"email": email, "code": code})


async def _find_user(email):
    async with async_session() as db:
        return await db.scalar(select(User).where(User.email == email))


def test_request_code_creates_user_and_sends_code(client, notifier):
    response = _request_code(client, "  Carol@Corp.Example ")

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert len(notifier.sent) == 1
    to_email, code = notifier.sent[0]
    assert to_email == "carol@corp.example"
    assert len(code) == 6 and code.isdigit()

    user = asyncio.run(_find_user("carol@corp.example"))
    assert user is not None
    assert user.role == UserRole.USER


def test_verify_code_issues_token(client, notifier):
    _request_code(client)
    _, code = notifier.sent[0]

    response = _verify(client, code)

    assert response.status_code == 200
    body = response.json()
    assert body["tokenType"] == "bearer"
    assert body["user"]["email"] == "carol@corp.example"
    principal = decode_access_token(body["accessToken"])
    assert principal.email == "carol@corp.example"


def test_code_works_once(client, notifier):
    _request_code(client)
    _, code = notifier.sent[0]

    assert _verify(client, code).status_code == 200
    response = _verify(client, code)

    assert response.status_code == 401
    assert response.json()["kind"] == "auth"


def test_wrong_code_is_rejected(client, notifier):
    _request_code(client)
    _, code = notifier.sent[0]
    wrong = "000000" if code != "000000" else "111111"

    assert _verify(client, wrong).status_code == 401
    # The real code still works after a wrong guess
    assert _verify(client, code).status_code == 200


def test_fourth_code_request_within_a_minute_is_rejected(client, notifier):
    for _ in range(3):
        assert _request_code(client).status_code == 200

    response = _request_code(client)

    assert response.status_code == 429
    assert response.json()["kind"] == "rate_limited"
    assert 0 < response.json()["reset"] <= 60
    assert response.headers["X-RateLimit-Limit"] == "3"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert 0 < int(response.headers["X-RateLimit-Reset"]) <= 60
    assert len(notifier.sent) == 3


def test_code_request_limit_is_per_email(client):
    for _ in range(3):
        _request_code(client, "carol@corp.example")

    assert _request_code(client, "carol@corp.example").status_code == 429
    assert _request_code(client, "dave@corp.example").status_code == 200


def test_disallowed_domain_is_forbidden(client, notifier, monkeypatch):
    monkeypatch.setattr(settings, "ALLOWED_EMAIL_DOMAINS", ["corp.example"])

    response = _request_code(client, "eve@elsewhere.example")

    assert response.status_code == 403
    assert notifier.sent == []
    assert _request_code(client, "carol@corp.example").status_code == 200


def test_malformed_email_is_client_input(client):
    response = _request_code(client, "not-an-email")

    assert response.status_code == 400
    assert response.json()["kind"] == "client_input"


def test_notifier_failure_is_internal_error(client, notifier):
    notifier.result = False

    response = _request_code(client)

    assert response.status_code == 500
    assert response.json()["kind"] == "internal"


@pytest.mark.asyncio
async def test_code_reissued_mid_verification_is_kept(fake_redis, monkeypatch):
    async def redis_factory():
        return fake_redis

    codes = VerificationCodeStore(redis_factory)
    issued = iter(["111111", "222222"])
    monkeypatch.setattr("app.core.verification.generate_code", lambda: next(issued))
    user_id = uuid.uuid4()
    await codes.issue("carol@corp.example", user_id)

    get = fake_redis.get

    async def get_then_reissue(key):
        raw = await get(key)
        await codes.issue("carol@corp.example", user_id)
        return raw

    fake_redis.get = get_then_reissue
    assert await codes.consume("carol@corp.example", "111111") is None

    fake_redis.get = get
    assert await codes.consume("carol@corp.example", "111111") is None
    assert await codes.consume("carol@corp.example", "222222") == user_id
    assert await codes.consume("carol@corp.example", "222222") is None
