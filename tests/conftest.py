"""Pytest configuration and shared fixtures."""

import asyncio
import os
import tempfile
import uuid
from hashlib import md5

# Settings are read at import time, so the environment must be ready first
_TEST_DIR = tempfile.mkdtemp(prefix="file-vault-tests-")
os.environ.setdefault("S3_ENDPOINT", "http://localhost:9000")
os.environ.setdefault("S3_ACCESS_KEY", "test-access-key")
os.environ.setdefault("S3_SECRET_KEY", "test-secret-key")
os.environ.setdefault("S3_BUCKET", "vault-test")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DIR}/vault.db")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-with-enough-length-for-hs256")
os.environ.setdefault("RATE_LIMIT_BACKEND", "local")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from app.core.auth import create_access_token  # noqa: E402
from app.core.database import async_session, engine  # noqa: E402
from app.core.errors import IncompletePartSet, UnknownUpload  # noqa: E402
from app.core.manager.session_registry import UploadSessionRegistry  # noqa: E402
from app.core.manager.upload_coordinator import UploadCoordinator, get_upload_coordinator  # noqa: E402
from app.core.rate_limit import LocalWindowStore, rate_limiter  # noqa: E402
from app.core.verification import VerificationCodeStore, get_verification_store  # noqa: E402
from app.clients.email_notifier import get_notifier  # noqa: E402
from app.main import app  # noqa: E402
from app.models.base import Base  # noqa: E402
from app.models.user import User  # noqa: E402
from app.models import file_record, upload_history  # noqa: E402, F401
from shared_schemas.file_service import UserRole  # noqa: E402


class FakeObjectStore:
    """In-memory stand-in for S3Client with the same async surface."""

    def __init__(self):
        self.objects = {}
        self.uploads = {}
        self.calls = []
        self.complete_error = None
        self.upload_part_errors = []
        self.delete_errors = {}

    async def create_multipart_upload(self, key, content_type, original_name=None):
        upload_id = f"upload-{uuid.uuid4().hex}"
        self.uploads[upload_id] = {"key": key, "parts": {}, "content_type": content_type}
        self.calls.append(("create", key))
        return upload_id

    async def upload_part(self, key, upload_id, part_number, body):
        self.calls.append(("upload_part", key, part_number))
        if self.upload_part_errors:
            raise self.upload_part_errors.pop(0)
        if upload_id not in self.uploads:
            raise UnknownUpload(f"Upload {upload_id} not found")
        self.uploads[upload_id]["parts"][part_number] = body
        return md5(body).hexdigest()

    async def complete_multipart_upload(self, key, upload_id, parts):
        parts = list(parts)
        self.calls.append(("complete", key, [n for n, _ in parts]))
        if self.complete_error is not None:
            raise self.complete_error
        upload = self.uploads.pop(upload_id, None)
        if upload is None:
            raise UnknownUpload(f"Upload {upload_id} not found")
        if any(n not in upload["parts"] for n, _ in parts):
            raise IncompletePartSet("missing part")
        self.objects[key] = b"".join(upload["parts"][n] for n, _ in sorted(parts))
        return f"http://store/{key}"

    async def abort_multipart_upload(self, key, upload_id):
        self.calls.append(("abort", key, upload_id))
        self.uploads.pop(upload_id, None)
        return True

    async def object_exists(self, key):
        return key in self.objects

    async def delete_object(self, key):
        self.calls.append(("delete", key))
        if key in self.delete_errors:
            raise self.delete_errors[key]
        self.objects.pop(key, None)

    def generate_presigned_url(self, key, expiration=3600, filename=None):
        return f"http://store/{key}?expires={expiration}"

    def count(self, name):
        return sum(1 for c in self.calls if c[0] == name)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the verification code store."""

    def __init__(self):
        self.data = {}

    async def set(self, key, value, ex=None):
        self.data[key] = value
        return True

    async def get(self, key):
        return self.data.get(key)

    def register_script(self, source):
        return FakeDeleteIfEquals(self)


class FakeDeleteIfEquals:
    """Stands in for the registered compare-and-delete script."""

    def __init__(self, redis):
        self.redis = redis

    async def __call__(self, keys=(), args=(), client=None):
        data = (client or self.redis).data
        if data.get(keys[0]) == args[0]:
            del data[keys[0]]
            return 1
        return 0


class RecordingNotifier:
    def __init__(self, result=True):
        self.result = result
        self.sent = []

    async def send_verification_code(self, to_email, code):
        self.sent.append((to_email, code))
        return self.result


async def _reset_schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def _create_user(email, role=UserRole.USER):
    async with async_session() as db:
        user = User(email=email, name=email.split("@")[0], role=role)
        db.add(user)
        await db.commit()
        return user


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email, user.role)}"}


@pytest.fixture(autouse=True)
def fresh_state():
    """Empty database and rate-limit windows for every test."""
    asyncio.run(_reset_schema())
    rate_limiter.store = LocalWindowStore()
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def registry(store):
    return UploadSessionRegistry(store)


@pytest.fixture
def coordinator(store, registry):
    return UploadCoordinator(store, registry)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def client(coordinator, fake_redis, notifier):
    """TestClient wired to the fake store, fake redis and recording notifier."""
    async def redis_factory():
        return fake_redis

    app.dependency_overrides[get_upload_coordinator] = lambda: coordinator
    app.dependency_overrides[get_verification_store] = lambda: VerificationCodeStore(redis_factory)
    app.dependency_overrides[get_notifier] = lambda: notifier
    return TestClient(app)


@pytest.fixture
def user():
    return asyncio.run(_create_user("alice@corp.example"))


@pytest.fixture
def other_user():
    return asyncio.run(_create_user("bob@corp.example"))


@pytest.fixture
def admin():
    return asyncio.run(_create_user("root@corp.example", role=UserRole.ADMIN))


@pytest.fixture
def make_user():
    """Async factory for users, for use inside async tests."""
    return _create_user


@pytest.fixture
def headers_for():
    """Bearer headers for a user row."""
    return auth_headers
