import asyncio
import base64
import inspect
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path

# Configure the environment before any import builds settings or the runtime
os.environ["TEST_MODE"] = "true"
os.environ["ALLOW_REDIS_FALLBACK_DEV"] = "true"
# Empty REDIS_URL keeps tests on the in-memory store
os.environ["REDIS_URL"] = ""
os.environ.pop("IDENTITY_URL", None)

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from authgate.service import runtime as runtime_module  # noqa: E402
from authgate.service.identity import VerificationError  # noqa: E402
from authgate.service.models import Claims, VerifiedIdentity  # noqa: E402
from authgate.service.runtime import Runtime, reset_runtime_for_tests  # noqa: E402
from authgate.storage.memory import MemoryCache  # noqa: E402


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode()


def build_token(sub: str = "user-1", exp: float | None = None, **claims) -> str:
    payload = {"sub": sub, **claims}
    if exp is not None:
        payload["exp"] = int(exp)
    return f"{_b64({'alg': 'HS256', 'typ': 'JWT'})}.{_b64(payload)}.c2lnbmF0dXJl"


class FakeVerifier:
    """Identity provider double: known tokens map to identities, others are rejected."""

    def __init__(self):
        self.identities: dict[str, VerifiedIdentity] = {}
        self.calls: list[str] = []
        self.closed = False

    def register(
        self,
        token: str,
        subject_id: str = "user-1",
        *,
        claims: Claims | None = None,
        banned_until: datetime | None = None,
        expires_at: datetime | None = None,
    ) -> VerifiedIdentity:
        identity = VerifiedIdentity(
            subject_id=subject_id,
            claims=claims or Claims(email=f"{subject_id}@example.com"),
            expires_at=expires_at,
            banned_until=banned_until,
        )
        self.identities[token] = identity
        return identity

    async def verify(self, token: str) -> VerifiedIdentity:
        self.calls.append(token)
        identity = self.identities.get(token)
        if identity is None:
            raise VerificationError("invalid JWT", status_code=401)
        return identity

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def make_token():
    return build_token


@pytest.fixture
def fake_verifier():
    return FakeVerifier()


@pytest.fixture
def memory_store():
    return MemoryCache()


@pytest.fixture
def utc_now():
    return lambda: datetime.now(timezone.utc)


@pytest.fixture
def installed_runtime(fake_verifier, memory_store):
    """Swap the process runtime for one wired to the fake identity provider."""
    runtime = Runtime(store=memory_store, verifier=fake_verifier)
    runtime_module.runtime = runtime
    return runtime


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
