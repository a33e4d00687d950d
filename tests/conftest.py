import asyncio
import inspect
import os
import sys
import tempfile
from pathlib import Path

# Environment must be in place before any communityhub import reads settings
_test_tmp_dir = tempfile.mkdtemp(prefix="communityhub_test_")
os.environ.setdefault("SECRETS_DIR", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("REDIS_URL", "")
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret-for-automation-only-0123456789")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret-for-automation-only-9876543210")
os.environ.setdefault("COOKIE_SECURE", "false")
os.environ.setdefault("LOG_DEV_MODE", "false")

import pytest  # noqa: E402
from argon2 import PasswordHasher as Argon2Hasher  # noqa: E402
from argon2 import Type  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from communityhub.app import create_app  # noqa: E402
from communityhub.config import Settings, reset_settings_cache  # noqa: E402
from communityhub.service.email import EmailNotifier  # noqa: E402
from communityhub.service.passwords import PasswordHasher  # noqa: E402
from communityhub.service.runtime import Runtime  # noqa: E402
from communityhub.storage.memory import MemoryCache, MemoryStore  # noqa: E402


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingNotifier(EmailNotifier):
    """Captures OTP deliveries instead of talking to SMTP."""

    def __init__(self, result: bool = True) -> None:
        super().__init__()
        self.sent: list[tuple[str, str]] = []
        self.result = result

    def send_otp(self, to_email: str, code: str, *, ttl_minutes: int = 10) -> bool:
        self.sent.append((to_email, code))
        return self.result


class FastHasher(PasswordHasher):
    """argon2id with minimal cost so test suites stay quick."""

    def __init__(self) -> None:
        self._hasher = Argon2Hasher(time_cost=1, memory_cost=8, parallelism=1, type=Type.ID)


def make_settings(**overrides) -> Settings:
    values = dict(
        access_token_secret="unit-access-secret-for-automation-only-0123456789",
        refresh_token_secret="unit-refresh-secret-for-automation-only-9876543210",
        use_memory_store=True,
        test_mode=True,
        redis_url="",
        cookie_secure=False,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture(autouse=True)
def _reset_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def hasher():
    return FastHasher()


@pytest.fixture
def runtime(settings, store, cache, notifier, hasher):
    return Runtime(settings, store, cache, notifier=notifier, hasher=hasher)


@pytest.fixture
def app(runtime):
    return create_app(runtime=runtime)


@pytest.fixture
def client(app):
    return TestClient(app)


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
