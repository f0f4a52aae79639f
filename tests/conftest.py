import asyncio
import inspect
import os
import sys
from pathlib import Path

# Configure the environment before any imports that might initialize runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-do-not-use-in-production")
# Sessions live in the in-process cache so tests never share state through Redis
os.environ["REDIS_URL"] = ""
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from tessera.config import Settings  # noqa: E402
from tessera.service.runtime import reset_runtime_for_tests  # noqa: E402
from tessera.service.sessions import SessionRegistry  # noqa: E402
from tessera.service.tokens import TokenCodec  # noqa: E402
from tessera.storage.memory import MemoryStore  # noqa: E402
from tessera.storage.redis_cache import MemoryCache  # noqa: E402


class RecordingMailer:
    """Mail collaborator double that records every reset code it is asked to send."""

    def __init__(self, result: bool = True, exc: Exception | None = None):
        self.result = result
        self.exc = exc
        self.sent: list[tuple[str, int, int]] = []

    def send_password_reset_code(self, to_email, code, expire_hours):
        if self.exc:
            raise self.exc
        self.sent.append((to_email, code, expire_hours))
        return self.result


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def settings():
    return Settings(
        secret_key="Test-Secret-Key_for-Automation-Only-987654321!",
        test_mode=True,
        use_memory_store=True,
        redis_url="",
    )


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def cache():
    return MemoryCache()


@pytest.fixture
def codec(settings):
    return TokenCodec(settings.secret_key)


@pytest.fixture
def registry(cache, codec, settings):
    return SessionRegistry(cache, codec, settings)


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def mailer_factory():
    return RecordingMailer


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
