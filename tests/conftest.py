import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Ensure project root on sys.path so 'app' package resolves when running via poetry
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from app import config  # type: ignore
from app.main import app  # type: ignore
from app.runtime import build_runtime
from app.services.two_factor import TwoFactorStore

from fakes import (
    INTERNAL_KEY,
    PAY_TO,
    FakeBrowser,
    FakeChain,
    FakeClock,
    RecordingWebhookDispatcher,
)


# ---------- Fixtures ----------

@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def two_factor():
    return TwoFactorStore()


@pytest.fixture()
def browser(two_factor):
    return FakeBrowser(two_factor)


@pytest.fixture()
def chain():
    return FakeChain()


@pytest.fixture()
def webhooks():
    return RecordingWebhookDispatcher()


@pytest.fixture()
def runtime(browser, chain, webhooks, two_factor, clock):
    return build_runtime(
        browser=browser,
        chain=chain,
        webhooks=webhooks,
        two_factor=two_factor,
        clock=clock,
        pay_to=PAY_TO,
    )


@pytest.fixture()
def internal_key(monkeypatch):
    monkeypatch.setattr(config, "INTERNAL_API_KEY", INTERNAL_KEY)
    return {"X-Internal-API-Key": INTERNAL_KEY}


@pytest.fixture()
def client(runtime, monkeypatch):
    """TestClient running the real lifespan around the fake-backed runtime."""
    monkeypatch.setattr(app.state, "runtime_factory", lambda: runtime)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def drain(client, runtime):
    """Block until both queues are idle (background jobs run on the client's loop)."""
    def _drain():
        client.portal.call(runtime.browser_queue.drain)
        client.portal.call(runtime.wallet_queue.drain)
    return _drain
