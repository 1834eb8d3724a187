"""Shared pytest fixtures for backbone-relay tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from backbone_relay.observability.correlation import correlation_id_var  # noqa: E402

from helpers import RelayHarness  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_relay_env(monkeypatch):
    """Keep process env from leaking deployment config into tests."""
    for name in (
        "APP_ROLE",
        "TASKS_OIDC_AUDIENCE",
        "TASKS_OIDC_SERVICE_ACCOUNT",
        "INTERNAL_TASK_SECRET",
        "TWILIO_ACCOUNT_SID",
        "TWILIO_AUTH_TOKEN",
        "TWILIO_WHATSAPP_NUMBER",
        "TWILIO_SANDBOX_JOIN_WORDS",
        "OPENAI_API_KEY",
        "LOG_HASH_SALT",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _reset_correlation_id():
    token = correlation_id_var.set("")
    yield
    correlation_id_var.reset(token)


@pytest.fixture
def harness():
    return RelayHarness()
