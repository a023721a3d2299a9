"""
Pytest configuration and shared fixtures.

Environment variables are set before any app imports so the module-level
application in whatsapp_relay.main is built against the in-memory store.
"""

import itertools
import os

os.environ.setdefault("DATABASE_URL", "memory://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient

# Clear settings cache before any app imports to ensure test env vars are used
from whatsapp_relay.config import Settings, get_settings
get_settings.cache_clear()

from whatsapp_relay.errors import PersistenceError, ProviderError
from whatsapp_relay.main import build_services, create_app
from whatsapp_relay.storage import InMemoryStore, SqlAlchemyStore

from tests.payloads import BUSINESS_ID, BUSINESS_PHONE


class FakeDispatcher:
    """Records every outbound send and hands out sequential provider ids."""

    def __init__(self):
        self.sent = []
        self.fail = False
        self.fail_for = set()
        self._ids = itertools.count(1)

    def _accept(self, method, to, **fields):
        if self.fail or to in self.fail_for:
            raise ProviderError("provider unavailable", status_code=503)
        message_id = f"wamid.out.{next(self._ids)}"
        self.sent.append({"method": method, "to": to, "message_id": message_id, **fields})
        return message_id

    def send(self, to, body):
        return self._accept("send", to, body=body)

    def send_with_context(self, to, body, in_reply_to):
        return self._accept("send_with_context", to, body=body, in_reply_to=in_reply_to)

    def send_interactive(self, to, interactive):
        return self._accept("send_interactive", to, interactive=interactive)

    def close(self):
        pass


class FlakyStore(InMemoryStore):
    """
    In-memory store whose operations can be made to fail.

    Add "<method>:<table>" to `failing`, e.g. "insert:messages".
    """

    def __init__(self):
        super().__init__()
        self.failing = set()

    def _check(self, operation, table):
        if f"{operation}:{table}" in self.failing:
            raise PersistenceError(f"{operation}:{table}", "store unreachable")

    def insert(self, table, record):
        self._check("insert", table)
        return super().insert(table, record)

    def upsert(self, table, record, conflict_key):
        self._check("upsert", table)
        return super().upsert(table, record, conflict_key)

    def update(self, table, patch, match):
        self._check("update", table)
        return super().update(table, patch, match)

    def select(self, table, *args, **kwargs):
        self._check("select", table)
        return super().select(table, *args, **kwargs)

    def increment_counter(self, table, key_field, key, counter_field):
        self._check("increment_counter", table)
        return super().increment_counter(table, key_field, key, counter_field)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        DATABASE_URL="memory://",
        LOG_LEVEL="WARNING",
        PHONE_NUMBER_ID=BUSINESS_ID,
        BUSINESS_PHONE_NUMBER=BUSINESS_PHONE,
        WEBHOOK_VERIFY_TOKEN="verify-me",
        APP_SECRET="",
        WELCOME_MESSAGE="Welcome to the shop!",
        CTA_BODY="Good to see you again.",
        CTA_DISPLAY_TEXT="Visit website",
        CTA_URL="https://shop.example.com",
        BROADCAST_DELAY_SECONDS=0.5,
    )


@pytest.fixture
def store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    """Each store backend in turn, with the schema applied."""
    if request.param == "memory":
        yield InMemoryStore()
        return
    sql_store = SqlAlchemyStore(f"sqlite:///{tmp_path / 'relay.db'}")
    sql_store.init_db()
    yield sql_store
    sql_store.close()


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def sleeps() -> list:
    """Delays requested by the broadcaster, instead of actually sleeping."""
    return []


@pytest.fixture
def services(settings, store, dispatcher, sleeps):
    return build_services(settings, store, dispatcher, broadcaster_sleep=sleeps.append)


@pytest.fixture
def client(settings, store, dispatcher, sleeps):
    """Test client over the in-memory store and the fake provider."""
    app = create_app(settings, store=store, dispatcher=dispatcher, broadcaster_sleep=sleeps.append)
    with TestClient(app) as test_client:
        yield test_client
