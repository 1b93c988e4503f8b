"""
Pytest configuration and shared fixtures.

Environment variables are set before any package import so the module
level app in main.py picks up test settings. Every test gets its own
context: a temporary SQLite file and an eager Celery queue.
"""

import os

import pytest

os.environ.setdefault("SECRET", "test-secret")
os.environ.setdefault("BROKER_URL", "memory://")
os.environ.setdefault("QUEUE_EAGER", "true")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Clear settings cache before any app imports to ensure test env vars are used
from open311_smssync.config import Settings, get_settings  # noqa: E402
get_settings.cache_clear()

from open311_smssync.context import SmsSyncContext  # noqa: E402
from open311_smssync.queueing import JobQueue  # noqa: E402
from open311_smssync.schemas import Message  # noqa: E402
from open311_smssync.storage import MessageStore  # noqa: E402
from open311_smssync.transport import SmsSync  # noqa: E402


TEST_SECRET = "test-secret"


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'smssync.db'}",
        BROKER_URL="memory://",
        QUEUE_EAGER=True,
        SECRET=TEST_SECRET,
        REPLY="Thank you for reporting",
        CONCURRENCY=4,
    )


@pytest.fixture
def store(settings):
    """Message store on a fresh database."""
    store = MessageStore(settings.DATABASE_URL)
    store.init_db()
    yield store
    store.engine.dispose()


@pytest.fixture
def job_queue(settings) -> JobQueue:
    return JobQueue.from_settings(settings)


@pytest.fixture
def ctx(settings, store, job_queue) -> SmsSyncContext:
    return SmsSyncContext(settings=settings, store=store, queue=job_queue)


@pytest.fixture
def transport(settings, store, job_queue) -> SmsSync:
    """Transport wired to the per-test store and queue, not started."""
    return SmsSync(settings=settings, store=store, queue=job_queue)


@pytest.fixture
def outbound(store, settings):
    """Factory persisting an outbound sms waiting for the device."""
    def create(to, body="Hello", transport=None, state=None):
        message, _ = store.create(
            Message.outbound(
                to=to,
                body=body,
                from_msisdn=settings.FROM,
                transport=transport or settings.TRANSPORT,
                queue_name=settings.QUEUE_NAME,
            )
        )
        if state is not None:
            message.state = state
            message = store.save(message)
        return message
    return create
