"""Shared test fixtures for Thread Relay."""
import pytest

from channels.scripted_session import ScriptedSession
from core.queue_service import QueueService
from database.store_factory import reset_store
from database.store_file import FileQueueStore
from database.store_memory import InMemoryQueueStore
from job_queue.dispatcher import DispatchWorker
from models.schemas import MessageRecord


@pytest.fixture(autouse=True)
def _reset_singletons():
    reset_store()
    yield
    reset_store()


@pytest.fixture
def store() -> InMemoryQueueStore:
    return InMemoryQueueStore()


@pytest.fixture
def file_store(tmp_path) -> FileQueueStore:
    return FileQueueStore(path=str(tmp_path / "queue.json"))


@pytest.fixture
def session() -> ScriptedSession:
    return ScriptedSession()


@pytest.fixture
def service(store) -> QueueService:
    return QueueService(store)


@pytest.fixture
def worker(store, session) -> DispatchWorker:
    return DispatchWorker(store, session, poll_interval_s=0.01)


@pytest.fixture
def sample_message() -> MessageRecord:
    return MessageRecord(
        id="msg-001",
        thread_target="12345",
        text="hello",
        sender_name="Front desk",
    )
