import pytest

from mailroom import InMemoryNotificationLog, MailboxService
from mailroom.storage.memory import InMemoryStorage


class StepClock:
    """Deterministic nanosecond clock: every call is one tick later."""

    def __init__(self, start: int = 1_000, step: int = 1) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> int:
        self.now += self.step
        return self.now


@pytest.fixture(scope="module")
def anyio_backend():
    return "asyncio"


@pytest.fixture()
def clock() -> StepClock:
    return StepClock()


@pytest.fixture()
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture()
def notifications() -> InMemoryNotificationLog:
    return InMemoryNotificationLog()


@pytest.fixture()
def service(storage, notifications, clock) -> MailboxService:
    return MailboxService(storage=storage, notifications=notifications, clock=clock)
