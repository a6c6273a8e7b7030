import pytest

from relay_registry.registry import RegistryService
from relay_registry.storage import MemoryStore


class FakeClock:
    """Settable wall clock in whole seconds."""

    def __init__(self, now: int = 1000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(clock):
    store = MemoryStore()
    store.initialize()
    return RegistryService(store, clock=clock)
