"""
Shared fixtures for the PIN Vault test suite.

Time is fully simulated: ``clock`` is a fake millisecond clock and
``sleep`` records every requested delay and advances the clock instead
of waiting, so throttle, progressive delay, lockout and session expiry
are all deterministic.
"""
import pytest

from pin_vault.storage import MemoryStorage
from pin_vault.vault import PinGuard, SecretVault, SecurityConfig

START_MS = 1_700_000_000_000
TEST_HASH_ITERATIONS = 1_000


class FakeClock:
    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RecordingSleep:
    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: list[int] = []

    async def __call__(self, ms: int) -> None:
        self.calls.append(ms)
        self.clock.advance(ms)


class FailingStorage(MemoryStorage):
    """MemoryStorage that raises OSError for writes touching ``fail_keys``."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_keys: set[str] = set()

    async def set(self, items):
        if self.fail_keys.intersection(items):
            raise OSError("disk full")
        await super().set(items)

    async def remove(self, keys):
        keys = list(keys)
        if self.fail_keys.intersection(keys):
            raise OSError("disk full")
        await super().remove(keys)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep(clock):
    return RecordingSleep(clock)


@pytest.fixture
def storage():
    return FailingStorage()


@pytest.fixture
def config():
    return SecurityConfig()


@pytest.fixture
def make_guard(storage, clock, sleep):
    """Factory building guards over the shared storage, clock and sleep."""
    def _make(config=None, store=None):
        return PinGuard(
            store if store is not None else storage,
            config if config is not None else SecurityConfig(),
            clock=clock,
            sleep=sleep,
            hash_iterations=TEST_HASH_ITERATIONS,
        )
    return _make


@pytest.fixture
def guard(make_guard, config):
    return make_guard(config)


@pytest.fixture
def vault(guard):
    return SecretVault(guard)
