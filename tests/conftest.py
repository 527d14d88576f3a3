"""Shared fixtures: deterministic clock, manual timers and model factories."""

from typing import Callable, Dict, List, Tuple

import pytest

from privbatch.hashing import compute_commitment_hash
from privbatch.models import PoolKey, ReadinessSignal, SwapIntent

START_TIME = 1_700_000_000.0

USER = "0x" + "11" * 20
TOKEN_IN = "0x" + "22" * 20
TOKEN_OUT = "0x" + "33" * 20
RECIPIENT = "0x" + "44" * 20
HOOKS = "0x" + "55" * 20


class FakeClock:
    def __init__(self, now: float = START_TIME) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ManualTimerScheduler:
    """TimerScheduler driven by a FakeClock; timers fire only on advance()."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.timers: Dict[str, Tuple[float, Callable[[], None]]] = {}

    def schedule(self, key: str, delay: float, callback: Callable[[], None]) -> None:
        if key in self.timers:
            raise ValueError(f"Timer already active for {key}")
        self.timers[key] = (self.clock() + delay, callback)

    def cancel(self, key: str) -> bool:
        return self.timers.pop(key, None) is not None

    def is_active(self, key: str) -> bool:
        return key in self.timers

    def remaining(self, key: str) -> float:
        entry = self.timers.get(key)
        return max(0.0, entry[0] - self.clock()) if entry else 0.0

    def cancel_all(self) -> None:
        self.timers.clear()

    def advance(self, seconds: float) -> None:
        self.clock.advance(seconds)
        due = sorted(
            (deadline, key) for key, (deadline, _) in self.timers.items() if deadline <= self.clock()
        )
        for _, key in due:
            entry = self.timers.pop(key, None)
            if entry is not None:
                entry[1]()


class RecordingSleep:
    """Async sleep replacement that records delays and advances the clock."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        self.clock.advance(delay)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler(clock: FakeClock) -> ManualTimerScheduler:
    return ManualTimerScheduler(clock)


@pytest.fixture
def fake_sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def pool_key() -> PoolKey:
    return PoolKey(currency0=TOKEN_IN, currency1=TOKEN_OUT, fee=3000, tick_spacing=60, hooks=HOOKS)


@pytest.fixture
def make_intent(clock: FakeClock) -> Callable[..., SwapIntent]:
    def factory(**overrides) -> SwapIntent:
        fields = dict(
            user=USER,
            token_in=TOKEN_IN,
            token_out=TOKEN_OUT,
            amount_in=1_000_000,
            min_amount_out=990_000,
            recipient=RECIPIENT,
            nonce=1,
            deadline=int(clock()) + 3600,
        )
        fields.update(overrides)
        return SwapIntent(**fields)

    return factory


@pytest.fixture
def make_commitment(make_intent) -> Callable[..., Tuple[str, SwapIntent]]:
    """Returns (commitment_hash, intent) with a hash that matches the intent."""

    def factory(**overrides) -> Tuple[str, SwapIntent]:
        intent = make_intent(**overrides)
        return compute_commitment_hash(intent), intent

    return factory


@pytest.fixture
def make_signal(clock: FakeClock) -> Callable[..., ReadinessSignal]:
    def factory(agent_id: str, pool_id: str = "0xpool", pending: int = 1, **overrides) -> ReadinessSignal:
        fields = dict(
            agent_id=agent_id,
            pool_id=pool_id,
            ready=True,
            pending_commitments=pending,
            timestamp=clock(),
        )
        fields.update(overrides)
        return ReadinessSignal(**fields)

    return factory
