"""
Readiness Coordinator
Aggregates independent agents' readiness per pool and decides when a batch fires
"""
import logging
import math
import statistics
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

from .config import CoordinatorConfig
from .dispatch import DispatchReport, FanOutDispatcher
from .messages import AgentMessage, MessageTopic, signal_from_message
from .models import BatchParameters, ConflictStrategy, PoolStateSnapshot, ReadinessSignal
from .scheduler import AsyncioTimerScheduler, TimerScheduler

logger = logging.getLogger(__name__)

BatchReadyCallback = Callable[[str, BatchParameters], object]


def resolve_conflict(values: List[float], strategy: ConflictStrategy) -> float:
    """
    Combine numeric preferences with the given strategy

    Median of an even-length list is the mean of the two middle values.
    """
    if not values:
        return 0
    if strategy == ConflictStrategy.MEAN:
        return sum(values) / len(values)
    if strategy == ConflictStrategy.MIN:
        return min(values)
    if strategy == ConflictStrategy.MAX:
        return max(values)
    return statistics.median(values)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass
class PoolCoordinationState:
    """Coordination state of one pool; the countdown handle lives in the scheduler"""
    signals: Dict[str, ReadinessSignal] = field(default_factory=dict)  # agent_id -> signal
    last_batch_at: float = 0.0


class ReadinessCoordinator:
    """
    Decides when a pool's batch should fire

    Features:
    - Quorum on ready agents and on summed pending commitments
    - Countdown window for stragglers, immediate fire when everyone is ready
    - Median/mean/min/max resolution of slippage and deadline preferences
    - Stale signal pruning
    - Fire-then-reset, at most one fire per quorum episode
    """

    def __init__(
        self,
        config: Optional[CoordinatorConfig] = None,
        scheduler: Optional[TimerScheduler] = None,
        clock: Callable[[], float] = time.time
    ):
        self.config = config or CoordinatorConfig()
        self.scheduler = scheduler or AsyncioTimerScheduler()
        self.clock = clock
        self.pools: Dict[str, PoolCoordinationState] = {}
        self.registered_agents: Set[str] = set()
        self.dispatcher = FanOutDispatcher("coordinator")

    # Agent registration

    def register_agent(self, agent_id: str):
        """Register an agent that must be accounted for in "everyone is ready" checks"""
        self.registered_agents.add(agent_id)
        logger.info(f"Registered agent {agent_id} ({len(self.registered_agents)} total)")

    def unregister_agent(self, agent_id: str):
        """Unregister an agent and drop its signals from every pool"""
        self.registered_agents.discard(agent_id)
        for pool_id, state in self.pools.items():
            if state.signals.pop(agent_id, None) is not None:
                self._cancel_countdown_if_quorum_lost(pool_id, state)
        logger.info(f"Unregistered agent {agent_id}")

    def get_registered_agent_count(self) -> int:
        return len(self.registered_agents)

    # Readiness signaling

    def signal_ready(self, signal: ReadinessSignal):
        """
        Store (or withdraw, when ready=False) an agent's readiness for a pool,
        prune stale signals, then evaluate the pool.

        Signals from unregistered agents are logged and ignored.
        """
        if signal.agent_id not in self.registered_agents:
            logger.warning(f"Unknown agent {signal.agent_id}, register it first; signal ignored")
            return

        state = self._get_or_create_pool(signal.pool_id)

        if signal.ready:
            state.signals[signal.agent_id] = signal
        else:
            state.signals.pop(signal.agent_id, None)

        self._prune_stale_signals(state)

        if not signal.ready:
            self._cancel_countdown_if_quorum_lost(signal.pool_id, state)

        self._evaluate_pool(signal.pool_id, state)

    def withdraw_ready(self, agent_id: str, pool_id: str):
        """Withdraw an agent's readiness; cancels the countdown if quorum is lost"""
        state = self.pools.get(pool_id)
        if state is None:
            logger.warning(f"Withdraw for unknown pool {pool_id[:10]}... ignored")
            return
        state.signals.pop(agent_id, None)
        self._cancel_countdown_if_quorum_lost(pool_id, state)

    def handle_message(self, message: AgentMessage):
        """Apply a readiness message received from the bus"""
        if message.topic != MessageTopic.COORDINATION_REQUEST:
            return
        try:
            signal = signal_from_message(message)
        except (TypeError, ValueError) as e:
            logger.warning(f"Malformed coordination message from {message.sender}: {e}")
            return
        self.signal_ready(signal)

    # Conflict resolution

    def resolve_batch_parameters(self, pool_id: str) -> BatchParameters:
        """Resolve slippage and deadline from every ready agent's preferences"""
        state = self.pools.get(pool_id)
        if state is None or not state.signals:
            return self._default_batch_parameters()

        ready_signals = self._ready_signals(state)
        if not ready_signals:
            return self._default_batch_parameters()

        slippage_values = [
            s.preferred_slippage_bps for s in ready_signals
            if s.preferred_slippage_bps is not None
        ]
        deadline_values = [
            s.preferred_deadline_extension for s in ready_signals
            if s.preferred_deadline_extension is not None
        ]

        strategy = self.config.conflict_strategy
        slippage = (
            resolve_conflict(slippage_values, strategy)
            if slippage_values else self.config.default_slippage_bps
        )
        deadline = (
            resolve_conflict(deadline_values, strategy)
            if deadline_values else self.config.default_deadline_extension
        )

        return BatchParameters(
            slippage_bps=_round_half_up(slippage),
            deadline_extension=_round_half_up(deadline),
            participating_agents=[s.agent_id for s in ready_signals],
            total_commitments=sum(s.pending_commitments for s in ready_signals)
        )

    # Callbacks

    def on_batch_ready(self, callback: BatchReadyCallback) -> Callable[[], None]:
        """
        Register a listener called with (pool_id, BatchParameters) when a batch fires.

        Coroutine listeners are scheduled as tasks. Returns an unsubscribe function.
        """
        return self.dispatcher.subscribe(callback)

    # Queries

    def get_pool_state(self, pool_id: str) -> PoolStateSnapshot:
        """Read-only snapshot of a pool's readiness"""
        state = self.pools.get(pool_id)
        if state is None:
            return PoolStateSnapshot(pool_id=pool_id)

        ready_signals = self._ready_signals(state)
        return PoolStateSnapshot(
            pool_id=pool_id,
            ready_agents=[s.agent_id for s in ready_signals],
            total_ready=len(ready_signals),
            quorum_met=len(ready_signals) >= self.config.quorum,
            countdown_active=self.scheduler.is_active(pool_id),
            countdown_remaining=self.scheduler.remaining(pool_id),
            total_pending_commitments=sum(s.pending_commitments for s in ready_signals),
            last_batch_at=state.last_batch_at
        )

    def all_agents_ready(self, pool_id: str) -> bool:
        state = self.pools.get(pool_id)
        if state is None:
            return False
        return len(self._ready_signals(state)) >= len(self.registered_agents)

    # Lifecycle

    def reset_pool(self, pool_id: str):
        """Clear a pool's signals and cancel its countdown"""
        self.scheduler.cancel(pool_id)
        state = self.pools.get(pool_id)
        if state is not None:
            state.signals.clear()
            state.last_batch_at = self.clock()

    def reset_all(self):
        for pool_id in list(self.pools):
            self.reset_pool(pool_id)

    async def wait_for_listeners(self):
        """Wait until batch-ready listeners that are still running have finished"""
        await self.dispatcher.wait_pending()

    def destroy(self):
        """Cancel every timer and running listener, drop all state and listeners"""
        self.scheduler.cancel_all()
        cancelled = self.dispatcher.cancel_pending()
        if cancelled:
            logger.warning(f"Cancelled {cancelled} running batch-ready listeners")
        self.pools.clear()
        self.dispatcher.clear()

    # Internal

    def _default_batch_parameters(self) -> BatchParameters:
        return BatchParameters(
            slippage_bps=self.config.default_slippage_bps,
            deadline_extension=self.config.default_deadline_extension
        )

    def _get_or_create_pool(self, pool_id: str) -> PoolCoordinationState:
        state = self.pools.get(pool_id)
        if state is None:
            state = PoolCoordinationState()
            self.pools[pool_id] = state
        return state

    def _ready_signals(self, state: PoolCoordinationState) -> List[ReadinessSignal]:
        return [s for s in state.signals.values() if s.ready]

    def _prune_stale_signals(self, state: PoolCoordinationState):
        now = self.clock()
        for agent_id, signal in list(state.signals.items()):
            if now - signal.timestamp > self.config.stale_signal_seconds:
                del state.signals[agent_id]
                logger.info(f"Pruned stale signal from {agent_id}")

    def _thresholds_met(self, state: PoolCoordinationState) -> bool:
        ready_signals = self._ready_signals(state)
        quorum_met = len(ready_signals) >= self.config.quorum
        commitments_enough = (
            sum(s.pending_commitments for s in ready_signals) >= self.config.min_total_commitments
        )
        return quorum_met and commitments_enough

    def _cancel_countdown_if_quorum_lost(self, pool_id: str, state: PoolCoordinationState):
        if self.scheduler.is_active(pool_id) and not self._thresholds_met(state):
            self.scheduler.cancel(pool_id)
            logger.info(f"Pool {pool_id[:10]}...: quorum lost, countdown cancelled")

    def _evaluate_pool(self, pool_id: str, state: PoolCoordinationState):
        """Start the countdown or fire, depending on who is ready"""
        if not self._thresholds_met(state):
            return

        total_ready = len(self._ready_signals(state))

        # Nobody else can arrive: no reason to wait out the window
        if total_ready >= len(self.registered_agents):
            self.scheduler.cancel(pool_id)
            self._fire_batch_ready(pool_id)
            return

        if not self.scheduler.is_active(pool_id):
            logger.info(
                f"Pool {pool_id[:10]}...: quorum met ({total_ready}/{self.config.quorum}), "
                f"starting {self.config.countdown_seconds}s countdown"
            )
            self.scheduler.schedule(
                pool_id,
                self.config.countdown_seconds,
                lambda: self._on_countdown_expired(pool_id)
            )

    def _on_countdown_expired(self, pool_id: str):
        state = self.pools.get(pool_id)
        if state is None:
            return
        self._prune_stale_signals(state)
        if not self._thresholds_met(state):
            logger.info(f"Pool {pool_id[:10]}...: countdown expired without quorum, not firing")
            return
        self._fire_batch_ready(pool_id)

    def _fire_batch_ready(self, pool_id: str) -> DispatchReport:
        """Resolve parameters, notify every listener, then reset the pool"""
        params = self.resolve_batch_parameters(pool_id)

        logger.info(
            f"Pool {pool_id[:10]}...: BATCH READY - "
            f"{len(params.participating_agents)} agents, {params.total_commitments} commitments, "
            f"slippage={params.slippage_bps}bps"
        )

        try:
            report = self.dispatcher.dispatch(pool_id, params)
        finally:
            self.reset_pool(pool_id)

        return report
