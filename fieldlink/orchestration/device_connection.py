"""Per-device connection owner: state machine, bookkeeping and timers."""
from __future__ import annotations
import asyncio
import logging
from collections import deque
from dataclasses import replace
from datetime import datetime
from typing import Callable, Deque, List, Optional

from fieldlink.core.exceptions import IllegalTransitionError
from fieldlink.core.patterns.backoff import BackoffPolicy
from fieldlink.core.patterns.scheduler import ScheduledCall
from fieldlink.core.patterns.state_machine import DevicePhase, StateMachine
from fieldlink.models.device_models import ConnectionState, DeviceDescriptor, DeviceStatus

HISTORY_SIZE = 100


class DeviceConnection:
    """
    Sole owner of one device's ``ConnectionState``.

    Every mutation goes through a method that first drives the state
    machine; a forbidden move raises ``IllegalTransitionError`` before any
    bookkeeping changes. At most one retry timer and one poll timer are
    held at a time, attaching a new one replaces the old reference.
    """

    def __init__(self, descriptor: DeviceDescriptor, policy: BackoffPolicy,
                 clock: Callable[[], datetime]):
        self.descriptor = descriptor
        self.policy     = policy
        self._clock     = clock
        self.machine    = StateMachine(name=descriptor.name)
        self.state      = ConnectionState(current_backoff_delay_ms=policy.initial_delay_ms)
        self.log        = logging.getLogger(f"{self.__class__.__name__}.{descriptor.name}")

        self.initialized: bool = False          # a connect has been attempted
        self.last_error: Optional[str] = None
        self.last_poll_at: Optional[datetime] = None
        self.last_seen_at: Optional[datetime] = None
        self.response_time_ms: Optional[float] = None
        self._history: Deque[bool] = deque(maxlen=HISTORY_SIZE)

        self.retry_handle: Optional[ScheduledCall] = None
        self.poll_handle: Optional[ScheduledCall] = None

    # --------------------------------------------------------------------- #
    #  Introspection
    # --------------------------------------------------------------------- #
    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def phase(self) -> DevicePhase:
        return self.machine.state

    @property
    def is_stopped(self) -> bool:
        return self.machine.state is DevicePhase.STOPPED

    @property
    def is_connected(self) -> bool:
        return self.machine.state is DevicePhase.CONNECTED

    @property
    def poll_success_rate(self) -> float:
        if not self._history:
            return 1.0
        return sum(self._history) / len(self._history)

    @property
    def communication_quality(self) -> str:
        if not self.state.connected:
            return "offline"
        rate = self.poll_success_rate
        if rate >= 0.95:
            return "good"
        if rate >= 0.75:
            return "degraded"
        return "poor"

    # --------------------------------------------------------------------- #
    #  Transitions
    # --------------------------------------------------------------------- #
    def _move(self, nxt: DevicePhase) -> None:
        current = self.machine.state
        if not self.machine.transition(nxt):
            raise IllegalTransitionError(f"{self.name}: illegal transition {current.name} -> {nxt.name}")

    def begin_connect(self) -> None:
        self._move(DevicePhase.CONNECTING)
        self.initialized = True
        self.state.last_attempt_at = self._clock()

    def mark_connected(self) -> None:
        self._move(DevicePhase.CONNECTED)
        self.state.connected                = True
        self.state.consecutive_error_count  = 0
        self.state.current_backoff_delay_ms = self.policy.initial_delay_ms

    def mark_rejected(self, error: BaseException) -> None:
        self._move(DevicePhase.REJECTED)
        self.last_error = _describe(error)

    def schedule_failure(self, error: BaseException) -> float:
        """Enter RETRY_SCHEDULED and return the (jittered) delay to wait before reconnecting."""
        self._move(DevicePhase.RETRY_SCHEDULED)
        self.state.connected = False
        self.state.consecutive_error_count += 1
        attempt = self.state.consecutive_error_count
        self.state.current_backoff_delay_ms = self.policy.nominal_delay(attempt)
        self.last_error = _describe(error)
        return self.policy.delay(attempt)

    def stop(self) -> List[asyncio.Task]:
        """Enter STOPPED, cancel both timers and return the tasks still unwinding."""
        if not self.is_stopped:
            self._move(DevicePhase.STOPPED)
        self.state.connected = False
        pending: List[asyncio.Task] = []
        for handle in (self.retry_handle, self.poll_handle):
            if handle is None:
                continue
            handle.cancel()
            task = handle.task
            if task is not None and not task.done() and task is not asyncio.current_task():
                pending.append(task)
        self.retry_handle = None
        self.poll_handle = None
        return pending

    # --------------------------------------------------------------------- #
    #  Timers
    # --------------------------------------------------------------------- #
    def attach_retry(self, handle: ScheduledCall) -> None:
        self.retry_handle = handle

    def attach_poll(self, handle: ScheduledCall) -> None:
        self.poll_handle = handle

    # --------------------------------------------------------------------- #
    #  Poll outcomes
    # --------------------------------------------------------------------- #
    def record_poll_success(self, response_time_ms: float) -> None:
        now = self._clock()
        self.last_poll_at     = now
        self.last_seen_at     = now
        self.response_time_ms = response_time_ms
        self.state.consecutive_error_count = 0
        self._history.append(True)

    def record_poll_failure(self, error: BaseException) -> None:
        self.last_poll_at = self._clock()
        self.last_error   = _describe(error)
        self._history.append(False)

    # --------------------------------------------------------------------- #
    #  Projections
    # --------------------------------------------------------------------- #
    def connection_state(self) -> ConnectionState:
        return replace(self.state)

    def status(self) -> DeviceStatus:
        return DeviceStatus(
            device_name           = self.name,
            connected             = self.state.connected,
            last_poll_at          = self.last_poll_at,
            error_count           = self.state.consecutive_error_count,
            last_error            = self.last_error,
            state                 = self.phase.name,
            last_seen_at          = self.last_seen_at,
            response_time_ms      = self.response_time_ms,
            poll_success_rate     = self.poll_success_rate,
            communication_quality = self.communication_quality,
        )

    def __repr__(self) -> str:
        return f"DeviceConnection({self.name!r}, {self.phase.name})"


def default_status(descriptor: DeviceDescriptor) -> DeviceStatus:
    """Status of a registered device that has no live connection (disabled or adapter stopped)."""
    return DeviceStatus(device_name=descriptor.name)


def _describe(error: BaseException) -> str:
    return str(error) or error.__class__.__name__
