"""Reusable building blocks: state machine, backoff, scheduler, event surface."""

from .state_machine import DevicePhase, StateMachine
from .backoff import BackoffPolicy
from .scheduler import AsyncioScheduler, ScheduledCall, Scheduler, VirtualScheduler
from .observer import AdapterEvent, AdapterEventType, EventSurface

__all__ = [
    # Lifecycle
    'DevicePhase',
    'StateMachine',
    'BackoffPolicy',

    # Timing
    'Scheduler',
    'ScheduledCall',
    'AsyncioScheduler',
    'VirtualScheduler',

    # Events
    'AdapterEvent',
    'AdapterEventType',
    'EventSurface',
]
