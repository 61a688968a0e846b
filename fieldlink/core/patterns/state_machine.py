from enum import Enum, auto
from typing import Dict, List
import logging

class DevicePhase(Enum):
    UNINITIALIZED   = auto()
    CONNECTING      = auto()
    CONNECTED       = auto()
    RETRY_SCHEDULED = auto()
    REJECTED        = auto()
    STOPPED         = auto()

class StateMachine:
    """Transition table for a single device's connection lifecycle."""

    def __init__(self, initial: DevicePhase = DevicePhase.UNINITIALIZED, name: str = ""):
        self._state = initial
        self._log = logging.getLogger(f"{self.__class__.__name__}.{name}" if name else self.__class__.__name__)
        self._trans: Dict[DevicePhase, List[DevicePhase]] = {
            DevicePhase.UNINITIALIZED:   [DevicePhase.CONNECTING, DevicePhase.REJECTED,
                                          DevicePhase.STOPPED],
            DevicePhase.CONNECTING:      [DevicePhase.CONNECTED, DevicePhase.RETRY_SCHEDULED,
                                          DevicePhase.STOPPED],
            DevicePhase.CONNECTED:       [DevicePhase.RETRY_SCHEDULED, DevicePhase.STOPPED],
            DevicePhase.RETRY_SCHEDULED: [DevicePhase.CONNECTING, DevicePhase.STOPPED],
            DevicePhase.REJECTED:        [DevicePhase.STOPPED],
            DevicePhase.STOPPED:         [],
        }

    @property
    def state(self) -> DevicePhase: return self._state

    def can(self, nxt: DevicePhase) -> bool: return nxt in self._trans[self._state]

    def transition(self, nxt: DevicePhase) -> bool:
        if self.can(nxt):
            self._log.debug("%s -> %s", self._state.name, nxt.name)
            self._state = nxt
            return True
        return False
