"""Core logic shared by the harvest and registration paths."""

from services.metadata_exchange.app.core.clock import Clock, Entropy, SystemClock, SystemEntropy
from services.metadata_exchange.app.core.state_machine import (
    InvalidTransitionError,
    RegistrationStateMachine,
)

__all__ = [
    "Clock",
    "Entropy",
    "SystemClock",
    "SystemEntropy",
    "InvalidTransitionError",
    "RegistrationStateMachine",
]
