"""Injectable time and randomness sources."""

import secrets
from datetime import datetime, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Return the current aware UTC time."""
        ...


class Entropy(Protocol):
    """Source of random bytes."""

    def token_bytes(self, nbytes: int) -> bytes:
        """Return ``nbytes`` random bytes."""
        ...


class SystemClock:
    """Wall-clock time in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class SystemEntropy:
    """Cryptographically strong randomness from the OS."""

    def token_bytes(self, nbytes: int) -> bytes:
        return secrets.token_bytes(nbytes)
