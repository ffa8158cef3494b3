from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class ReconnectBackoff:
    """
    Reconnect policy for the feed connector.

    delay(n) = min(base * factor**(n-1), cap) for the n-th consecutive failure.
    The attempt counter resets on every successful connect, and once
    `max_attempts` consecutive failures are reached `exhausted` turns True.
    """
    base_s: float = 3.0
    factor: float = 1.5
    max_s: float = 60.0
    max_attempts: int = 10
    attempts: int = 0

    def next_delay(self) -> float:
        """Register one more failure and return how long to wait before retrying."""
        self.attempts += 1
        return min(self.base_s * (self.factor ** (self.attempts - 1)), self.max_s)

    def reset(self) -> None:
        self.attempts = 0

    @property
    def exhausted(self) -> bool:
        return self.max_attempts > 0 and self.attempts >= self.max_attempts
