"""Adaptive backoff state for the fetch pipeline."""

from dataclasses import dataclass

BACKOFF_FACTOR = 1.5


def pause_duration(hits: int, base: float, cap: float) -> float:
    """
    Pause after ``hits`` consecutive 429 responses.

    Examples (base=60, cap=300):
        1 -> 60.0
        2 -> 90.0
        5 -> 300.0
    """
    if hits < 1:
        return base
    return min(base * BACKOFF_FACTOR ** (hits - 1), cap)


@dataclass
class RateLimitState:
    """
    Process-wide rate-limit bookkeeping.

    Only the pipeline scheduler writes to it; anything may read it.
    """

    base_pause: float = 60.0
    max_pause: float = 300.0
    base_delay: float = 0.5
    max_delay: float = 2.0

    paused: bool = False
    pause_until: float = 0.0
    current_pause: float = 0.0
    consecutive_hits: int = 0
    inter_request_delay: float = 0.0

    def __post_init__(self) -> None:
        self.current_pause = self.base_pause
        self.inter_request_delay = self.base_delay

    def record_rate_limit(self, now: float) -> float:
        """
        Register a 429 and start a pause.

        Returns:
            Pause length in seconds
        """
        self.consecutive_hits += 1
        self.current_pause = pause_duration(self.consecutive_hits, self.base_pause, self.max_pause)
        self.paused = True
        self.pause_until = now + self.current_pause
        self.inter_request_delay = min(self.inter_request_delay * BACKOFF_FACTOR, self.max_delay)
        return self.current_pause

    def record_success(self) -> None:
        """Reset every counter to its base value."""
        self.consecutive_hits = 0
        self.current_pause = self.base_pause
        self.inter_request_delay = self.base_delay

    def remaining_pause(self, now: float) -> float:
        """Seconds left in the current pause; clears the flag once it has passed."""
        if not self.paused:
            return 0.0
        if now < self.pause_until:
            return self.pause_until - now
        self.paused = False
        return 0.0
