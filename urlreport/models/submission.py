from dataclasses import dataclass, field
from datetime import datetime, timezone

PENDING = "pending"
PROCESSING = "processing"
NO_THREATS = "no threats"
SUSPICIOUS = "suspicious"
MALICIOUS = "malicious"
REJECTED = "rejected"
UNAVAILABLE = "unavailable"
FAILED = "failed"

NON_TERMINAL_STATES = (PENDING, PROCESSING)
TERMINAL_STATES = (NO_THREATS, SUSPICIOUS, MALICIOUS, REJECTED, UNAVAILABLE, FAILED)
ALL_STATES = NON_TERMINAL_STATES + TERMINAL_STATES

INVALID_URL_ERROR = "Invalid URL format"
RATE_LIMIT_ERROR = "Rate limit reached"


def is_terminal(state: str) -> bool:
    return state in TERMINAL_STATES


def can_transition(current: str, new: str) -> bool:
    """Terminal states are final and a processing record never goes back to pending."""
    if new not in ALL_STATES or is_terminal(current):
        return False
    return not (current == PROCESSING and new == PENDING)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Submission:
    url: str
    identifier: str | None = None
    state: str = PENDING
    tags: list[str] = field(default_factory=list)
    error: str | None = None
    reported_at: datetime = field(default_factory=_utcnow)

    @classmethod
    def pending(cls, url: str, identifier: str) -> "Submission":
        return cls(url=url, identifier=identifier)

    @classmethod
    def failed(cls, url: str, error: str) -> "Submission":
        return cls(url=url, state=FAILED, error=error)
