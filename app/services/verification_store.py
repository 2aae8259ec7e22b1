"""
In-memory store for pending signup verifications (email -> PendingVerification).

Lives for the process lifetime only: a restart drops every pending code and
users simply restart signup. One instance is created per process (see
app.dependencies) and injected into the signup service. Expired records are
removed lazily on read and by the periodic purge job scheduled in app.main.
"""
import enum
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from app.schemas.auth import GoogleProfile

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationAction(str, enum.Enum):
    signup = "signup"


@dataclass
class PendingVerification:
    email: str
    code: str
    expires_at: datetime
    profile: GoogleProfile
    action: VerificationAction = VerificationAction.signup
    attempts: int = 0
    # Set when the account was created but no session could be issued yet
    account_id: str | None = None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class VerificationStore:
    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._records: dict[str, PendingVerification] = {}
        self._lock = threading.Lock()

    def now(self) -> datetime:
        return self._clock()

    def put(self, email: str, record: PendingVerification) -> None:
        """Store record for email, replacing any pending one."""
        with self._lock:
            self._records[email] = record

    def get(self, email: str) -> PendingVerification | None:
        """Return the record while it is still valid; drop it if it has expired."""
        with self._lock:
            record = self._records.get(email)
            if record is None:
                return None
            if record.is_expired(self._clock()):
                del self._records[email]
                return None
            return record

    def pop_if_expired(self, email: str) -> bool:
        """Remove the record for email if it exists but has expired. True if one was removed."""
        with self._lock:
            record = self._records.get(email)
            if record is not None and record.is_expired(self._clock()):
                del self._records[email]
                return True
            return False

    def delete(self, email: str) -> None:
        with self._lock:
            self._records.pop(email, None)

    def record_failed_attempt(self, email: str) -> int:
        with self._lock:
            record = self._records.get(email)
            if record is None:
                return 0
            record.attempts += 1
            return record.attempts

    def mark_account_created(self, email: str, account_id: str) -> None:
        with self._lock:
            record = self._records.get(email)
            if record is not None:
                record.account_id = account_id

    def purge_expired(self) -> int:
        """Delete every expired record. Each record is judged by its own expires_at,
        so a fresh record that replaced an expired one under the same email survives."""
        with self._lock:
            now = self._clock()
            expired = [email for email, r in self._records.items() if r.is_expired(now)]
            for email in expired:
                del self._records[email]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, email: str) -> bool:
        with self._lock:
            return email in self._records
