"""Per-inbox state tracker: deduplication, sync status and new-email fan-out."""

from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .crypto import Keypair
from .email import Email
from .errors import EnvelopeError, SecurityError
from .types import EmailResponse, SyncStatus
from .verifier import verify_and_decrypt

logger = logging.getLogger("pqinbox")

EmailListener = Callable[[Email], None]


class ApplyStatus(str, Enum):
    """Outcome of applying an envelope to the tracker."""

    NEW = "new"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class ApplyResult:
    """Result of ``InboxStateTracker.apply_envelope``.

    Attributes:
        status: NEW the first time an id is observed, DUPLICATE afterwards.
        email: The verified email held for the id.
    """

    status: ApplyStatus
    email: Email

    @property
    def is_new(self) -> bool:
        return self.status is ApplyStatus.NEW


def _id_digest(email_id: str) -> int:
    return int.from_bytes(hashlib.sha256(email_id.encode("utf-8")).digest(), "big")


class InboxStateTracker:
    """Deduplicated view of one inbox.

    Both delivery transports feed envelopes in here. The first observation of an
    email id is NEW and is pushed to every listener; later observations are
    DUPLICATE. Check-and-insert and the choice of listeners happen under one
    lock, so a listener registered through ``subscribe`` sees each email exactly
    once.

    Verification, decryption and listener calls run outside the lock, so
    listeners may read the tracker.
    """

    def __init__(self, keypair: Keypair | None, pinned_server_key: str | None) -> None:
        self._keypair = keypair
        self._pinned_server_key = pinned_server_key
        self._lock = threading.Lock()
        self._seen: set[str] = set()
        self._rejected: set[str] = set()
        self._emails: dict[str, Email] = {}
        self._set_hash = 0
        self._listeners: list[EmailListener] = []

    def apply_envelope(self, envelope: EmailResponse) -> ApplyResult:
        """Verify an envelope and record the email it carries.

        Raises:
            EnvelopeError: If the envelope is malformed or undecryptable.
            SecurityError: If signature or key pinning checks fail.
        """
        email_id = envelope.get("id") if isinstance(envelope, dict) else None

        if isinstance(email_id, str):
            with self._lock:
                if email_id in self._emails:
                    return ApplyResult(ApplyStatus.DUPLICATE, self._emails[email_id])

        try:
            email = verify_and_decrypt(envelope, self._keypair, self._pinned_server_key)
        except (EnvelopeError, SecurityError):
            if isinstance(email_id, str):
                with self._lock:
                    self._rejected.add(email_id)
            raise

        return self._record(email)

    def _record(self, email: Email) -> ApplyResult:
        with self._lock:
            if email.id in self._emails:
                return ApplyResult(ApplyStatus.DUPLICATE, self._emails[email.id])

            self._emails[email.id] = email
            self._set_hash ^= _id_digest(email.id)
            self._rejected.discard(email.id)

            if email.id in self._seen:
                # Forgotten earlier and listed again; listeners already had it
                return ApplyResult(ApplyStatus.DUPLICATE, email)

            self._seen.add(email.id)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(email)
            except Exception as e:
                logger.warning("Email listener failed for %s: %s", email.id, e, exc_info=True)
        return ApplyResult(ApplyStatus.NEW, email)

    def has_seen(self, email_id: str) -> bool:
        """Whether an id has ever been accepted, including ids forgotten since."""
        with self._lock:
            return email_id in self._seen

    def is_rejected(self, email_id: str) -> bool:
        """Whether an id failed verification and must not be fetched again automatically."""
        with self._lock:
            return email_id in self._rejected

    @property
    def emails(self) -> list[Email]:
        """Snapshot of held emails in first-observed order."""
        with self._lock:
            return list(self._emails.values())

    def email_ids(self) -> list[str]:
        with self._lock:
            return list(self._emails)

    def get(self, email_id: str) -> Email | None:
        with self._lock:
            return self._emails.get(email_id)

    def sync_status(self) -> SyncStatus:
        """Count and set-hash of the held emails.

        The hash is the XOR of SHA-256 over each id, so it depends only on the
        set of ids and not on the order or transport they arrived through.
        """
        with self._lock:
            return SyncStatus(email_count=len(self._emails), emails_hash=f"{self._set_hash:064x}")

    def forget(self, email_id: str) -> bool:
        """Drop an email the server no longer holds. The id stays seen."""
        with self._lock:
            if self._emails.pop(email_id, None) is None:
                return False
            self._set_hash ^= _id_digest(email_id)
            return True

    def replace(self, email: Email) -> bool:
        """Swap in an updated copy of a held email (e.g. after mark-read)."""
        with self._lock:
            if email.id not in self._emails:
                return False
            self._emails[email.id] = email
            return True

    def clear(self) -> None:
        """Reset all state. Used when the inbox itself is deleted."""
        with self._lock:
            self._seen.clear()
            self._rejected.clear()
            self._emails.clear()
            self._set_hash = 0

    def subscribe(self, listener: EmailListener, *, replay: bool = False) -> list[Email]:
        """Register a listener for new emails.

        Registration and the returned snapshot are taken atomically, so every
        email is either in the snapshot or delivered to the listener, never both
        and never neither. With ``replay`` the snapshot is also fed to the
        listener once the lock is released.

        Returns:
            Emails held at registration time, in first-observed order.
        """
        with self._lock:
            snapshot = list(self._emails.values())
            self._listeners.append(listener)
        if replay:
            for email in snapshot:
                listener(email)
        return snapshot

    def unsubscribe(self, listener: EmailListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)
