"""Type definitions for pqinbox."""

from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from re import Pattern
from typing import TYPE_CHECKING, Any, Literal, TypedDict

from .constants import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLLING_BACKOFF_MULTIPLIER,
    DEFAULT_POLLING_INTERVAL_MS,
    DEFAULT_POLLING_JITTER_FACTOR,
    DEFAULT_POLLING_MAX_BACKOFF_MS,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_RETRY_STATUS_CODES,
    DEFAULT_SSE_CONNECT_TIMEOUT_MS,
    DEFAULT_SSE_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_SSE_RECONNECT_INTERVAL_MS,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_WAIT_TIMEOUT_MS,
)

if TYPE_CHECKING:
    from .email import Email

# Server encryption policy values
EncryptionPolicy = Literal["always", "enabled", "disabled", "never"]

# Inbox encryption mode values
InboxEncryptionMode = Literal["encrypted", "plain"]

ErrorCallback = Callable[[BaseException], None]


class DeliveryStrategyType(str, Enum):
    """Delivery strategy types."""

    SSE = "sse"
    POLLING = "polling"


@dataclass(frozen=True)
class PollingConfig:
    """Configuration for polling strategy.

    Attributes:
        initial_interval: Starting poll interval in milliseconds.
        max_backoff: Maximum backoff delay in milliseconds.
        backoff_multiplier: Growth factor applied after each empty poll.
        jitter_factor: Uniform jitter applied as interval * (1 +/- jitter_factor).
    """

    initial_interval: int = DEFAULT_POLLING_INTERVAL_MS
    max_backoff: int = DEFAULT_POLLING_MAX_BACKOFF_MS
    backoff_multiplier: float = DEFAULT_POLLING_BACKOFF_MULTIPLIER
    jitter_factor: float = DEFAULT_POLLING_JITTER_FACTOR

    def __post_init__(self) -> None:
        if self.initial_interval <= 0:
            raise ValueError("initial_interval must be positive")
        if self.max_backoff < self.initial_interval:
            raise ValueError("max_backoff must be >= initial_interval")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")
        if not 0 <= self.jitter_factor < 1:
            raise ValueError("jitter_factor must be in [0, 1)")


@dataclass(frozen=True)
class SSEConfig:
    """Configuration for SSE strategy.

    Attributes:
        reconnect_interval: Delay between reconnection attempts in milliseconds.
        max_reconnect_attempts: Consecutive failures tolerated before giving up.
        connect_timeout: How long a first connection may take in milliseconds.
    """

    reconnect_interval: int = DEFAULT_SSE_RECONNECT_INTERVAL_MS
    max_reconnect_attempts: int = DEFAULT_SSE_MAX_RECONNECT_ATTEMPTS
    connect_timeout: int = DEFAULT_SSE_CONNECT_TIMEOUT_MS


@dataclass(frozen=True)
class ClientConfig:
    """Configuration for PqInboxClient.

    Attributes:
        api_key: API key for authentication.
        base_url: Base URL for the API server.
        timeout: HTTP request timeout in milliseconds.
        max_retries: Maximum number of retry attempts.
        retry_delay: Initial retry delay in milliseconds.
        retry_on_status_codes: HTTP status codes to retry on.
        strategy: Delivery strategy type.
        polling: Polling strategy tunables.
        sse: SSE strategy tunables.
        on_error: Called with errors raised inside background delivery tasks.
    """

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    timeout: int = DEFAULT_TIMEOUT_MS
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_delay: int = DEFAULT_RETRY_DELAY_MS
    retry_on_status_codes: tuple[int, ...] = DEFAULT_RETRY_STATUS_CODES
    strategy: DeliveryStrategyType = DeliveryStrategyType.SSE
    polling: PollingConfig = field(default_factory=PollingConfig)
    sse: SSEConfig = field(default_factory=SSEConfig)
    on_error: ErrorCallback | None = field(default=None, compare=False)

    @classmethod
    def from_env(cls, prefix: str = "PQINBOX_") -> ClientConfig:
        """Build a configuration from environment variables.

        Reads ``<prefix>API_KEY`` (required), ``<prefix>URL`` and ``<prefix>STRATEGY``.

        Raises:
            ValueError: If the API key is missing or the strategy is unknown.
        """
        api_key = os.environ.get(f"{prefix}API_KEY")
        if not api_key:
            raise ValueError(f"{prefix}API_KEY is not set")
        strategy = os.environ.get(f"{prefix}STRATEGY", DeliveryStrategyType.SSE.value)
        return cls(
            api_key=api_key,
            base_url=os.environ.get(f"{prefix}URL", DEFAULT_BASE_URL),
            strategy=DeliveryStrategyType(strategy.lower()),
        )


@dataclass
class CreateInboxOptions:
    """Options for ``PqInboxClient.create_inbox``. Fields left as None defer to the server.

    Attributes:
        ttl: Lifetime in seconds, 60 to 604800 inclusive.
        email_address: Requested address, or just a domain to get a random local part.
        email_auth: Whether the server runs SPF/DKIM/DMARC checks.
        encryption: Force an "encrypted" or "plain" inbox instead of following
            the server policy.
    """

    ttl: int | None = None
    email_address: str | None = None
    email_auth: bool | None = None
    encryption: InboxEncryptionMode | None = None


@dataclass
class ServerInfo:
    """What /api/server-info reports.

    ``server_sig_pk`` is the ML-DSA-65 key new encrypted inboxes get pinned to.
    ``encryption_policy`` decides the default for inboxes created without an
    explicit ``encryption`` option. TTLs are in seconds.
    """

    server_sig_pk: str
    algs: dict[str, str]
    context: str
    max_ttl: int
    default_ttl: int
    sse_console: bool
    allowed_domains: list[str]
    encryption_policy: EncryptionPolicy = "always"


@dataclass(frozen=True)
class SyncStatus:
    """Inbox sync status.

    Attributes:
        email_count: Number of emails in the inbox.
        emails_hash: Fingerprint of the email id set for change detection.
    """

    email_count: int
    emails_hash: str


@dataclass(frozen=True)
class RawEmail:
    """Raw email content.

    Attributes:
        id: The email ID.
        raw: The raw MIME email content.
    """

    id: str
    raw: str


@dataclass(frozen=True)
class EmailMetadata:
    """Email metadata without full content."""

    id: str
    from_address: str
    subject: str
    received_at: datetime
    is_read: bool


@dataclass
class InboxData:
    """Server response to inbox creation.

    ``expires_at`` is still the raw ISO 8601 string; ``server_sig_pk`` is only
    present for encrypted inboxes.
    """

    email_address: str
    expires_at: str
    inbox_hash: str
    encrypted: bool
    email_auth: bool
    server_sig_pk: str | None = None


@dataclass
class ExportedInbox:
    """Exported inbox data for persistence/sharing.

    The public key is not included; it is re-derived from the secret key on import.
    ``server_sig_pk`` and ``secret_key`` are only present for encrypted inboxes.
    """

    version: int
    email_address: str
    expires_at: str
    inbox_hash: str
    encrypted: bool
    email_auth: bool
    exported_at: str
    server_sig_pk: str | None = None
    secret_key: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON export format."""
        data: dict[str, Any] = {
            "version": self.version,
            "emailAddress": self.email_address,
            "expiresAt": self.expires_at,
            "inboxHash": self.inbox_hash,
            "encrypted": self.encrypted,
            "emailAuth": self.email_auth,
            "exportedAt": self.exported_at,
        }
        if self.encrypted:
            data["serverSigPk"] = self.server_sig_pk
            data["secretKey"] = self.secret_key
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExportedInbox:
        """Parse the camelCase JSON export format.

        Raises:
            KeyError: If a required field is missing.
        """
        return cls(
            version=data["version"],
            email_address=data["emailAddress"],
            expires_at=data["expiresAt"],
            inbox_hash=data["inboxHash"],
            encrypted=data.get("encrypted", True),
            email_auth=data.get("emailAuth", True),
            exported_at=data.get("exportedAt", ""),
            server_sig_pk=data.get("serverSigPk"),
            secret_key=data.get("secretKey"),
        )


# Authentication result statuses, as computed by the server


class SPFStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    SOFTFAIL = "softfail"
    NEUTRAL = "neutral"
    NONE = "none"
    TEMPERROR = "temperror"
    PERMERROR = "permerror"
    SKIPPED = "skipped"


class DKIMStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    NONE = "none"
    SKIPPED = "skipped"


class DMARCStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    NONE = "none"
    SKIPPED = "skipped"


class ReverseDNSStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    NONE = "none"
    SKIPPED = "skipped"


class DMARCPolicy(str, Enum):
    NONE = "none"
    QUARANTINE = "quarantine"
    REJECT = "reject"


@dataclass(frozen=True)
class SPFResult:
    result: SPFStatus
    domain: str | None = None
    ip: str | None = None
    details: str | None = None


@dataclass(frozen=True)
class DKIMResult:
    result: DKIMStatus
    domain: str | None = None
    selector: str | None = None
    signature: str | None = None


@dataclass(frozen=True)
class DMARCResult:
    result: DMARCStatus
    policy: DMARCPolicy | None = None
    aligned: bool | None = None
    domain: str | None = None


@dataclass(frozen=True)
class ReverseDNSResult:
    result: ReverseDNSStatus
    ip: str | None = None
    hostname: str | None = None


@dataclass(frozen=True)
class AuthResultsValidation:
    """Summary of authentication results.

    Attributes:
        passed: SPF, DKIM and DMARC all passed (reverse DNS is informational).
        failures: Human-readable description of each failing check.
    """

    passed: bool
    spf_passed: bool
    dkim_passed: bool
    dmarc_passed: bool
    reverse_dns_passed: bool
    failures: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AuthResults:
    """Server-computed email authentication results.

    The values are opaque to delivery; they are surfaced for test assertions.
    """

    spf: SPFResult | None = None
    dkim: list[DKIMResult] = field(default_factory=list)
    dmarc: DMARCResult | None = None
    reverse_dns: ReverseDNSResult | None = None

    def validate(self) -> AuthResultsValidation:
        """Summarize the results. A 'skipped' check counts as passed."""
        failures: list[str] = []

        spf_passed = self.spf is not None and self.spf.result in (SPFStatus.PASS, SPFStatus.SKIPPED)
        if self.spf is not None and not spf_passed:
            suffix = f" (domain: {self.spf.domain})" if self.spf.domain else ""
            failures.append(f"SPF check failed: {self.spf.result.value}{suffix}")

        dkim_passed = bool(self.dkim) and (
            any(d.result == DKIMStatus.PASS for d in self.dkim)
            or all(d.result == DKIMStatus.SKIPPED for d in self.dkim)
        )
        if self.dkim and not dkim_passed:
            domains = ", ".join(d.domain for d in self.dkim if d.domain)
            failures.append(f"DKIM signature failed{': ' + domains if domains else ''}")

        dmarc_passed = self.dmarc is not None and self.dmarc.result in (
            DMARCStatus.PASS,
            DMARCStatus.SKIPPED,
        )
        if self.dmarc is not None and not dmarc_passed:
            suffix = f" (policy: {self.dmarc.policy.value})" if self.dmarc.policy else ""
            failures.append(f"DMARC policy: {self.dmarc.result.value}{suffix}")

        reverse_dns_passed = self.reverse_dns is not None and self.reverse_dns.result in (
            ReverseDNSStatus.PASS,
            ReverseDNSStatus.SKIPPED,
        )
        if self.reverse_dns is not None and not reverse_dns_passed:
            hostname = self.reverse_dns.hostname
            suffix = f" (hostname: {hostname})" if hostname else ""
            failures.append(f"Reverse DNS check failed{suffix}")

        return AuthResultsValidation(
            passed=spf_passed and dkim_passed and dmarc_passed,
            spf_passed=spf_passed,
            dkim_passed=dkim_passed,
            dmarc_passed=dmarc_passed,
            reverse_dns_passed=reverse_dns_passed,
            failures=failures,
        )


@dataclass(frozen=True)
class Attachment:
    """A decoded attachment. ``content`` is empty if the server sent undecodable base64."""

    filename: str
    content_type: str
    size: int
    content: bytes
    content_id: str | None = None
    content_disposition: str | None = None
    checksum: str | None = None


@dataclass
class WaitForEmailOptions:
    """Options for waiting for an email.

    Filters are combined with AND and evaluated in the order subject, sender,
    predicate. A plain string must match exactly; a compiled pattern is searched.

    Attributes:
        subject: Match email subject (string or regex pattern).
        from_address: Match sender address (string or regex pattern).
        predicate: Custom filter function.
        timeout: Max wait time in milliseconds.
    """

    subject: str | Pattern[str] | None = None
    from_address: str | Pattern[str] | None = None
    predicate: Callable[[Email], bool] | None = None
    timeout: int = DEFAULT_WAIT_TIMEOUT_MS


@dataclass
class WaitForCountOptions:
    """Options for waiting for a number of emails.

    Attributes:
        timeout: Maximum wait time in milliseconds.
        subject: Only count emails with this subject.
        from_address: Only count emails from this sender.
        predicate: Only count emails matching this function.
    """

    timeout: int = DEFAULT_WAIT_TIMEOUT_MS
    subject: str | Pattern[str] | None = None
    from_address: str | Pattern[str] | None = None
    predicate: Callable[[Email], bool] | None = None


# Exact string or compiled regex
EmailFilterMatcher = str | Pattern[str]


class EncryptedPayload(TypedDict):
    """One signed, encrypted part of an envelope (all byte fields base64url)."""

    v: int
    algs: dict[str, str]
    ct_kem: str
    nonce: str
    aad: str
    ciphertext: str
    sig: str
    server_sig_pk: str


class RawEmailResponse(TypedDict, total=False):
    """Envelope of /emails/{id}/raw.

    Encrypted inboxes carry 'encryptedRaw'; plain inboxes carry base64 'raw'.
    """

    id: str
    encryptedRaw: EncryptedPayload
    raw: str


class EmailResponse(TypedDict, total=False):
    """Email envelope from server.

    Encrypted inboxes carry 'encryptedMetadata' and 'encryptedParsed'; plain
    inboxes carry base64-encoded JSON in 'metadata' and 'parsed'.
    """

    id: str
    inboxId: str
    receivedAt: str
    isRead: bool
    encryptedMetadata: EncryptedPayload
    encryptedParsed: EncryptedPayload
    metadata: str
    parsed: str
