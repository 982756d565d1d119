"""pqinbox: client library for post-quantum encrypted test inboxes.

Creates temporary inboxes, keeps a live deduplicated view of their contents
over SSE or adaptive polling, and verifies and decrypts every email
(ML-KEM-768, ML-DSA-65, AES-256-GCM) before test code sees it.

Example:
    ```python
    import asyncio
    from pqinbox import PqInboxClient, WaitForEmailOptions

    async def main():
        async with PqInboxClient(api_key="your-api-key") as client:
            inbox = await client.create_inbox()
            print(f"Inbox created: {inbox.email_address}")

            email = await inbox.wait_for_email(WaitForEmailOptions(subject="Welcome"))
            print(f"From: {email.from_address}")
            print(f"Links: {email.links}")

    asyncio.run(main())
    ```
"""

from .client import PqInboxClient
from .constants import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_POLLING_INTERVAL_MS,
    DEFAULT_POLLING_MAX_BACKOFF_MS,
    DEFAULT_RETRY_DELAY_MS,
    DEFAULT_RETRY_STATUS_CODES,
    DEFAULT_SSE_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_SSE_RECONNECT_INTERVAL_MS,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_WAIT_TIMEOUT_MS,
    MAX_TTL_SECONDS,
    MIN_TTL_SECONDS,
)
from .coordinator import Subscription, WaitCoordinator, WaitResult, WaitStatus
from .email import Email
from .errors import (
    ApiError,
    DecryptionError,
    EmailNotFoundError,
    EnvelopeError,
    InboxAlreadyExistsError,
    InboxNotFoundError,
    InvalidAlgorithmError,
    InvalidImportDataError,
    InvalidPayloadError,
    InvalidSizeError,
    NetworkError,
    NotFoundError,
    PqInboxError,
    SecurityError,
    ServerKeyMismatchError,
    SignatureVerificationError,
    SSEError,
    StrategyError,
    TimeoutError,
    UnsupportedVersionError,
)
from .filters import AllOf, EmailFilter, PredicateFilter, SenderFilter, SubjectFilter, build_filter
from .inbox import Inbox
from .monitor import InboxEmailCallback, InboxEvent, InboxMonitor
from .strategies import AdaptiveInterval, PollingStrategy, SSEState, SSEStrategy
from .tracker import ApplyResult, ApplyStatus, InboxStateTracker
from .types import (
    Attachment,
    AuthResults,
    AuthResultsValidation,
    ClientConfig,
    CreateInboxOptions,
    DeliveryStrategyType,
    DKIMResult,
    DKIMStatus,
    DMARCPolicy,
    DMARCResult,
    DMARCStatus,
    EmailMetadata,
    ExportedInbox,
    InboxData,
    PollingConfig,
    RawEmail,
    ReverseDNSResult,
    ReverseDNSStatus,
    ServerInfo,
    SPFResult,
    SPFStatus,
    SSEConfig,
    SyncStatus,
    WaitForCountOptions,
    WaitForEmailOptions,
)
from .verifier import verify_and_decrypt, verify_metadata, verify_raw

__version__ = "0.1.0"

__all__ = [
    # Main classes
    "PqInboxClient",
    "Inbox",
    "InboxMonitor",
    "InboxEvent",
    "InboxEmailCallback",
    "Email",
    "Subscription",
    # Delivery core
    "InboxStateTracker",
    "ApplyResult",
    "ApplyStatus",
    "WaitCoordinator",
    "WaitResult",
    "WaitStatus",
    "AdaptiveInterval",
    "PollingStrategy",
    "SSEStrategy",
    "SSEState",
    "verify_and_decrypt",
    "verify_metadata",
    "verify_raw",
    # Filters
    "EmailFilter",
    "SubjectFilter",
    "SenderFilter",
    "PredicateFilter",
    "AllOf",
    "build_filter",
    # Constants
    "DEFAULT_TIMEOUT_MS",
    "DEFAULT_RETRY_DELAY_MS",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_POLLING_INTERVAL_MS",
    "DEFAULT_POLLING_MAX_BACKOFF_MS",
    "DEFAULT_SSE_RECONNECT_INTERVAL_MS",
    "DEFAULT_SSE_MAX_RECONNECT_ATTEMPTS",
    "DEFAULT_RETRY_STATUS_CODES",
    "DEFAULT_WAIT_TIMEOUT_MS",
    "MIN_TTL_SECONDS",
    "MAX_TTL_SECONDS",
    # Configuration
    "ClientConfig",
    "CreateInboxOptions",
    "DeliveryStrategyType",
    "PollingConfig",
    "SSEConfig",
    "WaitForCountOptions",
    "WaitForEmailOptions",
    # Data types
    "Attachment",
    "AuthResults",
    "AuthResultsValidation",
    "EmailMetadata",
    "ExportedInbox",
    "InboxData",
    "RawEmail",
    "ServerInfo",
    "SyncStatus",
    # Authentication results
    "SPFResult",
    "SPFStatus",
    "DKIMResult",
    "DKIMStatus",
    "DMARCResult",
    "DMARCStatus",
    "DMARCPolicy",
    "ReverseDNSResult",
    "ReverseDNSStatus",
    # Errors
    "PqInboxError",
    "ApiError",
    "NetworkError",
    "TimeoutError",
    "NotFoundError",
    "InboxNotFoundError",
    "EmailNotFoundError",
    "InboxAlreadyExistsError",
    "InvalidImportDataError",
    "EnvelopeError",
    "InvalidPayloadError",
    "UnsupportedVersionError",
    "InvalidAlgorithmError",
    "InvalidSizeError",
    "DecryptionError",
    "SecurityError",
    "SignatureVerificationError",
    "ServerKeyMismatchError",
    "SSEError",
    "StrategyError",
    # Version
    "__version__",
]
