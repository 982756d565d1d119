"""PqInboxClient - Main entry point for pqinbox."""

from __future__ import annotations

import json
import logging
from dataclasses import fields
from pathlib import Path
from typing import Any

from .constants import MAX_TTL_SECONDS, MIN_TTL_SECONDS
from .crypto import (
    Keypair,
    compute_inbox_hash,
    from_base64url,
    generate_keypair,
    validate_keypair,
)
from .crypto.constants import (
    EXPORT_VERSION,
    MLDSA65_PUBLIC_KEY_SIZE,
    MLKEM768_SECRET_KEY_SIZE,
)
from .errors import (
    InboxAlreadyExistsError,
    InboxNotFoundError,
    InvalidImportDataError,
    PqInboxError,
    UnsupportedVersionError,
)
from .http import ApiClient
from .inbox import Inbox
from .monitor import InboxMonitor
from .types import (
    ClientConfig,
    CreateInboxOptions,
    ExportedInbox,
    InboxEncryptionMode,
    ServerInfo,
)
from .utils import parse_iso_timestamp, validate_ttl

logger = logging.getLogger("pqinbox")


class PqInboxClient:
    """Main client for creating and observing encrypted test inboxes.

    Example:
        ```python
        async with PqInboxClient(api_key="your-api-key") as client:
            inbox = await client.create_inbox()
            email = await inbox.wait_for_email()
            print(f"Received: {email.subject}")
        ```
    """

    def __init__(self, api_key: str, **options: Any) -> None:
        """Initialize the client.

        Args:
            api_key: API key for authentication.
            **options: Any other ``ClientConfig`` field, e.g. ``base_url``,
                ``timeout``, ``strategy``, ``polling``, ``sse`` or ``on_error``.
        """
        self._config = ClientConfig(api_key=api_key, **options)
        self._api_client = ApiClient(self._config)
        self._server_info: ServerInfo | None = None
        self._inboxes: dict[str, Inbox] = {}

    @classmethod
    def from_config(cls, config: ClientConfig) -> PqInboxClient:
        """Create a client from a prepared configuration."""
        return cls(**{f.name: getattr(config, f.name) for f in fields(config)})

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def inboxes(self) -> list[Inbox]:
        """Inboxes created or imported through this client."""
        return list(self._inboxes.values())

    async def __aenter__(self) -> PqInboxClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Stop delivery for every inbox and release the HTTP client.

        Inboxes stay on the server until their TTL runs out.
        """
        inboxes = list(self._inboxes.values())
        self._inboxes.clear()
        for inbox in inboxes:
            await inbox.close()
        await self._api_client.close()

    async def check_key(self) -> bool:
        """Validate the API key."""
        return await self._api_client.check_key()

    async def get_server_info(self) -> ServerInfo:
        """Get server information and capabilities. Cached after the first call."""
        if self._server_info is None:
            self._server_info = await self._api_client.get_server_info()
        return self._server_info

    def _should_encrypt_inbox(
        self, server_info: ServerInfo, encryption: InboxEncryptionMode | None
    ) -> bool:
        """Explicit requests win (the server validates them); otherwise follow the policy."""
        if encryption == "plain":
            return False
        if encryption == "encrypted":
            return True
        return server_info.encryption_policy in ("always", "enabled")

    async def create_inbox(self, options: CreateInboxOptions | None = None) -> Inbox:
        """Create a temporary inbox on the server.

        For encrypted inboxes a fresh ML-KEM-768 keypair is generated and the
        server's signing key returned at creation is pinned for the inbox's
        lifetime.

        Raises:
            ValueError: If the TTL is out of bounds.
        """
        options = options or CreateInboxOptions()
        validate_ttl(options.ttl, MIN_TTL_SECONDS, MAX_TTL_SECONDS)

        server_info = await self.get_server_info()
        should_encrypt = self._should_encrypt_inbox(server_info, options.encryption)

        keypair: Keypair | None = generate_keypair() if should_encrypt else None

        inbox_data = await self._api_client.create_inbox(
            keypair.public_key_b64 if keypair is not None else None,
            ttl=options.ttl,
            email_address=options.email_address,
            email_auth=options.email_auth,
            encryption=options.encryption,
        )

        if inbox_data.encrypted and keypair is None:
            raise PqInboxError("Server created an encrypted inbox without a client key")

        server_sig_pk = None
        if inbox_data.encrypted:
            server_sig_pk = inbox_data.server_sig_pk or server_info.server_sig_pk

        inbox = Inbox(
            email_address=inbox_data.email_address,
            expires_at=parse_iso_timestamp(inbox_data.expires_at),
            inbox_hash=inbox_data.inbox_hash,
            encrypted=inbox_data.encrypted,
            email_auth=inbox_data.email_auth,
            server_sig_pk=server_sig_pk,
            _keypair=keypair if inbox_data.encrypted else None,
            _api_client=self._api_client,
            _config=self._config,
        )
        self._inboxes[inbox.email_address] = inbox
        logger.debug("Created inbox %s (encrypted=%s)", inbox.email_address, inbox.encrypted)
        return inbox

    async def delete_all_inboxes(self) -> int:
        """Delete every inbox owned by the API key, not just this client's.

        Returns:
            How many inboxes the server deleted.
        """
        inboxes = list(self._inboxes.values())
        self._inboxes.clear()
        for inbox in inboxes:
            await inbox.close()
        return await self._api_client.delete_all_inboxes()

    async def delete_inbox(self, email_address: str) -> None:
        """Delete a specific inbox by email address."""
        inbox = self._inboxes.pop(email_address, None)
        if inbox is not None:
            await inbox.delete()
        else:
            await self._api_client.delete_inbox(email_address)

    def monitor_inboxes(self, inboxes: list[Inbox]) -> InboxMonitor:
        """Create a monitor that fans in new emails from several inboxes."""
        return InboxMonitor(inboxes, on_error=self._config.on_error)

    def export_inbox(self, inbox_or_email: Inbox | str) -> ExportedInbox:
        """Snapshot an inbox so another process can import it.

        The result holds the inbox secret key for encrypted inboxes.

        Raises:
            InboxNotFoundError: If the inbox is not known to this client.
        """
        if isinstance(inbox_or_email, str):
            inbox = self._inboxes.get(inbox_or_email)
            if inbox is None:
                raise InboxNotFoundError(f"Inbox not found: {inbox_or_email}")
        else:
            inbox = inbox_or_email
        return inbox.export()

    async def export_inbox_to_file(
        self, inbox_or_email: Inbox | str, file_path: str | Path
    ) -> None:
        """Write ``export_inbox`` output as camelCase JSON. The file holds key material."""
        exported = self.export_inbox(inbox_or_email)
        Path(file_path).write_text(json.dumps(exported.to_dict(), indent=2))

    async def import_inbox(self, data: ExportedInbox) -> Inbox:
        """Adopt an inbox exported by another client.

        The public key is re-derived from the secret key, and the server must
        still hold the inbox.

        Raises:
            UnsupportedVersionError: If the export version is not supported.
            InvalidImportDataError: If the import data is invalid.
            InboxAlreadyExistsError: If the inbox is already known to this client.
            InboxNotFoundError: If the server no longer has the inbox.
        """
        server_info = await self.get_server_info()
        keypair = self._validate_import_data(data, server_info)

        if data.email_address in self._inboxes:
            raise InboxAlreadyExistsError(f"Inbox {data.email_address} already exists")

        inbox = Inbox(
            email_address=data.email_address,
            expires_at=parse_iso_timestamp(data.expires_at),
            inbox_hash=data.inbox_hash,
            encrypted=data.encrypted,
            email_auth=data.email_auth,
            server_sig_pk=data.server_sig_pk if data.encrypted else None,
            _keypair=keypair,
            _api_client=self._api_client,
            _config=self._config,
        )

        # Raises InboxNotFoundError if the server no longer has the inbox
        await inbox.get_sync_status()

        self._inboxes[inbox.email_address] = inbox
        return inbox

    async def import_inbox_from_file(self, file_path: str | Path) -> Inbox:
        """Import an inbox from a JSON file written by ``export_inbox_to_file``.

        Raises:
            InvalidImportDataError: If the JSON is invalid or missing required fields.
        """
        try:
            data = json.loads(Path(file_path).read_text())
        except json.JSONDecodeError as e:
            raise InvalidImportDataError(f"Invalid JSON in import file: {e}") from e
        if not isinstance(data, dict):
            raise InvalidImportDataError("Import file must contain a JSON object")

        try:
            exported = ExportedInbox.from_dict(data)
        except KeyError as e:
            raise InvalidImportDataError(f"Missing required field in import file: {e}") from e

        return await self.import_inbox(exported)

    def _validate_import_data(
        self, data: ExportedInbox, server_info: ServerInfo
    ) -> Keypair | None:
        """Validate imported inbox data and rebuild the keypair.

        Validation steps (in order):
        1. version == 1
        2. required fields present
        3. emailAddress contains exactly one @
        4. secretKey (2400 bytes) and serverSigPk (1952 bytes) for encrypted inboxes
        5. inboxHash matches the re-derived public key
        6. timestamps
        7. serverSigPk matches the current server key

        Returns:
            The rebuilt keypair, or None for plain inboxes.
        """
        # Step 1: version
        if data.version != EXPORT_VERSION:
            raise UnsupportedVersionError(
                f"Unsupported export version: {data.version}, expected {EXPORT_VERSION}"
            )

        # Step 2: required fields
        required: list[tuple[str, str | None]] = [
            ("emailAddress", data.email_address),
            ("expiresAt", data.expires_at),
            ("inboxHash", data.inbox_hash),
        ]
        if data.encrypted:
            required += [("serverSigPk", data.server_sig_pk), ("secretKey", data.secret_key)]
        for name, value in required:
            if not value:
                suffix = " for encrypted inbox" if name in ("serverSigPk", "secretKey") else ""
                raise InvalidImportDataError(f"Missing {name}{suffix}")

        # Step 3: exactly one @
        at_count = data.email_address.count("@")
        if at_count != 1:
            raise InvalidImportDataError(
                f"Invalid emailAddress: must contain exactly one '@', found {at_count}"
            )

        keypair: Keypair | None = None
        if data.encrypted:
            # Step 4: key sizes
            secret_key = self._decode_key(data.secret_key, "secretKey", MLKEM768_SECRET_KEY_SIZE)
            self._decode_key(data.server_sig_pk, "serverSigPk", MLDSA65_PUBLIC_KEY_SIZE)

            # Step 5: public key re-derived at offset 1152 must hash to inboxHash
            keypair = Keypair.from_secret_key(secret_key)
            if not validate_keypair(keypair):
                raise InvalidImportDataError("Invalid keypair in import data")
            if compute_inbox_hash(keypair.public_key) != data.inbox_hash:
                raise InvalidImportDataError("inboxHash does not match the secret key")

        # Step 6: timestamps
        try:
            parse_iso_timestamp(data.expires_at)
        except ValueError as e:
            raise InvalidImportDataError(f"Invalid expiresAt format: {e}") from e
        if data.exported_at:
            try:
                parse_iso_timestamp(data.exported_at)
            except ValueError as e:
                raise InvalidImportDataError(f"Invalid exportedAt format: {e}") from e

        # Step 7: pinned key must be the server's current key
        if data.encrypted and data.server_sig_pk != server_info.server_sig_pk:
            raise InvalidImportDataError("Server signing public key does not match current server")

        return keypair

    @staticmethod
    def _decode_key(value: str | None, name: str, expected_size: int) -> bytes:
        try:
            decoded = from_base64url(value or "")
        except ValueError as e:
            raise InvalidImportDataError(f"Invalid {name} encoding: {e}") from e
        if len(decoded) != expected_size:
            raise InvalidImportDataError(
                f"Invalid {name} length: {len(decoded)} bytes, expected {expected_size}"
            )
        return decoded
