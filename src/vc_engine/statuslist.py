"""
Revocation registry and StatusList2021 support.

The registry assigns every issued credential a unique status list index and
records revocations. Remote status lists are read through the W3C
StatusList2021 bitstring format.
https://www.w3.org/TR/vc-status-list/
"""

from __future__ import annotations

import base64
import gzip
import logging
import threading
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_LIST_LENGTH = 131072


class CredentialStatus(Enum):
    """Credential status values."""

    VALID = "valid"
    REVOKED = "revoked"
    SUSPENDED = "suspended"
    UNKNOWN = "unknown"


class StatusListError(Exception):
    """Raised when StatusList operations fail."""


@dataclass(frozen=True)
class StatusListEntry:
    """credentialStatus entry of a VC."""

    status_list_credential: str
    status_list_index: int
    status_purpose: str = "revocation"
    id: str | None = None
    type: str = "StatusList2021Entry"

    @classmethod
    def from_dict(cls, item: Any) -> StatusListEntry:
        """Parse a StatusList2021Entry.

        Raises:
            StatusListError: If the entry is malformed.
        """
        if not isinstance(item, dict):
            raise StatusListError("credentialStatus must be an object")
        try:
            return cls(
                id=item.get("id"),
                type=item.get("type", "StatusList2021Entry"),
                status_list_credential=item["statusListCredential"],
                status_list_index=int(item["statusListIndex"]),
                status_purpose=item.get("statusPurpose", "revocation"),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise StatusListError(f"Invalid credentialStatus: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.id is not None:
            data["id"] = self.id
        data.update(
            {
                "type": self.type,
                "statusPurpose": self.status_purpose,
                "statusListIndex": str(self.status_list_index),
                "statusListCredential": self.status_list_credential,
            }
        )
        return data


@dataclass
class StatusCheckResult:
    """Result of a status check."""

    status: CredentialStatus
    purpose: str
    index: int
    message: str


def encode_bitstring(bitstring: bytes) -> str:
    """Encode a bitstring as base64(gzip(bitstring))."""
    return base64.b64encode(gzip.compress(bitstring)).decode("ascii")


def decode_bitstring(encoded_list: str) -> bytes:
    """Decode a W3C StatusList2021 encoded bitstring.

    Decoding: gunzip(base64decode(encoded_list))

    Raises:
        StatusListError: If decoding fails.
    """
    try:
        compressed = base64.b64decode(encoded_list)
        return gzip.decompress(compressed)
    except (ValueError, OSError, EOFError) as e:
        raise StatusListError(f"Failed to decode bitstring: {e}") from e


def get_bit(bitstring: bytes, index: int) -> bool:
    """Get the value of a bit at the given index.

    Per W3C spec, bit 0 is the leftmost (most significant) bit of byte 0.

    Raises:
        StatusListError: If index is out of range.
    """
    total_bits = len(bitstring) * 8
    if index < 0 or index >= total_bits:
        raise StatusListError(f"StatusList index {index} out of range [0, {total_bits})")

    byte_index = index // 8
    bit_position = 7 - (index % 8)  # MSB first per W3C spec

    return bool((bitstring[byte_index] >> bit_position) & 1)


class RevocationRegistry:
    """Issuer-side status list.

    Each credential id moves through Unassigned -> Active -> Revoked. Index
    assignment and revocation are serialized; reads take no lock.
    """

    def __init__(
        self,
        list_url: str | None = None,
        length: int = DEFAULT_LIST_LENGTH,
    ) -> None:
        """Initialize an empty registry.

        Args:
            list_url: Reference of the published status list credential.
            length: Number of bits in the published bitstring.
        """
        self.list_id = f"urn:uuid:{uuid.uuid4()}"
        self.list_url = list_url or self.list_id
        self.length = length
        self._lock = threading.Lock()
        self._indices: dict[str, int] = {}
        self._next_index = 0
        self._revoked: frozenset[int] = frozenset()

    def assign_index(self, credential_id: str) -> int:
        """Assign the next free index to ``credential_id``.

        Raises:
            StatusListError: If the credential already has an index or the
                list is full.
        """
        with self._lock:
            if credential_id in self._indices:
                raise StatusListError(f"Credential {credential_id} already has a status index")
            if self._next_index >= self.length:
                raise StatusListError(f"Status list {self.list_url} is full")
            index = self._next_index
            self._indices[credential_id] = index
            self._next_index += 1
        logger.debug("Assigned status index %d to %s", index, credential_id)
        return index

    def status_entry(self, credential_id: str) -> StatusListEntry:
        """Assign an index and build the credentialStatus entry for it."""
        index = self.assign_index(credential_id)
        return StatusListEntry(
            id=f"{self.list_url}#{index}",
            status_list_credential=self.list_url,
            status_list_index=index,
        )

    def index_of(self, credential_id: str) -> int | None:
        return self._indices.get(credential_id)

    def revoke(self, credential_id: str) -> None:
        """Revoke a credential. Revoking twice is a no-op.

        Raises:
            StatusListError: If the credential was never assigned an index.
        """
        with self._lock:
            index = self._indices.get(credential_id)
            if index is None:
                raise StatusListError(f"Unknown credential {credential_id}")
            if index in self._revoked:
                return
            self._revoked = self._revoked | {index}
        logger.info("Revoked credential %s (index %d)", credential_id, index)

    def is_revoked(self, credential_id: str) -> bool:
        """Return True if the credential has been revoked.

        Unknown credentials are not revoked.
        """
        index = self._indices.get(credential_id)
        return index is not None and index in self._revoked

    def encode_list(self) -> str:
        """Encode the revoked indices as a StatusList2021 bitstring."""
        ba = bytearray(self.length // 8)
        for index in self._revoked:
            ba[index // 8] |= 1 << (7 - (index % 8))
        return encode_bitstring(bytes(ba))

    def status_list_credential(self) -> dict[str, Any]:
        """Publishable (unsigned) StatusList2021Credential for this registry."""
        return {
            "@context": ["https://www.w3.org/ns/credentials/v2"],
            "id": self.list_url,
            "type": ["VerifiableCredential", "StatusList2021Credential"],
            "credentialSubject": {
                "id": f"{self.list_url}#list",
                "type": "StatusList2021",
                "statusPurpose": "revocation",
                "encodedList": self.encode_list(),
            },
        }


class StatusListChecker:
    """Verifies credential status against remote StatusList2021 credentials."""

    def __init__(
        self,
        timeout: float = 30.0,
        verify_ssl: bool = True,
    ) -> None:
        """Initialize the StatusList checker.

        Args:
            timeout: HTTP request timeout in seconds.
            verify_ssl: Whether to verify SSL certificates.
        """
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._cache: dict[str, bytes] = {}  # Cache decoded bitstrings by URL

    def parse_credential_status(self, credential: dict[str, Any]) -> list[StatusListEntry]:
        """Parse credentialStatus from a VC.

        Handles both a single credentialStatus object and an array
        of statuses (e.g. one for revocation, one for suspension).

        Raises:
            StatusListError: If a StatusList2021Entry is malformed.
        """
        status_data = credential.get("credentialStatus")
        if not status_data:
            return []

        if not isinstance(status_data, list):
            status_data = [status_data]

        return [
            StatusListEntry.from_dict(item)
            for item in status_data
            if isinstance(item, dict) and item.get("type") == "StatusList2021Entry"
        ]

    def check_entry(self, entry: StatusListEntry, use_cache: bool = True) -> StatusCheckResult:
        """Check a single status entry against its published list.

        Raises:
            StatusListError: If the list cannot be fetched or decoded.
        """
        bitstring = self._fetch_statuslist(entry.status_list_credential, use_cache=use_cache)
        is_set = get_bit(bitstring, entry.status_list_index)

        if is_set:
            if entry.status_purpose == "revocation":
                status = CredentialStatus.REVOKED
                message = f"Credential is revoked (index {entry.status_list_index})"
            elif entry.status_purpose == "suspension":
                status = CredentialStatus.SUSPENDED
                message = f"Credential is suspended (index {entry.status_list_index})"
            else:
                status = CredentialStatus.UNKNOWN
                message = f"Unknown status purpose: {entry.status_purpose}"
        else:
            status = CredentialStatus.VALID
            message = (
                f"Credential status is valid ({entry.status_purpose}, "
                f"index {entry.status_list_index})"
            )

        return StatusCheckResult(
            status=status,
            purpose=entry.status_purpose,
            index=entry.status_list_index,
            message=message,
        )

    def check_status(
        self,
        credential: dict[str, Any],
        use_cache: bool = True,
    ) -> list[StatusCheckResult]:
        """Check every StatusList2021Entry of a credential.

        Returns:
            List of StatusCheckResult (empty if no credentialStatus).

        Raises:
            StatusListError: If status check fails.
        """
        return [
            self.check_entry(entry, use_cache=use_cache)
            for entry in self.parse_credential_status(credential)
        ]

    def _fetch_statuslist(self, url: str, use_cache: bool = True) -> bytes:
        """Fetch and decode a StatusList credential.

        Raises:
            StatusListError: If fetching or decoding fails.
        """
        if use_cache and url in self._cache:
            return self._cache[url]

        if not url.startswith(("https://", "http://")):
            raise StatusListError(f"Status list {url} is not retrievable over HTTP")

        try:
            with httpx.Client(timeout=self.timeout, verify=self.verify_ssl) as client:
                response = client.get(
                    url,
                    headers={"Accept": "application/vc+ld+json, application/json"},
                )
                response.raise_for_status()
                sl_credential = response.json()

        except httpx.HTTPStatusError as e:
            raise StatusListError(
                f"HTTP error fetching StatusList from {url}: {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise StatusListError(f"Network error fetching StatusList: {e}") from e
        except ValueError as e:
            raise StatusListError(f"Invalid JSON in StatusList from {url}") from e

        subject = sl_credential.get("credentialSubject", {}) if isinstance(sl_credential, dict) else {}
        encoded_list = subject.get("encodedList")

        if not encoded_list:
            raise StatusListError("Missing encodedList in StatusList credential")

        bitstring = decode_bitstring(encoded_list)

        if use_cache:
            self._cache[url] = bitstring

        return bitstring

    def clear_cache(self) -> None:
        """Clear the StatusList cache."""
        self._cache.clear()
