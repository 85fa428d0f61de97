"""
DID Resolver.

Validates DID syntax and resolves identifiers to DID Documents. Documents for
locally generated keys are registered in memory; other did:web identifiers are
fetched over HTTPS per the did:web method specification.
https://w3c-ccg.github.io/did-method-web/
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

DID_PATTERN = re.compile(r"^did:[a-zA-Z0-9]+:[a-zA-Z0-9.\-:]+$")

DID_CONTEXT = ["https://www.w3.org/ns/did/v1", "https://w3id.org/security/jwk/v1"]


class MalformedIdentifier(ValueError):
    """Raised when a string is not a syntactically valid DID."""


class DIDResolutionError(Exception):
    """Raised when DID resolution fails."""


class DIDNotFoundError(DIDResolutionError):
    """Raised when no DID Document exists for a DID."""


class DIDResolutionTimeout(DIDResolutionError):
    """Raised when the resolution backend does not answer in time."""


def split_did_url(did_url: str) -> tuple[str, str | None]:
    """Split a DID URL into its DID and fragment."""
    if "#" in did_url:
        did, fragment = did_url.split("#", 1)
        return did, fragment
    return did_url, None


def validate_did(did: str) -> str:
    """Check DID syntax and return the DID without fragment.

    Args:
        did: A DID, optionally with a #fragment.

    Returns:
        The bare DID.

    Raises:
        MalformedIdentifier: If the DID does not match
            scheme:method:method-specific-id.
    """
    if not isinstance(did, str):
        raise MalformedIdentifier(f"DID must be a string, got {type(did).__name__}")
    base_did, _ = split_did_url(did)
    if not DID_PATTERN.match(base_did):
        raise MalformedIdentifier(f"Malformed DID: {did!r}")
    return base_did


def is_valid_did(did: Any) -> bool:
    """Return True if ``did`` is a syntactically valid DID."""
    try:
        validate_did(did)
    except MalformedIdentifier:
        return False
    return True


@dataclass
class PublicKeyJWK:
    """EC P-256 public key in JWK format."""

    kty: str
    crv: str
    x: str
    y: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PublicKeyJWK:
        """Create PublicKeyJWK from a JWK dictionary."""
        return cls(
            kty=data.get("kty", ""),
            crv=data.get("crv", ""),
            x=data.get("x", ""),
            y=data.get("y", ""),
        )

    def to_dict(self) -> dict[str, str]:
        return {"kty": self.kty, "crv": self.crv, "x": self.x, "y": self.y}

    def is_valid_p256(self) -> bool:
        """Check if this is a valid P-256 EC key."""
        return self.kty == "EC" and self.crv == "P-256" and bool(self.x) and bool(self.y)


@dataclass
class VerificationMethod:
    """DID Document verification method."""

    id: str
    type: str
    controller: str
    public_key_jwk: PublicKeyJWK | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "controller": self.controller,
        }
        if self.public_key_jwk is not None:
            data["publicKeyJwk"] = self.public_key_jwk.to_dict()
        return data


@dataclass
class DIDDocument:
    """W3C DID Document."""

    id: str
    verification_methods: list[VerificationMethod]
    authentication: list[str] = field(default_factory=list)
    assertion_method: list[str] = field(default_factory=list)

    def get_verification_method(self, method_id: str) -> VerificationMethod | None:
        """Get a verification method by ID."""
        for vm in self.verification_methods:
            if vm.id == method_id:
                return vm
        return None

    def relationship(self, purpose: str) -> list[str]:
        """Verification method IDs listed under a proof purpose."""
        if purpose == "authentication":
            return self.authentication
        if purpose == "assertionMethod":
            return self.assertion_method
        return []

    def to_dict(self) -> dict[str, Any]:
        return {
            "@context": list(DID_CONTEXT),
            "id": self.id,
            "verificationMethod": [vm.to_dict() for vm in self.verification_methods],
            "authentication": list(self.authentication),
            "assertionMethod": list(self.assertion_method),
        }


def create_did_document(did: str, public_key_jwk: PublicKeyJWK, fragment: str = "key-1") -> DIDDocument:
    """Build a DID Document with a single key usable for both proof purposes."""
    validate_did(did)
    method_id = f"{did}#{fragment}"
    return DIDDocument(
        id=did,
        verification_methods=[
            VerificationMethod(
                id=method_id,
                type="JsonWebKey",
                controller=did,
                public_key_jwk=public_key_jwk,
            )
        ],
        authentication=[method_id],
        assertion_method=[method_id],
    )


class DIDResolver:
    """Resolver for locally registered DIDs and the did:web method."""

    def __init__(
        self,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        documents: Iterable[DIDDocument] | None = None,
    ) -> None:
        """Initialize the DID resolver.

        Args:
            timeout: HTTP request timeout in seconds.
            verify_ssl: Whether to verify SSL certificates.
            documents: DID Documents served without network access.
        """
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._documents: dict[str, DIDDocument] = {}
        self._cache: dict[str, DIDDocument] = {}
        for document in documents or ():
            self.register(document)

    def register(self, document: DIDDocument) -> None:
        """Serve ``document`` for its DID without network access."""
        validate_did(document.id)
        self._documents[document.id] = document

    def _did_to_url(self, did: str) -> str:
        """Convert a did:web identifier to its resolution URL.

        did:web:example.com -> https://example.com/.well-known/did.json
        did:web:example.com:path:to:doc -> https://example.com/path/to/doc/did.json

        Args:
            did: The did:web identifier.

        Returns:
            The HTTPS URL to fetch the DID Document.

        Raises:
            DIDResolutionError: If the DID is not a did:web identifier.
        """
        if not did.startswith("did:web:"):
            raise DIDResolutionError(f"Invalid did:web identifier: {did}")

        domain_path = split_did_url(did[8:])[0]
        parts = domain_path.split(":")
        domain = parts[0]

        if len(parts) > 1:
            path = "/" + "/".join(quote(p, safe="") for p in parts[1:]) + "/did.json"
        else:
            path = "/.well-known/did.json"

        return f"https://{domain}{path}"

    def resolve(self, did: str, use_cache: bool = True) -> DIDDocument:
        """Resolve a DID to its DID Document.

        Args:
            did: The DID (a fragment is ignored).
            use_cache: Whether to use cached results for fetched documents.

        Returns:
            The resolved DIDDocument.

        Raises:
            MalformedIdentifier: If the DID syntax is invalid.
            DIDNotFoundError: If no document exists for the DID.
            DIDResolutionTimeout: If fetching the document timed out.
            DIDResolutionError: If resolution fails otherwise.
        """
        base_did = validate_did(did)

        if base_did in self._documents:
            return self._documents[base_did]

        if use_cache and base_did in self._cache:
            return self._cache[base_did]

        if not base_did.startswith("did:web:"):
            raise DIDNotFoundError(f"No DID Document registered for {base_did}")

        url = self._did_to_url(base_did)
        logger.debug("Resolving %s via %s", base_did, url)

        try:
            with httpx.Client(timeout=self.timeout, verify=self.verify_ssl) as client:
                response = client.get(
                    url,
                    headers={"Accept": "application/did+ld+json, application/json"},
                )
                response.raise_for_status()
                data = response.json()

        except httpx.TimeoutException as e:
            raise DIDResolutionTimeout(f"Resolution of {base_did} timed out") from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise DIDNotFoundError(f"DID Document for {base_did} not found") from e
            raise DIDResolutionError(
                f"HTTP error resolving {base_did}: {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise DIDResolutionError(f"Network error resolving {base_did}: {e}") from e
        except ValueError as e:
            raise DIDResolutionError(f"Invalid JSON in DID Document for {base_did}") from e

        doc = self._parse_did_document(data, base_did)

        if use_cache:
            self._cache[base_did] = doc

        return doc

    def resolve_verification_method(
        self, method_id: str
    ) -> tuple[VerificationMethod, DIDDocument]:
        """Resolve a verification method ID (e.g. did:web:example.com#key-1).

        Raises:
            MalformedIdentifier: If the DID part is malformed.
            DIDResolutionError: If the DID or the method cannot be resolved.
        """
        did_document = self.resolve(method_id)
        vm = did_document.get_verification_method(method_id)
        if vm is None:
            raise DIDResolutionError(
                f"Verification method {method_id} not found in DID Document"
            )
        if vm.public_key_jwk is None:
            raise DIDResolutionError(f"No publicKeyJwk in verification method {method_id}")
        if not vm.public_key_jwk.is_valid_p256():
            raise DIDResolutionError(
                f"Public key is not a valid P-256 EC key: {vm.public_key_jwk}"
            )
        return vm, did_document

    def _parse_did_document(self, data: Any, did: str) -> DIDDocument:
        """Parse a DID Document from JSON.

        Args:
            data: The raw JSON data.
            did: The expected DID.

        Returns:
            Parsed DIDDocument.

        Raises:
            DIDResolutionError: If the document is invalid.
        """
        if not isinstance(data, dict):
            raise DIDResolutionError(f"DID Document for {did} is not a JSON object")

        doc_id = data.get("id", "")
        if doc_id != did:
            raise DIDResolutionError(
                f"DID Document id mismatch: expected {did}, got {doc_id}"
            )

        verification_methods: list[VerificationMethod] = []
        for vm_data in data.get("verificationMethod", []):
            public_key_jwk = None
            if "publicKeyJwk" in vm_data:
                public_key_jwk = PublicKeyJWK.from_dict(vm_data["publicKeyJwk"])

            verification_methods.append(
                VerificationMethod(
                    id=vm_data.get("id", ""),
                    type=vm_data.get("type", ""),
                    controller=vm_data.get("controller", ""),
                    public_key_jwk=public_key_jwk,
                )
            )

        return DIDDocument(
            id=doc_id,
            verification_methods=verification_methods,
            authentication=self._parse_verification_relationship(
                data.get("authentication", [])
            ),
            assertion_method=self._parse_verification_relationship(
                data.get("assertionMethod", [])
            ),
        )

    def _parse_verification_relationship(self, items: list[Any]) -> list[str]:
        """Parse a verification relationship array.

        Items can be either strings (references) or objects (embedded methods).
        Only the ID references are kept.
        """
        result: list[str] = []
        for item in items:
            if isinstance(item, str):
                result.append(item)
            elif isinstance(item, dict) and "id" in item:
                result.append(item["id"])
        return result

    def clear_cache(self) -> None:
        """Clear the resolution cache."""
        self._cache.clear()
