"""
Credential Issuer.

Composes credentials (claims, metadata, status entry and schema reference)
and signs them through the Proof Engine.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping, Sequence

from vc_engine.did_resolver import validate_did
from vc_engine.keys import SigningKey
from vc_engine.models import (
    NON_CLAIM_FIELDS,
    VERIFIABLE_CREDENTIAL,
    Credential,
    CredentialSchema,
    CredentialSubject,
    Issuer,
    SchemaViolation,
    as_utc,
    check_claim_value,
    utcnow,
)
from vc_engine.proof import ProofEngine
from vc_engine.statuslist import RevocationRegistry

logger = logging.getLogger(__name__)

DEFAULT_TYPES = (VERIFIABLE_CREDENTIAL, "PersonalInfoCredential")
DEFAULT_VALIDITY = timedelta(days=365)

# Fails DID syntax validation (underscore in the method-specific id).
INVALID_ISSUER_DID = "did:web:invalid_issuer.example.com"


@dataclass
class IssuanceOptions:
    """Per-credential issuance options.

    The error-injection flags produce deliberately defective credentials for
    conformance testing. Each one is independent of the others.
    """

    valid_from: datetime | None = None
    valid_until: datetime | None = None
    validity: timedelta | None = DEFAULT_VALIDITY
    types: Sequence[str] | None = None

    invalid_signature: bool = False
    expired_credential: bool = False
    invalid_issuer: bool = False
    missing_fields: bool = False
    revoked_credential: bool = False


class CredentialIssuer:
    """Issues signed Verifiable Credentials for one issuer DID."""

    def __init__(
        self,
        signing_key: SigningKey,
        registry: RevocationRegistry,
        proof_engine: ProofEngine,
        name: str | None = None,
        image: str | None = None,
        types: Sequence[str] = DEFAULT_TYPES,
        schema_id: str | None = None,
    ) -> None:
        """Initialize the issuer.

        Args:
            signing_key: Assertion key of the issuer DID.
            registry: Revocation registry assigning status indices.
            proof_engine: Engine used to sign credentials.
            name: Display name of the issuer.
            image: Logo reference of the issuer.
            types: Default credential types; the last one is the display type.
            schema_id: Reference of the credential JSON schema.
        """
        if not types:
            raise ValueError("Credential types must not be empty")
        self.signing_key = signing_key
        self.registry = registry
        self.proof_engine = proof_engine
        self.name = name
        self.image = image
        self.types = tuple(types)
        self.schema_id = schema_id

    @property
    def did(self) -> str:
        return self.signing_key.controller

    def issue(
        self,
        subject_did: str,
        claims: Mapping[str, Any],
        options: IssuanceOptions | None = None,
    ) -> Credential:
        """Issue a signed credential to ``subject_did``.

        Args:
            subject_did: DID of the holder.
            claims: Claim name to value mapping.
            options: Validity window, types and error-injection flags.

        Returns:
            The signed credential.

        Raises:
            MalformedIdentifier: If ``subject_did`` is not a valid DID.
            SchemaViolation: If a claim value has an unsupported type.
            SigningFailure: If the credential cannot be signed.
        """
        options = options or IssuanceOptions()
        validate_did(subject_did)

        for name, value in claims.items():
            if name in NON_CLAIM_FIELDS:
                raise SchemaViolation(f"{name!r} is reserved and cannot be used as a claim")
            check_claim_value(name, value)

        types = tuple(options.types) if options.types else self.types
        if VERIFIABLE_CREDENTIAL not in types:
            types = (VERIFIABLE_CREDENTIAL,) + types

        valid_from, valid_until = self._validity_window(options)
        credential_id = f"urn:uuid:{uuid.uuid4()}"

        issuer = Issuer(
            id=INVALID_ISSUER_DID if options.invalid_issuer else self.did,
            name=self.name,
            image=self.image,
        )
        subject = CredentialSubject(
            id=subject_did,
            type=types[-1],
            claims={} if options.missing_fields else dict(claims),
        )

        credential = Credential(
            id=credential_id,
            types=types,
            issuer=issuer,
            valid_from=valid_from,
            valid_until=valid_until,
            subject=subject,
            status=self.registry.status_entry(credential_id),
            schema=CredentialSchema(id=self.schema_id) if self.schema_id else None,
        )

        proof = self.proof_engine.sign(
            credential.to_dict(include_proof=False),
            self.signing_key,
            purpose="assertionMethod",
            invalid_signature=options.invalid_signature,
        )
        credential = credential.with_proof(proof)

        if options.revoked_credential:
            self.registry.revoke(credential_id)

        logger.info("Issued %s %s to %s", credential.display_type, credential_id, subject_did)
        return credential

    def _validity_window(self, options: IssuanceOptions) -> tuple[datetime, datetime | None]:
        now = utcnow()
        validity = options.validity
        if options.expired_credential:
            expired_at = now - timedelta(seconds=1)
            return expired_at - (validity or DEFAULT_VALIDITY), expired_at

        valid_from = as_utc(options.valid_from or now).replace(microsecond=0)
        if options.valid_until is not None:
            valid_until: datetime | None = as_utc(options.valid_until).replace(microsecond=0)
        elif validity is not None:
            valid_until = valid_from + validity
        else:
            valid_until = None
        return valid_from, valid_until
