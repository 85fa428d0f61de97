"""
Selective Disclosure Codec (SD-JWT).

An issued credential is turned into a signed envelope carrying salted digests
of its claims plus one disclosure token per claim. The holder later presents
the envelope with any subset of the tokens; the verifier recomputes each
token digest and rebuilds a credential containing only the disclosed claims.

Presentation format: ``<jwt>~<disclosure>~<disclosure>...``
"""

from __future__ import annotations

import hashlib
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from vc_engine.encoding import base64url_decode, base64url_encode
from vc_engine.keys import SigningKey
from vc_engine.models import (
    Credential,
    CredentialSubject,
    Issuer,
    Proof,
    SchemaViolation,
    check_claim_value,
    format_datetime,
    utcnow,
)
from vc_engine.proof import INVALID_SIGNATURE_SENTINEL, ProofEngine
from vc_engine.statuslist import StatusListEntry, StatusListError

logger = logging.getLogger(__name__)

SEPARATOR = "~"
DIGEST_ALGORITHM = "sha-256"
ENVELOPE_TYPE = "vc+sd-jwt"
SD_JWT_PROOF_TYPE = "SdJwtProof"

# Subject identity is never withheld.
ALWAYS_DISCLOSED = ("id",)

EARLIEST_TIMESTAMP = datetime(1970, 1, 1, tzinfo=timezone.utc)
LATEST_TIMESTAMP = datetime(2100, 12, 31, 23, 59, 59, tzinfo=timezone.utc)
FALLBACK_VALIDITY = timedelta(days=365)


class SDJWTError(Exception):
    """Raised when an SD-JWT presentation cannot be decoded."""


class TokenMismatch(SDJWTError):
    """Raised when a disclosure digest is not listed in the envelope."""


def generate_salt() -> str:
    """128-bit random salt, base64url encoded."""
    return base64url_encode(secrets.token_bytes(16))


def digest(token: str) -> str:
    """SHA-256 digest of a disclosure token, base64url encoded."""
    return base64url_encode(hashlib.sha256(token.encode("ascii")).digest())


@dataclass(frozen=True)
class Disclosure:
    """A single disclosed claim: (salt, name, value)."""

    salt: str
    name: str
    value: Any
    token: str

    @classmethod
    def create(cls, name: str, value: Any, salt: str) -> Disclosure:
        token = base64url_encode(
            json.dumps([salt, name, value], ensure_ascii=False).encode("utf-8")
        )
        return cls(salt=salt, name=name, value=value, token=token)

    @classmethod
    def from_token(cls, token: str) -> Disclosure:
        """Decode a disclosure token.

        Raises:
            SDJWTError: If the token is not a base64url JSON [salt, name, value].
        """
        try:
            salt, name, value = json.loads(base64url_decode(token))
        except (ValueError, TypeError) as e:
            raise SDJWTError(f"Malformed disclosure: {token[:20]}") from e
        if not isinstance(salt, str) or not isinstance(name, str):
            raise SDJWTError(f"Malformed disclosure: {token[:20]}")
        return cls(salt=salt, name=name, value=value, token=token)

    @property
    def digest(self) -> str:
        return digest(self.token)


@dataclass(frozen=True)
class SDJWT:
    """Disclosure bundle: signed envelope plus every disclosure token."""

    jwt: str
    disclosures: tuple[str, ...]

    def claim_names(self) -> list[str]:
        return [Disclosure.from_token(token).name for token in self.disclosures]

    def serialize(self) -> str:
        """Full presentation disclosing every claim."""
        return SEPARATOR.join((self.jwt,) + self.disclosures)


def split_presentation(presentation: str) -> tuple[str, list[str]]:
    """Split a presentation string into envelope and disclosure tokens."""
    if not isinstance(presentation, str) or not presentation:
        raise SDJWTError("SD-JWT presentation must be a non-empty string")
    jwt, *tokens = presentation.split(SEPARATOR)
    return jwt, [token for token in tokens if token]


def decode_envelope(jwt: str) -> dict[str, Any]:
    """Decode the envelope payload without verifying its signature.

    Raises:
        SDJWTError: If the envelope is not a JWS carrying an SD-JWT payload.
    """
    try:
        _, payload_b64, _ = jwt.split(".")
        payload = json.loads(base64url_decode(payload_b64))
    except (ValueError, TypeError) as e:
        raise SDJWTError(f"Malformed SD-JWT envelope: {e}") from e

    if not isinstance(payload, dict):
        raise SDJWTError("SD-JWT payload must be a JSON object")
    if payload.get("_sd_alg") != DIGEST_ALGORITHM:
        raise SDJWTError(f"Unsupported digest algorithm: {payload.get('_sd_alg')}")
    if not isinstance(payload.get("_sd"), list):
        raise SDJWTError("SD-JWT payload has no digest list")
    if not all(isinstance(digest, str) for digest in payload["_sd"]):
        raise SDJWTError("SD-JWT digests must be strings")
    subject = payload.get("credentialSubject")
    if subject is not None and not isinstance(subject, dict):
        raise SDJWTError("credentialSubject must be a JSON object")
    return payload


def _timestamp(value: Any, fallback: datetime, name: str) -> datetime:
    """Convert a numeric envelope time into a datetime.

    Values outside [1970, 2100] indicate an upstream encoding bug and are
    replaced by ``fallback``.
    """
    try:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"{name} is not numeric")
        converted = datetime.fromtimestamp(int(value), tz=timezone.utc)
        if not EARLIEST_TIMESTAMP <= converted <= LATEST_TIMESTAMP:
            raise ValueError(f"{name} is out of range")
    except (TypeError, ValueError, OverflowError, OSError) as e:
        logger.warning(
            "Malformed SD-JWT %s %r (%s); falling back to %s",
            name,
            value,
            e,
            format_datetime(fallback),
        )
        return fallback
    return converted


class SDJWTCodec:
    """Encodes credentials into SD-JWT bundles and decodes presentations."""

    def __init__(
        self,
        proof_engine: ProofEngine,
        salt_factory: Callable[[], str] = generate_salt,
    ) -> None:
        self.proof_engine = proof_engine
        self.salt_factory = salt_factory

    def encode(
        self,
        credential: Credential,
        disclosable_claim_names: Iterable[str],
        signing_key: SigningKey,
        invalid_signature: bool | None = None,
    ) -> SDJWT:
        """Encode a credential as an SD-JWT bundle.

        Args:
            credential: The issued credential.
            disclosable_claim_names: Claims to make selectively disclosable.
                Names missing from the subject are skipped.
            signing_key: Issuer key signing the envelope.
            invalid_signature: Emit the sentinel signature. Defaults to
                whether the credential itself carries the sentinel proof.

        Returns:
            The envelope and every disclosure token.

        Raises:
            SigningFailure: If the envelope cannot be signed.
        """
        if invalid_signature is None:
            invalid_signature = (
                credential.proof is not None
                and credential.proof.proof_value == INVALID_SIGNATURE_SENTINEL
            )

        subject = credential.subject.to_dict()
        disclosures: list[Disclosure] = []
        for name in dict.fromkeys(disclosable_claim_names):
            if name == "type" or name not in subject:
                logger.warning("Claim %r is not in credential %s; skipped", name, credential.id)
                continue
            disclosures.append(Disclosure.create(name, subject[name], self.salt_factory()))

        payload: dict[str, Any] = {
            "iss": credential.issuer.id,
            "jti": credential.id,
            "sub": credential.subject.id,
            "type": list(credential.types),
            "issuer": credential.issuer.to_dict(),
            "iat": int(utcnow().timestamp()),
            "nbf": int(credential.valid_from.timestamp()),
        }
        if credential.valid_until is not None:
            payload["exp"] = int(credential.valid_until.timestamp())
        if credential.status is not None:
            payload["credentialStatus"] = credential.status.to_dict()
        payload["credentialSubject"] = {
            "id": credential.subject.id,
            "type": credential.subject.type,
        }
        payload["_sd"] = [d.digest for d in disclosures]
        payload["_sd_alg"] = DIGEST_ALGORITHM

        jwt = self.proof_engine.sign_jws(
            payload,
            signing_key,
            typ=ENVELOPE_TYPE,
            invalid_signature=invalid_signature,
        )
        logger.debug("Encoded %s with %d disclosures", credential.id, len(disclosures))
        return SDJWT(jwt=jwt, disclosures=tuple(d.token for d in disclosures))

    @staticmethod
    def present(bundle: SDJWT, selected_claim_names: Iterable[str]) -> str:
        """Build a presentation revealing only the selected claims.

        The ``id`` disclosure is always kept. Names without a disclosure are
        ignored.
        """
        selected = set(selected_claim_names) | set(ALWAYS_DISCLOSED)
        kept = [
            token
            for token in bundle.disclosures
            if Disclosure.from_token(token).name in selected
        ]
        return SEPARATOR.join([bundle.jwt] + kept)

    def decode(self, presentation: str) -> Credential:
        """Rebuild a credential from a presentation string.

        The envelope signature is not checked here; the verification
        pipeline does that.

        Raises:
            TokenMismatch: If a disclosure digest is not in the envelope.
            SDJWTError: If the presentation is malformed.
        """
        jwt, tokens = split_presentation(presentation)
        payload = decode_envelope(jwt)
        digests = set(payload["_sd"])

        claims: dict[str, Any] = {}
        for token in tokens:
            disclosure = Disclosure.from_token(token)
            if disclosure.digest not in digests:
                raise TokenMismatch(
                    f"Disclosure for {disclosure.name!r} does not match any digest in the envelope"
                )
            if disclosure.name in claims:
                raise SDJWTError(f"Claim {disclosure.name!r} disclosed twice")
            claims[disclosure.name] = disclosure.value

        subject_data = payload.get("credentialSubject") or {}
        subject_id = payload.get("sub") or subject_data.get("id")
        if claims.get("id", subject_id) != subject_id:
            raise TokenMismatch("Disclosed id does not match the envelope subject")
        claims.pop("id", None)

        try:
            for name, value in claims.items():
                check_claim_value(name, value)
            subject = CredentialSubject(
                id=subject_id,
                type=subject_data.get("type") or payload["type"][-1],
                claims=claims,
            )
            issuer = Issuer.from_dict(payload.get("issuer") or payload.get("iss"))
            status = (
                StatusListEntry.from_dict(payload["credentialStatus"])
                if payload.get("credentialStatus")
                else None
            )
            if not isinstance(payload["type"], list):
                raise TypeError("type must be a list")
            types = tuple(payload["type"])
            credential_id = payload["jti"]
        except (SchemaViolation, StatusListError, KeyError, IndexError, TypeError) as e:
            raise SDJWTError(f"Incomplete SD-JWT payload: {e}") from e

        now = utcnow()
        valid_from = _timestamp(payload.get("nbf"), now, "nbf")
        valid_until = None
        if "exp" in payload:
            valid_until = _timestamp(payload["exp"], now + FALLBACK_VALIDITY, "exp")

        try:
            header = json.loads(base64url_decode(jwt.split(".")[0]))
        except ValueError as e:
            raise SDJWTError(f"Malformed SD-JWT header: {e}") from e
        if not isinstance(header, dict):
            raise SDJWTError("SD-JWT header must be a JSON object")
        proof = Proof(
            type=SD_JWT_PROOF_TYPE,
            created=format_datetime(_timestamp(payload.get("iat"), now, "iat")),
            verification_method=str(header.get("kid", "")),
            proof_purpose="assertionMethod",
            cryptosuite=str(header.get("alg", "")),
            proof_value=presentation,
        )

        return Credential(
            id=credential_id,
            types=types,
            issuer=issuer,
            valid_from=valid_from,
            valid_until=valid_until,
            subject=subject,
            status=status,
            proof=proof,
        )
