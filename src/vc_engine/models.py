"""
Credential data model.

Credentials, proofs and presentations are frozen dataclasses that serialize
to the W3C VC Data Model 2.0 JSON shape. Parsing doubles as the structural
schema check: ``from_dict`` raises ``SchemaViolation`` on any deviation.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Union

from vc_engine.did_resolver import MalformedIdentifier, validate_did
from vc_engine.statuslist import StatusListEntry, StatusListError

CREDENTIALS_CONTEXT = [
    "https://www.w3.org/ns/credentials/v2",
    "https://www.w3.org/ns/credentials/examples/v2",
]

VERIFIABLE_CREDENTIAL = "VerifiableCredential"
VERIFIABLE_PRESENTATION = "VerifiablePresentation"

# Subject fields that are never subject to disclosure.
REQUIRED_SUBJECT_FIELDS = ("id", "type")
TECHNICAL_SUBJECT_FIELDS = ("presentationFormat",)
NON_CLAIM_FIELDS = REQUIRED_SUBJECT_FIELDS + TECHNICAL_SUBJECT_FIELDS

SELECTIVELY_DISCLOSED = "selectivelyDisclosed"

# Top-level credential members with a model field; everything else is kept as-is.
CREDENTIAL_MEMBERS = (
    "@context",
    "id",
    "type",
    "issuer",
    "validFrom",
    "validUntil",
    "credentialSubject",
    "credentialStatus",
    "credentialSchema",
    "proof",
    SELECTIVELY_DISCLOSED,
)

ClaimValue = Union[str, int, float, bool, List["ClaimValue"], Dict[str, "ClaimValue"]]


class SchemaViolation(ValueError):
    """Raised when a document does not have the credential/presentation shape."""


def utcnow() -> datetime:
    """Current UTC time truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_datetime(value: datetime) -> str:
    """Format a datetime as an ISO-8601 UTC timestamp (``...Z``)."""
    return as_utc(value).strftime("%Y-%m-%dT%H:%M:%SZ")


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Raises:
        SchemaViolation: If the value is not a timestamp.
    """
    if not isinstance(value, str):
        raise SchemaViolation(f"Timestamp must be a string, got {value!r}")
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise SchemaViolation(f"Invalid timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _timestamp_text(value: datetime, text: str | None) -> str:
    """Return the parsed text of ``value`` if it still denotes it, else the canonical form."""
    if text is not None and parse_datetime(text) == as_utc(value):
        return text
    return format_datetime(value)


def _unmodelled(data: dict[str, Any], members: tuple[str, ...]) -> dict[str, Any]:
    return {k: copy.deepcopy(v) for k, v in data.items() if k not in members}


def check_claim_value(name: str, value: Any) -> None:
    """Ensure a claim value is a string, number, boolean, list or mapping.

    Raises:
        SchemaViolation: If the value (or a nested value) has another type.
    """
    if isinstance(value, (str, bool, int, float)):
        return
    if isinstance(value, list):
        for item in value:
            check_claim_value(name, item)
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise SchemaViolation(f"Claim {name!r} has a non-string key {key!r}")
            check_claim_value(f"{name}.{key}", item)
        return
    raise SchemaViolation(f"Claim {name!r} has unsupported value type {type(value).__name__}")


def _require(data: dict[str, Any], key: str, kind: type | tuple[type, ...], where: str) -> Any:
    if key not in data:
        raise SchemaViolation(f"Missing {key} in {where}")
    value = data[key]
    if not isinstance(value, kind):
        raise SchemaViolation(f"Invalid {key} in {where}")
    return value


@dataclass(frozen=True)
class Issuer:
    """Credential issuer."""

    id: str
    name: str | None = None
    image: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
    # Parsed from a bare DID string rather than an object.
    compact: bool = field(default=False, compare=False)

    @classmethod
    def from_dict(cls, data: Any) -> Issuer:
        if isinstance(data, str):
            return cls(id=data, compact=True)
        if not isinstance(data, dict):
            raise SchemaViolation("issuer must be a string or an object")
        return cls(
            id=_require(data, "id", str, "issuer"),
            name=data.get("name"),
            image=data.get("image"),
            extra=_unmodelled(data, ("id", "name", "image")),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.name is not None:
            data["name"] = self.name
        if self.image is not None:
            data["image"] = self.image
        data.update(copy.deepcopy(self.extra))
        return data

    def to_json(self) -> str | dict[str, Any]:
        """Credential ``issuer`` member: the bare DID when parsed from one."""
        if self.compact and self.name is None and self.image is None and not self.extra:
            return self.id
        return self.to_dict()


@dataclass(frozen=True)
class CredentialSubject:
    """Holder DID, display type and the open claim mapping."""

    id: str
    type: str
    claims: dict[str, ClaimValue] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> CredentialSubject:
        if not isinstance(data, dict):
            raise SchemaViolation("credentialSubject must be an object")
        subject_id = _require(data, "id", str, "credentialSubject")
        subject_type = _require(data, "type", str, "credentialSubject")
        claims = {k: v for k, v in data.items() if k not in REQUIRED_SUBJECT_FIELDS}
        for name, value in claims.items():
            check_claim_value(name, value)
        return cls(id=subject_id, type=subject_type, claims=copy.deepcopy(claims))

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "type": self.type}
        data.update(copy.deepcopy(self.claims))
        return data

    def claim_names(self) -> list[str]:
        """Names of disclosable claims (technical fields excluded)."""
        return [name for name in self.claims if name not in TECHNICAL_SUBJECT_FIELDS]


@dataclass(frozen=True)
class CredentialSchema:
    id: str
    type: str | None = "JsonSchema"
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.type is not None:
            data["type"] = self.type
        data.update(copy.deepcopy(self.extra))
        return data


@dataclass(frozen=True)
class Proof:
    """Detached signature record."""

    type: str
    created: str
    verification_method: str
    proof_purpose: str
    cryptosuite: str
    proof_value: str
    challenge: str | None = None
    domain: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Proof:
        if not isinstance(data, dict):
            raise SchemaViolation("proof must be an object")
        return cls(
            type=_require(data, "type", str, "proof"),
            created=_require(data, "created", str, "proof"),
            verification_method=_require(data, "verificationMethod", str, "proof"),
            proof_purpose=_require(data, "proofPurpose", str, "proof"),
            cryptosuite=data.get("cryptosuite", ""),
            proof_value=_require(data, "proofValue", str, "proof"),
            challenge=data.get("challenge"),
            domain=data.get("domain"),
        )

    def config(self) -> dict[str, Any]:
        """Proof options covered by the signature (everything but proofValue)."""
        data: dict[str, Any] = {
            "type": self.type,
            "created": self.created,
            "verificationMethod": self.verification_method,
            "proofPurpose": self.proof_purpose,
            "cryptosuite": self.cryptosuite,
        }
        if self.challenge is not None:
            data["challenge"] = self.challenge
        if self.domain is not None:
            data["domain"] = self.domain
        return data

    def to_dict(self) -> dict[str, Any]:
        data = self.config()
        data["proofValue"] = self.proof_value
        return data


@dataclass(frozen=True)
class Credential:
    """Verifiable Credential."""

    id: str
    types: tuple[str, ...]
    issuer: Issuer
    valid_from: datetime
    subject: CredentialSubject
    valid_until: datetime | None = None
    status: StatusListEntry | None = None
    schema: CredentialSchema | None = None
    proof: Proof | None = None
    context: tuple[str, ...] = tuple(CREDENTIALS_CONTEXT)
    selectively_disclosed: bool = False
    extra: dict[str, Any] = field(default_factory=dict)
    valid_from_text: str | None = field(default=None, compare=False, repr=False)
    valid_until_text: str | None = field(default=None, compare=False, repr=False)

    @property
    def display_type(self) -> str:
        return self.types[-1]

    @classmethod
    def from_dict(cls, data: Any) -> Credential:
        """Parse and structurally validate a credential document.

        Raises:
            SchemaViolation: If the document does not have the credential shape.
        """
        if not isinstance(data, dict):
            raise SchemaViolation("Credential must be a JSON object")

        context = _require(data, "@context", list, "credential")
        types = _require(data, "type", list, "credential")
        if not types or not all(isinstance(t, str) for t in types):
            raise SchemaViolation("type must be a non-empty list of strings")
        if VERIFIABLE_CREDENTIAL not in types:
            raise SchemaViolation(f"type must include '{VERIFIABLE_CREDENTIAL}'")

        if "issuer" not in data:
            raise SchemaViolation("Missing issuer")
        issuer = Issuer.from_dict(data["issuer"])

        if "credentialSubject" not in data:
            raise SchemaViolation("Missing credentialSubject")
        subject = CredentialSubject.from_dict(data["credentialSubject"])

        valid_from_text = _require(data, "validFrom", str, "credential")
        valid_from = parse_datetime(valid_from_text)
        valid_until_text = data.get("validUntil")
        valid_until = parse_datetime(valid_until_text) if valid_until_text is not None else None

        status = None
        if data.get("credentialStatus") is not None:
            try:
                status = StatusListEntry.from_dict(data["credentialStatus"])
            except StatusListError as e:
                raise SchemaViolation(str(e)) from e

        schema = None
        if data.get("credentialSchema") is not None:
            schema_data = data["credentialSchema"]
            if not isinstance(schema_data, dict):
                raise SchemaViolation("credentialSchema must be an object")
            schema = CredentialSchema(
                id=_require(schema_data, "id", str, "credentialSchema"),
                type=schema_data.get("type"),
                extra=_unmodelled(schema_data, ("id", "type")),
            )

        proof = Proof.from_dict(data["proof"]) if data.get("proof") is not None else None

        return cls(
            id=_require(data, "id", str, "credential"),
            types=tuple(types),
            issuer=issuer,
            valid_from=valid_from,
            valid_until=valid_until,
            subject=subject,
            status=status,
            schema=schema,
            proof=proof,
            context=tuple(context),
            selectively_disclosed=data.get(SELECTIVELY_DISCLOSED) is True,
            extra=_unmodelled(data, CREDENTIAL_MEMBERS),
            valid_from_text=valid_from_text,
            valid_until_text=valid_until_text,
        )

    def to_dict(self, include_proof: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "@context": list(self.context),
            "id": self.id,
            "type": list(self.types),
            "issuer": self.issuer.to_json(),
            "validFrom": _timestamp_text(self.valid_from, self.valid_from_text),
        }
        if self.valid_until is not None:
            data["validUntil"] = _timestamp_text(self.valid_until, self.valid_until_text)
        data.update(copy.deepcopy(self.extra))
        data["credentialSubject"] = self.subject.to_dict()
        if self.status is not None:
            data["credentialStatus"] = self.status.to_dict()
        if self.schema is not None:
            data["credentialSchema"] = self.schema.to_dict()
        if self.selectively_disclosed:
            data[SELECTIVELY_DISCLOSED] = True
        if include_proof and self.proof is not None:
            data["proof"] = self.proof.to_dict()
        return data

    def with_proof(self, proof: Proof) -> Credential:
        return replace(self, proof=proof)


@dataclass(frozen=True)
class Presentation:
    """Verifiable Presentation wrapping one or more credentials."""

    id: str
    holder: str
    credentials: tuple[Credential, ...]
    proof: Proof | None = None
    context: tuple[str, ...] = tuple(CREDENTIALS_CONTEXT)

    @classmethod
    def from_dict(cls, data: Any) -> Presentation:
        """Parse and structurally validate a presentation document.

        Raises:
            SchemaViolation: If the document does not have the presentation shape.
        """
        if not isinstance(data, dict):
            raise SchemaViolation("Presentation must be a JSON object")
        types = _require(data, "type", list, "presentation")
        if VERIFIABLE_PRESENTATION not in types:
            raise SchemaViolation(f"type must include '{VERIFIABLE_PRESENTATION}'")
        holder = _require(data, "holder", str, "presentation")
        try:
            validate_did(holder)
        except MalformedIdentifier as e:
            raise SchemaViolation(f"Invalid holder: {e}") from e
        embedded = _require(data, "verifiableCredential", list, "presentation")
        if not embedded:
            raise SchemaViolation("verifiableCredential must not be empty")
        return cls(
            id=_require(data, "id", str, "presentation"),
            holder=holder,
            credentials=tuple(Credential.from_dict(item) for item in embedded),
            proof=Proof.from_dict(data["proof"]) if data.get("proof") is not None else None,
            context=tuple(_require(data, "@context", list, "presentation")),
        )

    def to_dict(self, include_proof: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "@context": list(self.context),
            "type": [VERIFIABLE_PRESENTATION],
            "id": self.id,
            "holder": self.holder,
            "verifiableCredential": [c.to_dict() for c in self.credentials],
        }
        if include_proof and self.proof is not None:
            data["proof"] = self.proof.to_dict()
        return data

    def with_proof(self, proof: Proof) -> Presentation:
        return replace(self, proof=proof)
