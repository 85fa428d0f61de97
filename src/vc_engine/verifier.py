"""
Verification Pipeline.

Verifies plain Verifiable Credentials, SD-JWT presentations and Verifiable
Presentations. Five independent checks always run:

1. schema  - structural conformance
2. expiry  - now within [validFrom, validUntil]
3. status  - revocation registry / StatusList2021
4. proof   - cryptographic proof(s), made by the issuer or holder
5. issuer  - issuer DID resolution

No check raises; every failure becomes a flag plus an error message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union

from vc_engine.did_resolver import (
    DIDNotFoundError,
    DIDResolutionError,
    DIDResolutionTimeout,
    DIDResolver,
    MalformedIdentifier,
    split_did_url,
    validate_did,
)
from vc_engine.models import (
    SELECTIVELY_DISCLOSED,
    Credential,
    Presentation,
    SchemaViolation,
    format_datetime,
    parse_datetime,
    utcnow,
)
from vc_engine.proof import ProofEngine, ProofVerificationResult
from vc_engine.sd_jwt import (
    SDJWT,
    SD_JWT_PROOF_TYPE,
    SEPARATOR,
    SDJWTCodec,
    SDJWTError,
    TokenMismatch,
    split_presentation,
)
from vc_engine.statuslist import (
    CredentialStatus,
    RevocationRegistry,
    StatusListChecker,
    StatusListError,
)

logger = logging.getLogger(__name__)

SELF_ATTESTATION_PURPOSES = {"assertionMethod", "authentication"}

VerifiableInput = Union[dict, str, Credential, Presentation, SDJWT]


class CredentialFormat(Enum):
    """Presentation formats understood by the pipeline."""

    VC = "vc"
    SD_JWT = "sd-jwt"
    VP = "vp"


def detect_format(document: Any) -> CredentialFormat:
    """Detect the format of a verification input by structural inspection."""
    if isinstance(document, Presentation):
        return CredentialFormat.VP
    if isinstance(document, (SDJWT, str)):
        return CredentialFormat.SD_JWT
    if isinstance(document, Credential):
        document = document.to_dict()
    if isinstance(document, dict):
        if isinstance(document.get("verifiableCredential"), list):
            return CredentialFormat.VP
        proof = document.get("proof")
        if isinstance(proof, dict) and (
            proof.get("type") == SD_JWT_PROOF_TYPE
            or SEPARATOR in str(proof.get("proofValue", ""))
        ):
            return CredentialFormat.SD_JWT
    return CredentialFormat.VC


@dataclass
class VerificationChecks:
    """Outcome of the five verification checks."""

    schema_valid: bool = False
    not_expired: bool = False
    not_revoked: bool = False
    proof_valid: bool = False
    issuer_valid: bool = False

    def all_passed(self) -> bool:
        return (
            self.schema_valid
            and self.not_expired
            and self.not_revoked
            and self.proof_valid
            and self.issuer_valid
        )

    def to_dict(self) -> dict[str, bool]:
        return {
            "schemaValid": self.schema_valid,
            "notExpired": self.not_expired,
            "notRevoked": self.not_revoked,
            "proofValid": self.proof_valid,
            "issuerValid": self.issuer_valid,
        }


@dataclass
class VerificationDetails:
    """Technical detail for audit and debugging views."""

    issuer_document: dict[str, Any] | None = None
    validity: dict[str, Any] | None = None
    revocation: list[dict[str, Any]] | None = None
    proof: dict[str, Any] | None = None
    disclosed_claims: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "issuerDocument": self.issuer_document,
            "validity": self.validity,
            "revocation": self.revocation,
            "proof": self.proof,
            "disclosedClaims": self.disclosed_claims,
        }


@dataclass
class VerificationResult:
    """Complete verification result."""

    format: CredentialFormat
    checks: VerificationChecks = field(default_factory=VerificationChecks)
    errors: list[str] = field(default_factory=list)
    credential_id: str | None = None
    issuer: str | None = None

    @property
    def is_valid(self) -> bool:
        """Check if the credential is fully valid."""
        return self.checks.all_passed()

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "format": self.format.value,
            "credentialId": self.credential_id,
            "issuer": self.issuer,
            "checks": self.checks.to_dict(),
            "errors": list(self.errors),
        }


@dataclass
class DetailedVerificationResult(VerificationResult):
    details: VerificationDetails = field(default_factory=VerificationDetails)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["details"] = self.details.to_dict()
        return data


@dataclass
class _Check:
    passed: bool
    errors: list[str] = field(default_factory=list)


def _extract_issuer(credential: dict[str, Any]) -> str | None:
    """Extract issuer ID from credential."""
    issuer = credential.get("issuer")
    if isinstance(issuer, str):
        return issuer
    if isinstance(issuer, dict):
        return issuer.get("id")
    return None


def _label(credential: dict[str, Any]) -> str:
    return str(credential.get("id") or "credential")


def _issuer_binding_errors(label: str, issuer_id: Any, verification_method: Any) -> list[str]:
    """Check that a credential proof was made with a key of its issuer.

    A malformed issuer DID is left to the issuer check.
    """
    try:
        issuer_did = validate_did(issuer_id)
    except MalformedIdentifier:
        return []
    signer = split_did_url(str(verification_method or ""))[0]
    if signer != issuer_did:
        return [
            f"Credential {label} proof not made by issuer {issuer_did} "
            f"(signed by {signer or 'unknown'})"
        ]
    return []


class CredentialVerifier:
    """Verifiable Credential / Presentation verifier.

    Supports:
    - Data Integrity Proofs with ecdsa-jcs-2022 cryptosuite
    - SD-JWT presentations with ES256 envelopes
    - Verifiable Presentations with holder binding
    - Revocation registry and StatusList2021 status checks
    """

    def __init__(
        self,
        did_resolver: DIDResolver | None = None,
        registry: RevocationRegistry | None = None,
        proof_engine: ProofEngine | None = None,
        status_checker: StatusListChecker | None = None,
        sd_codec: SDJWTCodec | None = None,
    ) -> None:
        """Initialize the verifier.

        Args:
            did_resolver: DID resolver. Created if not provided.
            registry: Local revocation registry consulted by credential id.
            proof_engine: Proof engine. Created over ``did_resolver`` if not
                provided.
            status_checker: Checker for remote StatusList2021 lists. Remote
                lists are not consulted when omitted.
            sd_codec: SD-JWT codec. Created if not provided.
        """
        self.did_resolver = did_resolver or DIDResolver()
        self.registry = registry or RevocationRegistry()
        self.proof_engine = proof_engine or ProofEngine(self.did_resolver)
        self.status_checker = status_checker
        self.sd_codec = sd_codec or SDJWTCodec(self.proof_engine)

    def verify(self, document: VerifiableInput, now: datetime | None = None) -> VerificationResult:
        """Verify a credential, SD-JWT presentation or presentation.

        Args:
            document: The input (JSON document, model object or SD-JWT string).
            now: Reference time for the expiry check. Defaults to the current time.

        Returns:
            VerificationResult with all five checks.
        """
        detailed = self.verify_detailed(document, now)
        return VerificationResult(
            format=detailed.format,
            checks=detailed.checks,
            errors=detailed.errors,
            credential_id=detailed.credential_id,
            issuer=detailed.issuer,
        )

    def verify_detailed(
        self, document: VerifiableInput, now: datetime | None = None
    ) -> DetailedVerificationResult:
        """Verify and additionally collect technical details.

        Details that cannot be collected are left as None.
        """
        now = now or utcnow()
        fmt = detect_format(document)

        if fmt is CredentialFormat.VP:
            if isinstance(document, Presentation):
                document = document.to_dict()
            result = self._verify_presentation(document, now)
        elif fmt is CredentialFormat.SD_JWT:
            result = self._verify_sd_jwt(document, now)
        elif fmt is CredentialFormat.VC:
            if isinstance(document, Credential):
                document = document.to_dict()
            result = self._verify_credential(document, now)
        else:
            raise AssertionError(f"Unhandled format {fmt}")

        logger.debug(
            "Verified %s (%s): %s",
            result.credential_id,
            fmt.value,
            result.checks.to_dict(),
        )
        return result

    def _verify_credential(self, document: Any, now: datetime) -> DetailedVerificationResult:
        result = DetailedVerificationResult(format=CredentialFormat.VC)
        if not isinstance(document, dict):
            result.errors.append("Credential must be a JSON object")
            return result

        result.credential_id = document.get("id")
        result.issuer = _extract_issuer(document)

        schema = self._check_credential_schema(document)
        expiry = self._check_expiry(document, now)
        status = self._check_status(document)
        proof, proof_detail = self._check_credential_proof(document)
        issuer, issuer_document = self._check_issuer(document)

        self._apply(result, schema, expiry, status, proof, issuer)
        result.details = VerificationDetails(
            issuer_document=issuer_document,
            validity=self._validity_detail(document, now),
            revocation=self._revocation_detail([document]),
            proof=proof_detail,
            disclosed_claims=self._claims_detail(document),
        )
        return result

    def _verify_sd_jwt(self, document: Any, now: datetime) -> DetailedVerificationResult:
        result = DetailedVerificationResult(format=CredentialFormat.SD_JWT)

        if isinstance(document, SDJWT):
            presentation = document.serialize()
        elif isinstance(document, str):
            presentation = document
        else:
            if isinstance(document, Credential):
                document = document.to_dict()
            presentation = str(document["proof"].get("proofValue", ""))

        disclosure_errors: list[str] = []
        try:
            credential = self.sd_codec.decode(presentation)
        except TokenMismatch as e:
            disclosure_errors.append(f"Disclosure integrity violation: {e}")
            credential = self._decode_envelope_only(presentation, result)
        except SDJWTError as e:
            disclosure_errors.append(f"Malformed SD-JWT presentation: {e}")
            credential = self._decode_envelope_only(presentation, result)

        if credential is None:
            result.errors.extend(disclosure_errors)
            return result

        credential_doc = credential.to_dict()
        result.credential_id = credential.id
        result.issuer = credential.issuer.id

        schema = self._check_credential_schema(credential_doc, require_claims=False)
        expiry = self._check_expiry(credential_doc, now)
        status = self._check_status(credential_doc)

        jwt = split_presentation(presentation)[0]
        jws_result, _ = self.proof_engine.verify_jws(jwt)
        proof = _Check(jws_result.valid, [f"Proof verification failed: {e}" for e in jws_result.errors])
        binding_errors = _issuer_binding_errors(
            credential.id, credential.issuer.id, jws_result.verification_method
        )
        if binding_errors:
            proof.passed = False
            proof.errors.extend(binding_errors)
        if disclosure_errors:
            proof.passed = False
            proof.errors.extend(disclosure_errors)

        issuer, issuer_document = self._check_issuer(credential_doc)

        self._apply(result, schema, expiry, status, proof, issuer)
        result.details = VerificationDetails(
            issuer_document=issuer_document,
            validity=self._validity_detail(credential_doc, now),
            revocation=self._revocation_detail([credential_doc]),
            proof=jws_result.to_dict(),
            disclosed_claims=self._claims_detail(credential_doc),
        )
        return result

    def _decode_envelope_only(
        self, presentation: str, result: DetailedVerificationResult
    ) -> Credential | None:
        """Decode only the envelope so the remaining checks can still run."""
        try:
            jwt = split_presentation(presentation)[0]
            return self.sd_codec.decode(jwt)
        except SDJWTError as e:
            result.errors.append(f"Malformed SD-JWT envelope: {e}")
            return None

    def _verify_presentation(self, document: dict[str, Any], now: datetime) -> DetailedVerificationResult:
        result = DetailedVerificationResult(format=CredentialFormat.VP)
        result.credential_id = document.get("id")
        result.issuer = document.get("holder")

        embedded = [c for c in document.get("verifiableCredential", []) if isinstance(c, dict)]
        if not embedded:
            result.errors.append("Presentation contains no credentials")

        schema = _Check(True)
        try:
            Presentation.from_dict(document)
        except SchemaViolation as e:
            schema = _Check(False, [f"Schema validation failed: {e}"])
        else:
            for credential in embedded:
                claim_check = self._check_credential_schema(
                    credential,
                    require_claims=credential.get(SELECTIVELY_DISCLOSED) is not True,
                )
                if not claim_check.passed:
                    schema = _Check(False, schema.errors + claim_check.errors)

        expiry = self._combine(self._check_expiry(c, now) for c in embedded)
        status = self._combine(self._check_status(c) for c in embedded)

        presentation_check, presentation_proof = self._check_presentation_proof(document, embedded)
        proof_checks = [presentation_check]
        proof_details: dict[str, Any] = {}
        for credential in embedded:
            check, detail = self._check_credential_proof(credential)
            proof_checks.append(check)
            proof_details[_label(credential)] = detail
        proof = self._combine(proof_checks)

        issuer_checks: list[_Check] = []
        issuer_documents: dict[str, Any] = {}
        for credential in embedded:
            check, issuer_document = self._check_issuer(credential)
            issuer_checks.append(check)
            if issuer_document is not None:
                issuer_documents[_label(credential)] = issuer_document
        issuer = self._combine(issuer_checks)

        self._apply(result, schema, expiry, status, proof, issuer)
        result.details = VerificationDetails(
            issuer_document=issuer_documents or None,
            validity={_label(c): self._validity_detail(c, now) for c in embedded} or None,
            revocation=self._revocation_detail(embedded),
            proof={"presentation": presentation_proof.to_dict(), "credentials": proof_details},
            disclosed_claims=sorted(
                {name for c in embedded for name in (self._claims_detail(c) or [])}
            )
            or None,
        )
        return result

    def _apply(
        self,
        result: VerificationResult,
        schema: _Check,
        expiry: _Check,
        status: _Check,
        proof: _Check,
        issuer: _Check,
    ) -> None:
        result.checks = VerificationChecks(
            schema_valid=schema.passed,
            not_expired=expiry.passed,
            not_revoked=status.passed,
            proof_valid=proof.passed,
            issuer_valid=issuer.passed,
        )
        for check in (schema, expiry, status, proof, issuer):
            result.errors.extend(check.errors)

    def _combine(self, checks: Any) -> _Check:
        combined = _Check(True)
        for check in checks:
            combined.passed = combined.passed and check.passed
            combined.errors.extend(check.errors)
        return combined

    def _check_credential_schema(self, document: dict[str, Any], require_claims: bool = True) -> _Check:
        """Validate basic VC structure."""
        try:
            credential = Credential.from_dict(document)
        except SchemaViolation as e:
            return _Check(False, [f"Schema validation failed: {e}"])
        if "proof" not in document:
            return _Check(False, ["Schema validation failed: Missing proof"])
        if require_claims and not credential.subject.claim_names():
            return _Check(False, ["Schema validation failed: credentialSubject has no claims"])
        return _Check(True)

    def _check_expiry(self, document: dict[str, Any], now: datetime) -> _Check:
        label = _label(document)
        try:
            valid_from = parse_datetime(document.get("validFrom"))
            valid_until = (
                parse_datetime(document["validUntil"])
                if document.get("validUntil") is not None
                else None
            )
        except SchemaViolation as e:
            return _Check(False, [f"Invalid validity period for {label}: {e}"])

        if now < valid_from:
            return _Check(False, [f"Credential {label} is not yet valid (validFrom {format_datetime(valid_from)})"])
        if valid_until is not None and now > valid_until:
            return _Check(False, [f"Credential {label} has expired (validUntil {format_datetime(valid_until)})"])
        return _Check(True)

    def _check_status(self, document: dict[str, Any]) -> _Check:
        label = _label(document)
        credential_id = document.get("id")
        if isinstance(credential_id, str) and self.registry.is_revoked(credential_id):
            index = self.registry.index_of(credential_id)
            return _Check(False, [f"Credential {label} has been revoked (status list index {index})"])

        if self.status_checker is None:
            return _Check(True)

        try:
            entries = [
                entry
                for entry in self.status_checker.parse_credential_status(document)
                if entry.status_list_credential != self.registry.list_url
            ]
            results = [self.status_checker.check_entry(entry) for entry in entries]
        except StatusListError as e:
            return _Check(False, [f"Could not verify status of {label}: {e}"])

        errors = [
            r.message
            for r in results
            if r.status in (CredentialStatus.REVOKED, CredentialStatus.SUSPENDED, CredentialStatus.UNKNOWN)
        ]
        return _Check(not errors, errors)

    def _check_issuer(self, document: dict[str, Any]) -> tuple[_Check, dict[str, Any] | None]:
        issuer_id = _extract_issuer(document)
        if not issuer_id:
            return _Check(False, ["Missing issuer"]), None
        try:
            did_document = self.did_resolver.resolve(issuer_id)
        except MalformedIdentifier as e:
            return _Check(False, [f"Issuer DID is malformed: {e}"]), None
        except DIDResolutionTimeout:
            return _Check(False, [f"Issuer DID resolution timed out: {issuer_id}"]), None
        except DIDNotFoundError:
            return _Check(False, [f"Issuer DID not found: {issuer_id}"]), None
        except DIDResolutionError as e:
            return _Check(False, [f"Issuer DID could not be resolved: {e}"]), None
        except Exception as e:
            logger.debug("Resolver failure for %s", issuer_id, exc_info=True)
            return _Check(False, [f"Issuer DID could not be resolved: {e}"]), None

        if did_document.id != split_did_url(issuer_id)[0]:
            return _Check(False, [f"Issuer DID Document id mismatch: {did_document.id}"]), None
        return _Check(True), did_document.to_dict()

    def _check_credential_proof(
        self, document: dict[str, Any]
    ) -> tuple[_Check, dict[str, Any] | None]:
        label = _label(document)
        if document.get(SELECTIVELY_DISCLOSED) is True:
            return (
                _Check(
                    False,
                    [
                        f"Credential {label} was selectively disclosed: the issuer proof "
                        "covers the original claim set and cannot verify a filtered subject"
                    ],
                ),
                None,
            )

        proof_result = self.proof_engine.verify(
            document, document.get("proof"), expected_purpose="assertionMethod"
        )
        check = self._proof_check(proof_result)
        proof = document.get("proof")
        if isinstance(proof, dict):
            binding_errors = _issuer_binding_errors(
                label, _extract_issuer(document), proof.get("verificationMethod")
            )
            if binding_errors:
                check.passed = False
                check.errors.extend(binding_errors)
        return check, proof_result.to_dict()

    def _check_presentation_proof(
        self, document: dict[str, Any], embedded: list[dict[str, Any]]
    ) -> tuple[_Check, ProofVerificationResult]:
        proof_result = self.proof_engine.verify(document, document.get("proof"))
        check = self._proof_check(proof_result, "Presentation proof verification failed")

        holder = document.get("holder")
        proof = document.get("proof")
        if not isinstance(proof, dict):
            return check, proof_result

        signer = split_did_url(str(proof.get("verificationMethod", "")))[0]
        if signer != holder:
            check.passed = False
            check.errors.append(f"Presentation signed by {signer}, not by holder {holder}")
        if proof.get("proofPurpose") in SELF_ATTESTATION_PURPOSES:
            for credential in embedded:
                subject = credential.get("credentialSubject")
                subject_id = subject.get("id") if isinstance(subject, dict) else None
                if subject_id != signer:
                    check.passed = False
                    check.errors.append(
                        f"Holder {signer} is not the subject of {_label(credential)}"
                    )
        return check, proof_result

    def _proof_check(
        self, proof_result: ProofVerificationResult, prefix: str = "Proof verification failed"
    ) -> _Check:
        if proof_result.valid:
            return _Check(True)
        return _Check(False, [f"{prefix}: {proof_result.error or 'Invalid proof'}"])

    def _validity_detail(self, document: dict[str, Any], now: datetime) -> dict[str, Any] | None:
        if not document.get("validFrom"):
            return None
        return {
            "validFrom": document.get("validFrom"),
            "validUntil": document.get("validUntil"),
            "checkedAt": format_datetime(now),
        }

    def _revocation_detail(self, documents: list[dict[str, Any]]) -> list[dict[str, Any]] | None:
        pointers: list[dict[str, Any]] = []
        for document in documents:
            status = document.get("credentialStatus")
            if not isinstance(status, dict):
                continue
            credential_id = document.get("id")
            pointers.append(
                {
                    "credentialId": credential_id,
                    "statusListIndex": status.get("statusListIndex"),
                    "statusListCredential": status.get("statusListCredential"),
                    "revoked": isinstance(credential_id, str)
                    and self.registry.is_revoked(credential_id),
                }
            )
        return pointers or None

    def _claims_detail(self, document: dict[str, Any]) -> list[str] | None:
        subject = document.get("credentialSubject")
        if not isinstance(subject, dict):
            return None
        return sorted(name for name in subject if name not in ("id", "type"))


def verify_credential(
    document: VerifiableInput,
    verify_status: bool = True,
) -> VerificationResult:
    """Convenience function to verify a credential or presentation.

    Args:
        document: The credential, presentation or SD-JWT presentation to verify.
        verify_status: Whether to check remote StatusList2021 lists.

    Returns:
        VerificationResult with details of all checks.
    """
    verifier = CredentialVerifier(status_checker=StatusListChecker() if verify_status else None)
    return verifier.verify(document)
