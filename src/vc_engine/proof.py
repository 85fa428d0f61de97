"""
Proof Engine.

Creates and verifies W3C Data Integrity proofs (ecdsa-jcs-2022 cryptosuite,
ECDSA P-256) and the compact ES256 JWS used as SD-JWT envelope.

Verification never raises: every failure mode is reported through the flags
of ``ProofVerificationResult``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import encode_dss_signature

from vc_engine.did_resolver import (
    DIDResolutionError,
    DIDResolver,
    MalformedIdentifier,
    PublicKeyJWK,
)
from vc_engine.encoding import base64url_decode, base64url_encode, canonicalize_json
from vc_engine.keys import SigningKey
from vc_engine.models import Proof, SchemaViolation, format_datetime, utcnow

logger = logging.getLogger(__name__)

# Conformance fixtures use this value to isolate "signature wrong" from
# "proof malformed".
INVALID_SIGNATURE_SENTINEL = "invalid_signature_for_testing_purposes"

PROOF_PURPOSES = {
    "assertionMethod",
    "authentication",
    "keyAgreement",
    "capabilityInvocation",
    "capabilityDelegation",
}


class SigningFailure(Exception):
    """Raised when a proof cannot be produced."""


@dataclass
class ProofVerificationResult:
    """Result of cryptographic proof verification."""

    valid: bool = False
    method_resolved: bool = False
    purpose_valid: bool = False
    cryptosuite_supported: bool = False
    signature_valid: bool = False
    cryptosuite: str = "unknown"
    verification_method: str = "unknown"
    proof_purpose: str | None = None
    created: str | None = None
    signature_preview: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def error(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["error"] = self.error
        return data


def _preview(value: str) -> str:
    if len(value) > 40:
        return f"{value[:20]}...{value[-20:]}"
    return value


class ProofEngine:
    """Signs documents and verifies their proofs.

    Supports:
    - Data Integrity Proofs with ecdsa-jcs-2022 cryptosuite
    - ES256 compact JWS
    """

    PROOF_TYPE = "DataIntegrityProof"
    CRYPTOSUITE = "ecdsa-jcs-2022"
    JWS_ALGORITHM = "ES256"
    SUPPORTED_CRYPTOSUITES = {"ecdsa-jcs-2022"}
    SUPPORTED_PROOF_TYPES = {"DataIntegrityProof"}

    def __init__(self, did_resolver: DIDResolver) -> None:
        self.did_resolver = did_resolver

    def sign(
        self,
        document: dict[str, Any],
        signing_key: SigningKey,
        purpose: str = "assertionMethod",
        challenge: str | None = None,
        domain: str | None = None,
        invalid_signature: bool = False,
    ) -> Proof:
        """Create a detached proof over ``document``.

        Args:
            document: The document to sign. Any existing proof is ignored.
            signing_key: Key of the signer.
            purpose: Proof purpose (assertionMethod, authentication, ...).
            challenge: Verifier challenge bound into the proof.
            domain: Verifier domain bound into the proof.
            invalid_signature: Emit the conformance sentinel instead of a
                real signature.

        Returns:
            The proof. The input document is not modified.

        Raises:
            SigningFailure: If the document cannot be signed.
        """
        unsigned = {k: v for k, v in document.items() if k != "proof"}
        proof = Proof(
            type=self.PROOF_TYPE,
            created=format_datetime(utcnow()),
            verification_method=signing_key.verification_method,
            proof_purpose=purpose,
            cryptosuite=self.CRYPTOSUITE,
            proof_value="",
            challenge=challenge,
            domain=domain,
        )

        if invalid_signature:
            proof_value = INVALID_SIGNATURE_SENTINEL
        else:
            try:
                signature = signing_key.sign(self._hash_data(unsigned, proof.config()))
            except (TypeError, ValueError) as e:
                raise SigningFailure(f"Could not sign document: {e}") from e
            proof_value = base64url_encode(signature)

        logger.debug(
            "Signed document %s with %s (%s)",
            document.get("id"),
            signing_key.verification_method,
            purpose,
        )
        return replace(proof, proof_value=proof_value)

    def verify(
        self,
        document: dict[str, Any],
        proof: Proof | dict[str, Any] | None,
        expected_purpose: str | None = None,
    ) -> ProofVerificationResult:
        """Verify a detached proof over ``document``.

        Unresolvable methods, unsupported cryptosuites and purpose mismatches
        each clear their own flag; the remaining checks still run.

        Args:
            document: The signed document (its ``proof`` member is ignored).
            proof: The proof to verify.
            expected_purpose: Purpose the caller requires, if any.

        Returns:
            ProofVerificationResult with verification details.
        """
        result = ProofVerificationResult()

        if proof is None:
            result.errors.append("Missing proof")
            return result

        if not isinstance(proof, Proof):
            try:
                proof = Proof.from_dict(proof)
            except SchemaViolation as e:
                result.errors.append(f"Malformed proof: {e}")
                return result

        result.cryptosuite = proof.cryptosuite or "unknown"
        result.verification_method = proof.verification_method
        result.proof_purpose = proof.proof_purpose
        result.created = proof.created
        result.signature_preview = _preview(proof.proof_value)

        if proof.proof_value == INVALID_SIGNATURE_SENTINEL:
            return self._sentinel_result(result)

        if proof.type not in self.SUPPORTED_PROOF_TYPES:
            result.errors.append(f"Unsupported proof type: {proof.type}")
        elif proof.cryptosuite not in self.SUPPORTED_CRYPTOSUITES:
            result.errors.append(f"Unsupported cryptosuite: {proof.cryptosuite}")
        else:
            result.cryptosuite_supported = True

        unsigned = None
        if isinstance(document, dict):
            unsigned = {k: v for k, v in document.items() if k != "proof"}
        else:
            result.errors.append(f"Document must be a JSON object, got {type(document).__name__}")
        public_key = self._check_method_and_purpose(
            result, proof.verification_method, proof.proof_purpose, expected_purpose
        )

        if unsigned is not None and public_key is not None and result.cryptosuite_supported:
            try:
                message = self._hash_data(unsigned, proof.config())
                signature = base64url_decode(proof.proof_value)
                result.signature_valid = self._verify_signature(message, signature, public_key)
            except Exception as e:
                result.errors.append(f"Signature verification error: {e}")
            else:
                if not result.signature_valid:
                    result.errors.append("Invalid signature")

        return self._finish(result)

    def sign_jws(
        self,
        payload: dict[str, Any],
        signing_key: SigningKey,
        typ: str = "JWT",
        invalid_signature: bool = False,
    ) -> str:
        """Create a compact ES256 JWS over ``payload``.

        Raises:
            SigningFailure: If the payload cannot be signed.
        """
        header = {"alg": self.JWS_ALGORITHM, "typ": typ, "kid": signing_key.verification_method}
        try:
            signing_input = ".".join(
                base64url_encode(canonicalize_json(part).encode("utf-8"))
                for part in (header, payload)
            )
        except (TypeError, ValueError) as e:
            raise SigningFailure(f"Could not encode JWS payload: {e}") from e

        if invalid_signature:
            return f"{signing_input}.{INVALID_SIGNATURE_SENTINEL}"

        try:
            signature = signing_key.sign(signing_input.encode("ascii"))
        except (TypeError, ValueError) as e:
            raise SigningFailure(f"Could not sign JWS: {e}") from e
        return f"{signing_input}.{base64url_encode(signature)}"

    def verify_jws(self, token: str) -> tuple[ProofVerificationResult, dict[str, Any] | None]:
        """Verify a compact ES256 JWS.

        Returns:
            The verification result and the decoded payload (None if the
            token could not be decoded).
        """
        result = ProofVerificationResult()
        try:
            header_b64, payload_b64, signature_b64 = token.split(".")
            header = json.loads(base64url_decode(header_b64))
            payload = json.loads(base64url_decode(payload_b64))
            if not isinstance(header, dict) or not isinstance(payload, dict):
                raise ValueError("JWS header and payload must be JSON objects")
        except (ValueError, AttributeError) as e:
            result.errors.append(f"Malformed JWS: {e}")
            return result, None

        result.cryptosuite = str(header.get("alg", "unknown"))
        result.verification_method = str(header.get("kid", "unknown"))
        result.proof_purpose = "assertionMethod"
        result.signature_preview = _preview(signature_b64)

        if signature_b64 == INVALID_SIGNATURE_SENTINEL:
            return self._sentinel_result(result), payload

        if header.get("alg") == self.JWS_ALGORITHM:
            result.cryptosuite_supported = True
        else:
            result.errors.append(f"Unsupported JWS algorithm: {header.get('alg')}")

        public_key = self._check_method_and_purpose(
            result, result.verification_method, "assertionMethod", None
        )

        if public_key is not None and result.cryptosuite_supported:
            try:
                message = f"{header_b64}.{payload_b64}".encode("ascii")
                signature = base64url_decode(signature_b64)
                result.signature_valid = self._verify_signature(message, signature, public_key)
            except Exception as e:
                result.errors.append(f"Signature verification error: {e}")
            else:
                if not result.signature_valid:
                    result.errors.append("Invalid signature")

        return self._finish(result), payload

    def _check_method_and_purpose(
        self,
        result: ProofVerificationResult,
        method_id: str,
        purpose: str,
        expected_purpose: str | None,
    ) -> ec.EllipticCurvePublicKey | None:
        """Resolve the verification method and validate the proof purpose.

        Sets ``method_resolved`` and ``purpose_valid`` on ``result`` and
        returns the public key when the method resolved.
        """
        purpose_known = purpose in PROOF_PURPOSES
        if not purpose_known:
            result.errors.append(f"Unknown proof purpose: {purpose}")
        elif expected_purpose is not None and purpose != expected_purpose:
            purpose_known = False
            result.errors.append(
                f"Proof purpose {purpose} does not match expected {expected_purpose}"
            )

        try:
            vm, did_document = self.did_resolver.resolve_verification_method(method_id)
            public_key = self._jwk_to_ec_public_key(vm.public_key_jwk)
        except (DIDResolutionError, MalformedIdentifier) as e:
            result.errors.append(f"DID resolution failed: {e}")
            result.purpose_valid = purpose_known
            return None
        except Exception as e:
            result.errors.append(f"Verification method could not be resolved: {e}")
            result.purpose_valid = purpose_known
            return None

        result.method_resolved = True
        if purpose_known and method_id not in did_document.relationship(purpose):
            result.errors.append(f"{method_id} is not authorized for {purpose}")
            purpose_known = False
        result.purpose_valid = purpose_known
        return public_key

    def _sentinel_result(self, result: ProofVerificationResult) -> ProofVerificationResult:
        logger.debug("Sentinel signature for %s", result.verification_method)
        result.method_resolved = True
        result.purpose_valid = True
        result.cryptosuite_supported = True
        result.signature_valid = False
        result.valid = False
        result.errors = ["Invalid signature"]
        return result

    def _finish(self, result: ProofVerificationResult) -> ProofVerificationResult:
        result.valid = (
            result.method_resolved
            and result.purpose_valid
            and result.cryptosuite_supported
            and result.signature_valid
        )
        return result

    def _hash_data(self, document: dict[str, Any], proof_config: dict[str, Any]) -> bytes:
        """ecdsa-jcs-2022 hash data: sha256(JCS(proof config)) || sha256(JCS(document))."""
        config_hash = hashlib.sha256(canonicalize_json(proof_config).encode("utf-8")).digest()
        document_hash = hashlib.sha256(canonicalize_json(document).encode("utf-8")).digest()
        return config_hash + document_hash

    def _verify_signature(
        self,
        message: bytes,
        signature_bytes: bytes,
        public_key: ec.EllipticCurvePublicKey,
    ) -> bool:
        """Verify an ECDSA P-256/SHA-256 signature (raw r||s or DER)."""
        if len(signature_bytes) == 64:
            r = int.from_bytes(signature_bytes[:32], byteorder="big")
            s = int.from_bytes(signature_bytes[32:], byteorder="big")
            signature_bytes = encode_dss_signature(r, s)

        try:
            public_key.verify(signature_bytes, message, ec.ECDSA(hashes.SHA256()))
            return True
        except InvalidSignature:
            return False

    def _jwk_to_ec_public_key(self, jwk: PublicKeyJWK | None) -> ec.EllipticCurvePublicKey:
        """Convert a JWK to an EC public key object."""
        if jwk is None:
            raise DIDResolutionError("Verification method has no public key")
        x = int.from_bytes(base64url_decode(jwk.x), byteorder="big")
        y = int.from_bytes(base64url_decode(jwk.y), byteorder="big")
        public_numbers = ec.EllipticCurvePublicNumbers(x, y, ec.SECP256R1())
        return public_numbers.public_key()
