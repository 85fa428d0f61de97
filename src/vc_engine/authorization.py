"""
Authorization Protocol.

Challenge/response handshake that precedes issuance: the issuer sends a
request carrying a fresh challenge, and the holder answers with a response
signed by its authentication key that binds the challenge and domain.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Any, Sequence

from vc_engine.did_resolver import split_did_url, validate_did
from vc_engine.keys import SigningKey
from vc_engine.models import Proof, SchemaViolation, format_datetime, utcnow
from vc_engine.proof import ProofEngine, ProofVerificationResult

logger = logging.getLogger(__name__)

REQUEST_TYPE = "CredentialAuthorizationRequest"
RESPONSE_PURPOSE = "authentication"


class AuthorizationError(Exception):
    """Raised when an authorization message is rejected."""


class ReplayMismatch(AuthorizationError):
    """Raised when a response does not answer the given request."""


@dataclass(frozen=True)
class AuthorizationRequest:
    """Issuer to holder: request to accept a credential."""

    request_id: str
    issuer: str
    credential_type: tuple[str, ...]
    purpose: str
    challenge: str
    domain: str | None
    timestamp: str
    callback_url: str | None = None
    type: str = REQUEST_TYPE

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "requestId": self.request_id,
            "issuer": self.issuer,
            "credentialType": list(self.credential_type),
            "purpose": self.purpose,
            "challenge": self.challenge,
            "domain": self.domain,
            "timestamp": self.timestamp,
        }
        if self.callback_url is not None:
            data["callbackUrl"] = self.callback_url
        return data

    @classmethod
    def from_dict(cls, data: Any) -> AuthorizationRequest:
        """Parse a request message.

        Raises:
            SchemaViolation: If a required field is missing.
        """
        if not isinstance(data, dict):
            raise SchemaViolation("Authorization request must be a JSON object")
        try:
            return cls(
                type=data.get("type", REQUEST_TYPE),
                request_id=data["requestId"],
                issuer=data["issuer"],
                credential_type=tuple(data["credentialType"]),
                purpose=data["purpose"],
                challenge=data["challenge"],
                domain=data.get("domain"),
                timestamp=data["timestamp"],
                callback_url=data.get("callbackUrl"),
            )
        except (KeyError, TypeError) as e:
            raise SchemaViolation(f"Invalid authorization request: {e}") from e


@dataclass(frozen=True)
class AuthorizationResponse:
    """Holder to issuer: signed acceptance or refusal."""

    request_id: str
    holder: str
    accepted: bool
    timestamp: str
    proof: Proof | None = field(default=None)

    def to_dict(self, include_proof: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "requestId": self.request_id,
            "holder": self.holder,
            "accepted": self.accepted,
            "timestamp": self.timestamp,
        }
        if include_proof and self.proof is not None:
            data["proof"] = self.proof.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any) -> AuthorizationResponse:
        if not isinstance(data, dict):
            raise SchemaViolation("Authorization response must be a JSON object")
        try:
            accepted = data["accepted"]
            if not isinstance(accepted, bool):
                raise TypeError("accepted must be a boolean")
            return cls(
                request_id=data["requestId"],
                holder=data["holder"],
                accepted=accepted,
                timestamp=data["timestamp"],
                proof=Proof.from_dict(data["proof"]) if data.get("proof") is not None else None,
            )
        except (KeyError, TypeError) as e:
            raise SchemaViolation(f"Invalid authorization response: {e}") from e


class AuthorizationProtocol:
    """Builds authorization requests and signed holder responses.

    No correlation state is kept: the verifying side passes the original
    request back in.
    """

    def __init__(
        self,
        issuer_did: str,
        proof_engine: ProofEngine,
        domain: str | None = None,
        callback_url: str | None = None,
    ) -> None:
        """Initialize the protocol endpoint.

        Args:
            issuer_did: DID of the requesting issuer.
            proof_engine: Engine signing and verifying responses.
            domain: Domain bound into every challenge.
            callback_url: Where holders send their response.
        """
        self.issuer_did = validate_did(issuer_did)
        self.proof_engine = proof_engine
        self.domain = domain
        self.callback_url = callback_url

    def generate_request(
        self, credential_types: Sequence[str], purpose: str
    ) -> AuthorizationRequest:
        """Create a request with a fresh challenge."""
        request = AuthorizationRequest(
            request_id=str(uuid.uuid4()),
            issuer=self.issuer_did,
            credential_type=tuple(credential_types),
            purpose=purpose,
            challenge=secrets.token_urlsafe(32),
            domain=self.domain,
            timestamp=format_datetime(utcnow()),
            callback_url=self.callback_url,
        )
        logger.debug("Generated authorization request %s", request.request_id)
        return request

    def generate_response(
        self,
        request: AuthorizationRequest,
        holder_did: str,
        accepted: bool,
        holder_key: SigningKey,
    ) -> AuthorizationResponse:
        """Answer ``request`` on behalf of ``holder_did``.

        Args:
            request: The request being answered.
            holder_did: DID of the responding holder.
            accepted: Whether the holder accepts the credential.
            holder_key: Authentication key of the holder.

        Returns:
            The response, signed with purpose ``authentication`` over the
            request's challenge and domain.

        Raises:
            MalformedIdentifier: If ``holder_did`` is not a valid DID. Nothing
                is signed in that case.
            AuthorizationError: If the key does not belong to the holder.
            SigningFailure: If the response cannot be signed.
        """
        holder_did = validate_did(holder_did)
        if holder_key.controller != holder_did:
            raise AuthorizationError(
                f"Key {holder_key.verification_method} does not belong to {holder_did}"
            )

        response = AuthorizationResponse(
            request_id=request.request_id,
            holder=holder_did,
            accepted=accepted,
            timestamp=format_datetime(utcnow()),
        )
        proof = self.proof_engine.sign(
            response.to_dict(include_proof=False),
            holder_key,
            purpose=RESPONSE_PURPOSE,
            challenge=request.challenge,
            domain=request.domain,
        )
        logger.info(
            "Holder %s %s request %s",
            holder_did,
            "accepted" if accepted else "declined",
            request.request_id,
        )
        return AuthorizationResponse(
            request_id=response.request_id,
            holder=response.holder,
            accepted=response.accepted,
            timestamp=response.timestamp,
            proof=proof,
        )

    def verify_response(
        self, request: AuthorizationRequest, response: AuthorizationResponse
    ) -> ProofVerificationResult:
        """Check that ``response`` answers ``request`` and is holder-signed.

        Raises:
            ReplayMismatch: If the request id, challenge or domain differ.
            AuthorizationError: If the proof is missing, not made by the
                holder, or invalid.
        """
        if response.request_id != request.request_id:
            raise ReplayMismatch(
                f"Response answers {response.request_id}, not {request.request_id}"
            )
        if response.proof is None:
            raise AuthorizationError("Response carries no proof")
        if response.proof.challenge != request.challenge:
            raise ReplayMismatch("Response challenge does not match the request")
        if response.proof.domain != request.domain:
            raise ReplayMismatch("Response domain does not match the request")

        signer = split_did_url(response.proof.verification_method)[0]
        if signer != response.holder:
            raise AuthorizationError(f"Response signed by {signer}, not by {response.holder}")

        result = self.proof_engine.verify(
            response.to_dict(include_proof=False),
            response.proof,
            expected_purpose=RESPONSE_PURPOSE,
        )
        if not result.valid:
            raise AuthorizationError(f"Response proof is invalid: {result.error}")
        return result
