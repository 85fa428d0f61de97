"""
vc-engine - Verifiable Credentials protocol engine.

Supports:
- W3C Data Integrity Proofs (ecdsa-jcs-2022 cryptosuite)
- SD-JWT selective disclosure with ES256 envelopes
- Verifiable Presentations with holder binding
- did:web DID method resolution
- W3C StatusList2021 revocation tracking and checking
- ECDSA P-256 (secp256r1) signatures
"""

__version__ = "0.1.0"

from vc_engine.authorization import (
    AuthorizationError,
    AuthorizationProtocol,
    AuthorizationRequest,
    AuthorizationResponse,
    ReplayMismatch,
)
from vc_engine.did_resolver import (
    DIDDocument,
    DIDNotFoundError,
    DIDResolutionError,
    DIDResolutionTimeout,
    DIDResolver,
    MalformedIdentifier,
)
from vc_engine.issuer import CredentialIssuer, IssuanceOptions
from vc_engine.keys import SigningKey
from vc_engine.models import Credential, CredentialSubject, Presentation, SchemaViolation
from vc_engine.presentation import PresentationBuilder, PresentationError
from vc_engine.proof import ProofEngine, ProofVerificationResult, SigningFailure
from vc_engine.sd_jwt import SDJWT, SDJWTCodec, SDJWTError, TokenMismatch
from vc_engine.statuslist import RevocationRegistry, StatusListChecker, StatusListError
from vc_engine.store import CredentialStore, CredentialStoreError, InMemoryCredentialStore
from vc_engine.verifier import (
    CredentialFormat,
    CredentialVerifier,
    DetailedVerificationResult,
    VerificationResult,
    verify_credential,
)

__all__ = [
    "AuthorizationError",
    "AuthorizationProtocol",
    "AuthorizationRequest",
    "AuthorizationResponse",
    "ReplayMismatch",
    "DIDDocument",
    "DIDNotFoundError",
    "DIDResolutionError",
    "DIDResolutionTimeout",
    "DIDResolver",
    "MalformedIdentifier",
    "CredentialIssuer",
    "IssuanceOptions",
    "SigningKey",
    "Credential",
    "CredentialSubject",
    "Presentation",
    "SchemaViolation",
    "PresentationBuilder",
    "PresentationError",
    "ProofEngine",
    "ProofVerificationResult",
    "SigningFailure",
    "SDJWT",
    "SDJWTCodec",
    "SDJWTError",
    "TokenMismatch",
    "RevocationRegistry",
    "StatusListChecker",
    "StatusListError",
    "CredentialStore",
    "CredentialStoreError",
    "InMemoryCredentialStore",
    "CredentialFormat",
    "CredentialVerifier",
    "DetailedVerificationResult",
    "VerificationResult",
    "verify_credential",
]
