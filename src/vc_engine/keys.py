"""
ECDSA P-256 signing keys bound to DID verification methods.
"""

from __future__ import annotations

from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from vc_engine.did_resolver import (
    DIDDocument,
    PublicKeyJWK,
    create_did_document,
    split_did_url,
    validate_did,
)
from vc_engine.encoding import base64url_encode


@dataclass
class SigningKey:
    """A P-256 private key and the verification method that publishes it."""

    verification_method: str
    private_key: ec.EllipticCurvePrivateKey

    @classmethod
    def generate(cls, did: str, fragment: str = "key-1") -> SigningKey:
        """Generate a fresh key for ``did`` under ``#fragment``.

        Raises:
            MalformedIdentifier: If the DID is malformed.
        """
        validate_did(did)
        return cls(
            verification_method=f"{did}#{fragment}",
            private_key=ec.generate_private_key(ec.SECP256R1()),
        )

    @property
    def controller(self) -> str:
        """DID that controls this key."""
        return split_did_url(self.verification_method)[0]

    @property
    def fragment(self) -> str:
        return split_did_url(self.verification_method)[1] or ""

    def public_jwk(self) -> PublicKeyJWK:
        """Export the public key as a P-256 JWK."""
        public_numbers = self.private_key.public_key().public_numbers()
        return PublicKeyJWK(
            kty="EC",
            crv="P-256",
            x=base64url_encode(public_numbers.x.to_bytes(32, byteorder="big")),
            y=base64url_encode(public_numbers.y.to_bytes(32, byteorder="big")),
        )

    def did_document(self) -> DIDDocument:
        """DID Document publishing this key for authentication and assertions."""
        return create_did_document(self.controller, self.public_jwk(), self.fragment)

    def sign(self, message: bytes) -> bytes:
        """Sign with ECDSA/SHA-256 and return the raw 64-byte r||s signature."""
        der_signature = self.private_key.sign(message, ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der_signature)
        return r.to_bytes(32, byteorder="big") + s.to_bytes(32, byteorder="big")
