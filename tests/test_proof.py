"""Tests for the Proof Engine."""

import copy

import pytest

from vc_engine.encoding import base64url_decode, canonicalize_json
from vc_engine.keys import SigningKey
from vc_engine.proof import INVALID_SIGNATURE_SENTINEL


@pytest.fixture
def document():
    return {
        "@context": ["https://www.w3.org/ns/credentials/v2"],
        "id": "urn:uuid:test-123",
        "type": ["VerifiableCredential"],
        "issuer": "did:web:issuer.example.com",
        "validFrom": "2025-01-01T00:00:00Z",
        "credentialSubject": {"id": "did:web:holder.example.com", "name": "Test User"},
    }


class TestSign:
    """Tests for Data Integrity proof creation."""

    def test_proof_shape(self, engine, issuer_key, document):
        proof = engine.sign(document, issuer_key)

        assert proof.type == "DataIntegrityProof"
        assert proof.cryptosuite == "ecdsa-jcs-2022"
        assert proof.verification_method == issuer_key.verification_method
        assert proof.proof_purpose == "assertionMethod"
        assert proof.created.endswith("Z")
        assert len(base64url_decode(proof.proof_value)) == 64

    def test_input_not_mutated(self, engine, issuer_key, document):
        original = copy.deepcopy(document)
        engine.sign(document, issuer_key)
        assert document == original

    def test_challenge_and_domain_bound(self, engine, holder_key, document):
        proof = engine.sign(
            document, holder_key, purpose="authentication", challenge="abc", domain="example.com"
        )
        assert proof.challenge == "abc"
        assert proof.domain == "example.com"
        assert engine.verify(document, proof).valid

        assert not engine.verify(document, proof.to_dict() | {"challenge": "other"}).valid

    def test_sentinel(self, engine, issuer_key, document):
        proof = engine.sign(document, issuer_key, invalid_signature=True)
        assert proof.proof_value == INVALID_SIGNATURE_SENTINEL


class TestVerify:
    """Tests for Data Integrity proof verification."""

    def test_valid(self, engine, issuer_key, document):
        proof = engine.sign(document, issuer_key)
        result = engine.verify(document, proof, expected_purpose="assertionMethod")

        assert result.valid is True
        assert result.method_resolved
        assert result.purpose_valid
        assert result.cryptosuite_supported
        assert result.signature_valid
        assert result.error is None

    def test_field_order_irrelevant(self, engine, issuer_key, document):
        proof = engine.sign(document, issuer_key)
        reordered = dict(reversed(list(document.items())))
        assert canonicalize_json(reordered) == canonicalize_json(document)
        assert engine.verify(reordered, proof).valid

    def test_tampered_claim(self, engine, issuer_key, document):
        proof = engine.sign(document, issuer_key)
        document["credentialSubject"]["name"] = "Tampered Name"

        result = engine.verify(document, proof)

        assert result.valid is False
        assert result.signature_valid is False
        assert result.method_resolved is True
        assert "Invalid signature" in result.errors

    def test_missing_proof(self, engine, document):
        result = engine.verify(document, None)
        assert result.valid is False
        assert result.errors == ["Missing proof"]

    def test_malformed_proof(self, engine, document):
        result = engine.verify(document, {"type": "DataIntegrityProof"})
        assert result.valid is False
        assert "Malformed proof" in result.error

    @pytest.mark.parametrize("bad_document", [None, "not a document", ["a", "list"]])
    def test_document_not_an_object(self, engine, issuer_key, document, bad_document):
        proof = engine.sign(document, issuer_key)
        result = engine.verify(bad_document, proof)

        assert result.valid is False
        assert result.signature_valid is False
        assert result.method_resolved is True
        assert result.purpose_valid is True
        assert result.cryptosuite_supported is True
        assert "JSON object" in result.error

    def test_unsupported_cryptosuite(self, engine, issuer_key, document):
        proof = engine.sign(document, issuer_key).to_dict()
        proof["cryptosuite"] = "unsupported-suite"

        result = engine.verify(document, proof)

        assert result.valid is False
        assert result.cryptosuite_supported is False
        assert result.method_resolved is True
        assert "unsupported" in result.error.lower()

    def test_unresolvable_method(self, engine, document):
        key = SigningKey.generate("did:example:stranger")
        proof = engine.sign(document, key)

        result = engine.verify(document, proof)

        assert result.valid is False
        assert result.method_resolved is False
        assert result.cryptosuite_supported is True

    def test_wrong_key(self, engine, issuer_key, document):
        forger = SigningKey(issuer_key.verification_method, SigningKey.generate("did:example:x").private_key)
        proof = engine.sign(document, forger)
        assert engine.verify(document, proof).signature_valid is False

    def test_purpose_mismatch(self, engine, issuer_key, document):
        proof = engine.sign(document, issuer_key, purpose="authentication")
        result = engine.verify(document, proof, expected_purpose="assertionMethod")

        assert result.valid is False
        assert result.purpose_valid is False
        assert result.signature_valid is True

    def test_purpose_not_in_did_document(self, engine, issuer_key, document):
        proof = engine.sign(document, issuer_key, purpose="capabilityInvocation")
        result = engine.verify(document, proof)

        assert result.valid is False
        assert result.purpose_valid is False

    def test_sentinel_only_clears_signature(self, engine, issuer_key, document):
        proof = engine.sign(document, issuer_key, invalid_signature=True)
        result = engine.verify(document, proof)

        assert result.valid is False
        assert result.signature_valid is False
        assert result.method_resolved is True
        assert result.purpose_valid is True
        assert result.cryptosuite_supported is True
        assert result.errors == ["Invalid signature"]


class TestJWS:
    """Tests for the ES256 compact JWS."""

    def test_round_trip(self, engine, issuer_key):
        token = engine.sign_jws({"sub": "did:web:holder.example.com"}, issuer_key, typ="vc+sd-jwt")
        result, payload = engine.verify_jws(token)

        assert result.valid is True
        assert result.cryptosuite == "ES256"
        assert payload == {"sub": "did:web:holder.example.com"}

    def test_tampered_payload(self, engine, issuer_key):
        token = engine.sign_jws({"sub": "a"}, issuer_key)
        other = engine.sign_jws({"sub": "b"}, issuer_key)
        header, _, signature = token.split(".")
        forged = ".".join([header, other.split(".")[1], signature])

        result, payload = engine.verify_jws(forged)

        assert result.valid is False
        assert payload == {"sub": "b"}

    def test_malformed(self, engine):
        result, payload = engine.verify_jws("not-a-jws")
        assert result.valid is False
        assert payload is None
        assert "Malformed JWS" in result.error

    def test_sentinel(self, engine, issuer_key):
        token = engine.sign_jws({"sub": "a"}, issuer_key, invalid_signature=True)
        result, payload = engine.verify_jws(token)

        assert result.valid is False
        assert result.method_resolved is True
        assert payload == {"sub": "a"}
