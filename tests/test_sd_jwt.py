"""Tests for the SD-JWT selective disclosure codec."""

import hashlib
import json
import logging

import pytest

from vc_engine.encoding import base64url_decode, base64url_encode
from vc_engine.sd_jwt import (
    SEPARATOR,
    Disclosure,
    SDJWTError,
    TokenMismatch,
    decode_envelope,
    digest,
    split_presentation,
)

HOLDER_DID = "did:web:holder.example.com"


@pytest.fixture
def bundle(codec, credential, issuer_key):
    return codec.encode(credential, credential.subject.claim_names(), issuer_key)


def payload_of(jwt: str) -> dict:
    return json.loads(base64url_decode(jwt.split(".")[1]))


class TestDisclosure:
    def test_token_format(self):
        disclosure = Disclosure.create("name", "Alice", "c2FsdA")
        assert json.loads(base64url_decode(disclosure.token)) == ["c2FsdA", "name", "Alice"]
        assert Disclosure.from_token(disclosure.token) == disclosure

    def test_digest(self):
        token = Disclosure.create("name", "Alice", "c2FsdA").token
        expected = base64url_encode(hashlib.sha256(token.encode("ascii")).digest())
        assert digest(token) == expected
        assert "=" not in expected

    def test_malformed_token(self):
        with pytest.raises(SDJWTError):
            Disclosure.from_token("!!!")
        with pytest.raises(SDJWTError):
            Disclosure.from_token(base64url_encode(b'{"not": "a list"}'))


class TestEncode:
    """Tests for SDJWTCodec.encode."""

    def test_envelope(self, bundle, credential, issuer_key):
        header = json.loads(base64url_decode(bundle.jwt.split(".")[0]))
        payload = payload_of(bundle.jwt)

        assert header == {"alg": "ES256", "typ": "vc+sd-jwt", "kid": issuer_key.verification_method}
        assert payload["iss"] == credential.issuer.id
        assert payload["jti"] == credential.id
        assert payload["sub"] == HOLDER_DID
        assert payload["_sd_alg"] == "sha-256"
        assert payload["nbf"] == int(credential.valid_from.timestamp())
        assert payload["exp"] == int(credential.valid_until.timestamp())
        assert payload["credentialSubject"] == {"id": HOLDER_DID, "type": "PersonalInfoCredential"}
        assert "name" not in payload["credentialSubject"]

    def test_one_digest_per_disclosure(self, bundle):
        payload = payload_of(bundle.jwt)
        assert len(bundle.disclosures) == 4
        assert payload["_sd"] == [digest(token) for token in bundle.disclosures]

    def test_claim_names(self, bundle):
        assert bundle.claim_names() == ["name", "email", "birthDate", "address"]

    def test_unknown_names_skipped(self, codec, credential, issuer_key, caplog):
        with caplog.at_level(logging.WARNING, logger="vc_engine.sd_jwt"):
            bundle = codec.encode(credential, ["name", "shoeSize", "type"], issuer_key)
        assert bundle.claim_names() == ["name"]
        assert "shoeSize" in caplog.text

    def test_salts_are_fresh(self, codec, credential, issuer_key):
        first = codec.encode(credential, ["name"], issuer_key)
        second = codec.encode(credential, ["name"], issuer_key)
        assert first.disclosures != second.disclosures

    def test_input_not_mutated(self, codec, credential, issuer_key):
        before = credential.to_dict()
        codec.encode(credential, ["name"], issuer_key)
        assert credential.to_dict() == before


class TestPresentAndDecode:
    """Tests for presenting a subset of claims and decoding it."""

    def test_subset(self, codec, bundle):
        presentation = codec.present(bundle, ["name", "email"])
        decoded = codec.decode(presentation)

        assert set(decoded.subject.to_dict()) == {"id", "type", "name", "email"}
        assert decoded.subject.claims == {"name": "Alice Example", "email": "alice@example.com"}

    def test_all_claims(self, codec, bundle, credential):
        decoded = codec.decode(bundle.serialize())

        assert decoded.subject == credential.subject
        assert decoded.id == credential.id
        assert decoded.types == credential.types
        assert decoded.issuer == credential.issuer
        assert decoded.valid_from == credential.valid_from
        assert decoded.valid_until == credential.valid_until
        assert decoded.status == credential.status

    def test_empty_selection(self, codec, bundle):
        presentation = codec.present(bundle, [])
        assert presentation == bundle.jwt
        assert codec.decode(presentation).subject.claims == {}

    def test_unknown_names_omitted(self, codec, bundle):
        presentation = codec.present(bundle, ["name", "shoeSize"])
        _, tokens = split_presentation(presentation)
        assert [Disclosure.from_token(t).name for t in tokens] == ["name"]

    def test_id_disclosure_always_kept(self, codec, credential, issuer_key):
        bundle = codec.encode(credential, ["id", "name"], issuer_key)
        presentation = codec.present(bundle, ["name"])
        assert presentation.count(SEPARATOR) == 2
        assert codec.decode(presentation).subject.id == HOLDER_DID

    def test_proof_carries_presentation(self, codec, bundle, issuer_key):
        presentation = codec.present(bundle, ["name"])
        decoded = codec.decode(presentation)

        assert decoded.proof.type == "SdJwtProof"
        assert decoded.proof.proof_value == presentation
        assert decoded.proof.verification_method == issuer_key.verification_method
        assert decoded.proof.cryptosuite == "ES256"

    def test_forged_disclosure(self, codec, bundle):
        forged = Disclosure.create("name", "Mallory", "c2FsdA")
        with pytest.raises(TokenMismatch):
            codec.decode(SEPARATOR.join([bundle.jwt, forged.token]))

    def test_duplicate_disclosure(self, codec, bundle):
        token = bundle.disclosures[0]
        with pytest.raises(SDJWTError, match="twice"):
            codec.decode(SEPARATOR.join([bundle.jwt, token, token]))

    def test_malformed_envelope(self, codec):
        with pytest.raises(SDJWTError):
            codec.decode("not.a.jwt~")
        with pytest.raises(SDJWTError):
            codec.decode("")

    def test_unsupported_digest_algorithm(self, issuer_key, engine):
        payload = {"_sd": [], "_sd_alg": "md5"}
        jwt = engine.sign_jws(payload, issuer_key)
        with pytest.raises(SDJWTError, match="md5"):
            decode_envelope(jwt)

    @pytest.mark.parametrize(
        "member, value",
        [("_sd", [{"a": 1}]), ("credentialSubject", "not-an-object")],
    )
    def test_malformed_payload_member(self, codec, bundle, issuer_key, engine, member, value):
        payload = payload_of(bundle.jwt)
        payload[member] = value
        jwt = engine.sign_jws(payload, issuer_key, typ="vc+sd-jwt")

        with pytest.raises(SDJWTError):
            decode_envelope(jwt)
        with pytest.raises(SDJWTError):
            codec.decode(jwt + SEPARATOR)

    def test_out_of_range_timestamp_falls_back(self, codec, bundle, issuer_key, engine, caplog):
        payload = payload_of(bundle.jwt)
        payload["nbf"] = 99999999999999
        jwt = engine.sign_jws(payload, issuer_key, typ="vc+sd-jwt")

        with caplog.at_level(logging.WARNING, logger="vc_engine.sd_jwt"):
            decoded = codec.decode(jwt)

        assert decoded.valid_from.year < 2100
        assert "nbf" in caplog.text
