"""Shared fixtures for vc-engine tests."""

import pytest

from vc_engine.did_resolver import DIDResolver
from vc_engine.issuer import CredentialIssuer
from vc_engine.keys import SigningKey
from vc_engine.presentation import PresentationBuilder
from vc_engine.proof import ProofEngine
from vc_engine.sd_jwt import SDJWTCodec
from vc_engine.statuslist import RevocationRegistry
from vc_engine.verifier import CredentialVerifier

ISSUER_DID = "did:web:issuer.example.com"
HOLDER_DID = "did:web:holder.example.com"


@pytest.fixture
def issuer_key():
    """Assertion key of the test issuer."""
    return SigningKey.generate(ISSUER_DID)


@pytest.fixture
def holder_key():
    """Key of the test holder."""
    return SigningKey.generate(HOLDER_DID)


@pytest.fixture
def resolver(issuer_key, holder_key):
    """Resolver serving the issuer and holder DID Documents locally."""
    return DIDResolver(documents=[issuer_key.did_document(), holder_key.did_document()])


@pytest.fixture
def engine(resolver):
    return ProofEngine(resolver)


@pytest.fixture
def registry():
    return RevocationRegistry()


@pytest.fixture
def issuer(issuer_key, registry, engine):
    return CredentialIssuer(issuer_key, registry, engine, name="Example Issuer")


@pytest.fixture
def verifier(resolver, registry, engine):
    return CredentialVerifier(resolver, registry, engine)


@pytest.fixture
def codec(engine):
    return SDJWTCodec(engine)


@pytest.fixture
def builder(engine):
    return PresentationBuilder(engine)


@pytest.fixture
def claims():
    """Claims of a personal-info credential."""
    return {
        "name": "Alice Example",
        "email": "alice@example.com",
        "birthDate": "1990-01-01",
        "address": {"city": "Amsterdam", "country": "NL"},
    }


@pytest.fixture
def credential(issuer, claims):
    """A freshly issued, valid credential for the test holder."""
    return issuer.issue(HOLDER_DID, claims)
