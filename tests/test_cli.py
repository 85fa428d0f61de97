"""Tests for the vc-engine command-line interface."""

import json

import pytest
import respx
from click.testing import CliRunner
from httpx import Response

from vc_engine.cli import main

ISSUER_DID_URL = "https://issuer.example.com/.well-known/did.json"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def issuer_did_route(issuer_key):
    with respx.mock:
        yield respx.get(ISSUER_DID_URL).mock(
            return_value=Response(200, json=issuer_key.did_document().to_dict())
        )


@pytest.fixture
def credential_file(tmp_path, credential):
    path = tmp_path / "credential.json"
    path.write_text(json.dumps(credential.to_dict()))
    return path


class TestVerifyCommand:
    def test_valid_file(self, runner, issuer_did_route, credential_file):
        result = runner.invoke(main, ["verify", str(credential_file), "--no-status"])

        assert result.exit_code == 0
        assert "VALID" in result.stdout
        assert "INVALID" not in result.stdout

    def test_tampered_file(self, runner, issuer_did_route, tmp_path, credential):
        data = credential.to_dict()
        data["credentialSubject"]["name"] = "Mallory"
        path = tmp_path / "tampered.json"
        path.write_text(json.dumps(data))

        result = runner.invoke(main, ["verify", str(path), "--no-status"])

        assert result.exit_code == 1
        assert "INVALID" in result.stdout

    def test_json_output(self, runner, issuer_did_route, credential_file, credential):
        result = runner.invoke(main, ["verify", str(credential_file), "--no-status", "--json-output"])
        data = json.loads(result.stdout)

        assert result.exit_code == 0
        assert data["isValid"] is True
        assert data["credentialId"] == credential.id
        assert data["checks"]["proofValid"] is True

    def test_detailed_json_output(self, runner, issuer_did_route, credential_file):
        result = runner.invoke(
            main, ["verify", str(credential_file), "--no-status", "--json-output", "--detailed"]
        )
        data = json.loads(result.stdout)

        assert data["details"]["issuerDocument"]["id"] == "did:web:issuer.example.com"

    def test_sd_jwt_from_stdin(self, runner, issuer_did_route, codec, credential, issuer_key):
        bundle = codec.encode(credential, credential.subject.claim_names(), issuer_key)
        presentation = codec.present(bundle, ["name"])

        result = runner.invoke(main, ["verify", "-", "--no-status", "--json-output"], input=presentation + "\n")
        data = json.loads(result.stdout)

        assert result.exit_code == 0
        assert data["format"] == "sd-jwt"

    def test_url_source(self, runner, issuer_did_route, credential):
        respx.get("https://example.com/credentials/1").mock(
            return_value=Response(200, json=credential.to_dict())
        )

        result = runner.invoke(main, ["verify", "https://example.com/credentials/1", "--no-status"])

        assert result.exit_code == 0

    def test_missing_file(self, runner, tmp_path):
        result = runner.invoke(main, ["verify", str(tmp_path / "nope.json")])
        assert result.exit_code == 2
        assert "File not found" in result.stdout

    def test_invalid_json(self, runner, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        result = runner.invoke(main, ["verify", str(path), "--json-output"])

        assert result.exit_code == 2
        assert "Invalid JSON" in json.loads(result.stdout)["error"]


class TestDemoCommand:
    def test_valid(self, runner):
        result = runner.invoke(main, ["demo"])

        assert result.exit_code == 0
        assert "INVALID" not in result.stdout

    @pytest.mark.parametrize(
        "flag, failing",
        [
            ("--invalid-signature", "proofValid"),
            ("--expired", "notExpired"),
            ("--invalid-issuer", "issuerValid"),
            ("--missing-fields", "schemaValid"),
            ("--revoked", "notRevoked"),
        ],
    )
    def test_error_injection(self, runner, flag, failing):
        result = runner.invoke(main, ["demo", flag, "--json-output"])
        checks = json.loads(result.stdout)["Credential"]["checks"]

        assert result.exit_code == 1
        assert [name for name, passed in checks.items() if not passed] == [failing]

    def test_disclose(self, runner):
        result = runner.invoke(main, ["demo", "--disclose", "name", "--json-output"])
        data = json.loads(result.stdout)

        assert data["Credential"]["isValid"] is True
        assert data["SD-JWT Presentation"]["isValid"] is True
        assert data["SD-JWT Presentation"]["format"] == "sd-jwt"
        assert data["Verifiable Presentation"]["isValid"] is False
        assert any(
            "selectively disclosed" in error for error in data["Verifiable Presentation"]["errors"]
        )
        assert result.exit_code == 1
