"""
Command-line interface for vc-engine.

Usage:
    vc-engine verify credential.json
    vc-engine verify https://example.com/credentials/123
    cat presentation.txt | vc-engine verify -
    vc-engine demo --disclose name --revoked
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
import httpx
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from vc_engine import __version__
from vc_engine.did_resolver import DIDResolver
from vc_engine.issuer import CredentialIssuer, IssuanceOptions
from vc_engine.keys import SigningKey
from vc_engine.presentation import PresentationBuilder
from vc_engine.proof import ProofEngine
from vc_engine.sd_jwt import SDJWTCodec
from vc_engine.statuslist import RevocationRegistry, StatusListChecker
from vc_engine.store import InMemoryCredentialStore
from vc_engine.verifier import CredentialVerifier, VerificationResult

console = Console()

DEMO_ISSUER_DID = "did:web:issuer.example.com"
DEMO_HOLDER_DID = "did:web:holder.example.com"
DEMO_CLAIMS = {
    "name": "Alice Example",
    "email": "alice@example.com",
    "birthDate": "1990-01-01",
    "nationality": "NL",
}

CHECK_LABELS = {
    "schemaValid": "Schema",
    "notExpired": "Not expired",
    "notRevoked": "Not revoked",
    "proofValid": "Proof",
    "issuerValid": "Issuer",
}


def format_result(result: VerificationResult, title: str = "Verification Result") -> None:
    """Format and print verification result."""
    if result.is_valid:
        status_icon = "[bold green]VALID[/]"
        panel_style = "green"
    else:
        status_icon = "[bold red]INVALID[/]"
        panel_style = "red"

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")

    table.add_row("Status", status_icon)
    table.add_row("Format", result.format.value)

    if result.credential_id:
        table.add_row("Credential ID", result.credential_id)

    if result.issuer:
        table.add_row("Issuer", result.issuer)

    for key, passed in result.checks.to_dict().items():
        table.add_row(CHECK_LABELS[key], "[green]Pass[/]" if passed else "[red]Fail[/]")

    console.print(Panel(table, title=title, border_style=panel_style))

    if result.errors:
        console.print("\n[bold red]Errors:[/]")
        for error in result.errors:
            console.print(f"  [red]x[/] {error}")


def parse_input(content: str) -> dict[str, Any] | str:
    """Parse a JSON document, or return a raw SD-JWT presentation string."""
    text = content.strip()
    if text.startswith("{"):
        return json.loads(text)
    if not text:
        raise click.ClickException("Empty input")
    return text


def load_input(source: str, timeout: float = 30.0, verify_ssl: bool = True) -> dict[str, Any] | str:
    """Load a credential, presentation or SD-JWT from file, URL, or stdin.

    Args:
        source: File path, URL, or "-" for stdin.
        timeout: HTTP request timeout in seconds.
        verify_ssl: Whether to verify SSL certificates.

    Returns:
        Parsed JSON document or the raw SD-JWT presentation.
    """
    if source == "-":
        return parse_input(sys.stdin.read())

    if source.startswith("http://") or source.startswith("https://"):
        with httpx.Client(timeout=timeout, verify=verify_ssl) as client:
            response = client.get(
                source,
                headers={"Accept": "application/vc+ld+json, application/vc+sd-jwt, application/json"},
            )
            response.raise_for_status()
            return parse_input(response.text)

    path = Path(source)
    if not path.exists():
        raise click.ClickException(f"File not found: {source}")

    with path.open(encoding="utf-8") as f:
        return parse_input(f.read())


def _print_error(message: str, json_output: bool) -> None:
    if json_output:
        console.print_json(data={"error": message})
    else:
        console.print(f"[red]Error:[/] {message}")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.version_option(__version__)
def main(verbose: bool) -> None:
    """Issue, disclose and verify W3C Verifiable Credentials."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
    )


@main.command()
@click.argument("source", required=True)
@click.option(
    "--no-status",
    is_flag=True,
    help="Skip remote StatusList2021 checks",
)
@click.option(
    "--no-ssl-verify",
    is_flag=True,
    help="Disable SSL certificate verification",
)
@click.option(
    "--json-output",
    is_flag=True,
    help="Output result as JSON",
)
@click.option(
    "--timeout",
    type=float,
    default=30.0,
    help="HTTP request timeout in seconds",
)
@click.option("--detailed", is_flag=True, help="Include technical details in JSON output")
def verify(
    source: str,
    no_status: bool,
    no_ssl_verify: bool,
    json_output: bool,
    timeout: float,
    detailed: bool,
) -> None:
    """Verify a credential, presentation or SD-JWT presentation.

    SOURCE can be:
    - A file path (e.g., credential.json)
    - A URL (e.g., https://example.com/credentials/123)
    - "-" to read from stdin

    Examples:

        vc-engine verify credential.json

        vc-engine verify https://example.com/credentials/123

        cat presentation.txt | vc-engine verify -
    """
    try:
        document = load_input(source, timeout=timeout, verify_ssl=not no_ssl_verify)

        did_resolver = DIDResolver(timeout=timeout, verify_ssl=not no_ssl_verify)
        status_checker = (
            None if no_status else StatusListChecker(timeout=timeout, verify_ssl=not no_ssl_verify)
        )
        verifier = CredentialVerifier(did_resolver=did_resolver, status_checker=status_checker)

        result = verifier.verify_detailed(document) if detailed else verifier.verify(document)

    except json.JSONDecodeError as e:
        _print_error(f"Invalid JSON: {e}", json_output)
        sys.exit(2)

    except httpx.HTTPError as e:
        _print_error(f"HTTP error: {e}", json_output)
        sys.exit(2)

    except click.ClickException as e:
        _print_error(e.format_message(), json_output)
        sys.exit(2)

    if json_output:
        console.print_json(data=result.to_dict())
    else:
        format_result(result)

    sys.exit(0 if result.is_valid else 1)


@main.command()
@click.option("--invalid-signature", is_flag=True, help="Sign with the sentinel signature")
@click.option("--expired", is_flag=True, help="Issue an already expired credential")
@click.option("--invalid-issuer", is_flag=True, help="Use a malformed issuer DID")
@click.option("--missing-fields", is_flag=True, help="Issue without subject claims")
@click.option("--revoked", is_flag=True, help="Revoke the credential right after issuance")
@click.option(
    "--disclose",
    "disclose",
    multiple=True,
    metavar="NAME",
    help="Claim to disclose (repeatable); enables SD-JWT and partial presentation",
)
@click.option("--json-output", is_flag=True, help="Output results as JSON")
def demo(
    invalid_signature: bool,
    expired: bool,
    invalid_issuer: bool,
    missing_fields: bool,
    revoked: bool,
    disclose: tuple[str, ...],
    json_output: bool,
) -> None:
    """Run issue -> store -> disclose -> verify in process.

    Every error-injection flag makes exactly one check fail.

    Examples:

        vc-engine demo

        vc-engine demo --disclose name --disclose email

        vc-engine demo --expired --json-output
    """
    issuer_key = SigningKey.generate(DEMO_ISSUER_DID)
    holder_key = SigningKey.generate(DEMO_HOLDER_DID)
    resolver = DIDResolver(documents=[issuer_key.did_document(), holder_key.did_document()])
    registry = RevocationRegistry()
    engine = ProofEngine(resolver)
    issuer = CredentialIssuer(issuer_key, registry, engine, name="Example Issuer")
    store = InMemoryCredentialStore()
    verifier = CredentialVerifier(resolver, registry, engine)

    credential = issuer.issue(
        DEMO_HOLDER_DID,
        DEMO_CLAIMS,
        IssuanceOptions(
            invalid_signature=invalid_signature,
            expired_credential=expired,
            invalid_issuer=invalid_issuer,
            missing_fields=missing_fields,
            revoked_credential=revoked,
        ),
    )
    store.save(credential)

    results: list[tuple[str, VerificationResult]] = [
        ("Credential", verifier.verify(store.get(credential.id)))
    ]

    if disclose:
        codec = SDJWTCodec(engine)
        bundle = codec.encode(credential, credential.subject.claim_names(), issuer_key)
        presentation = codec.present(bundle, disclose)
        results.append(("SD-JWT Presentation", verifier.verify(presentation)))

        wrapped = PresentationBuilder(engine).wrap(credential, disclose, holder_key)
        results.append(("Verifiable Presentation", verifier.verify(wrapped)))

    if json_output:
        console.print_json(data={title: result.to_dict() for title, result in results})
    else:
        for title, result in results:
            format_result(result, title=title)

    sys.exit(0 if all(result.is_valid for _, result in results) else 1)


if __name__ == "__main__":
    main()
