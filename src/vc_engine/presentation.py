"""
Presentation Builder.

Wraps a credential in a holder-signed Verifiable Presentation, optionally
cutting the credential subject down to the claims the holder chose to show.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import Iterable

from vc_engine.keys import SigningKey
from vc_engine.models import NON_CLAIM_FIELDS, Credential, CredentialSubject, Presentation
from vc_engine.proof import ProofEngine

logger = logging.getLogger(__name__)


class PresentationError(Exception):
    """Raised when a presentation cannot be built."""


def filter_subject(subject: CredentialSubject, keep: Iterable[str]) -> CredentialSubject:
    """Copy of ``subject`` keeping only the named claims plus technical fields."""
    keep = set(keep) | set(NON_CLAIM_FIELDS)
    return CredentialSubject(
        id=subject.id,
        type=subject.type,
        claims={name: value for name, value in subject.claims.items() if name in keep},
    )


class PresentationBuilder:
    """Builds holder-bound Verifiable Presentations."""

    def __init__(self, proof_engine: ProofEngine) -> None:
        self.proof_engine = proof_engine

    def wrap(
        self,
        credential: Credential,
        disclosed_claim_names: Iterable[str] | None,
        holder_key: SigningKey,
        challenge: str | None = None,
        domain: str | None = None,
    ) -> Presentation:
        """Wrap ``credential`` in a presentation signed by the holder.

        Args:
            credential: The credential to present.
            disclosed_claim_names: Claims to reveal. ``None`` reveals all.
            holder_key: Key of the credential subject.
            challenge: Verifier challenge bound into the presentation proof.
            domain: Verifier domain bound into the presentation proof.

        Returns:
            The signed presentation. A strict subset of claims produces an
            embedded credential flagged as selectively disclosed.

        Raises:
            PresentationError: If the key does not belong to the holder.
        """
        holder = credential.subject.id
        if holder_key.controller != holder:
            raise PresentationError(
                f"Key {holder_key.verification_method} does not belong to holder {holder}"
            )

        available = set(credential.subject.claim_names())
        disclosed = available if disclosed_claim_names is None else set(disclosed_claim_names)

        embedded = replace(credential, selectively_disclosed=False)
        if not available <= disclosed:
            embedded = replace(
                credential,
                subject=filter_subject(credential.subject, disclosed),
                selectively_disclosed=True,
            )
            logger.debug(
                "Partially disclosing %s: %s",
                credential.id,
                sorted(available & disclosed),
            )

        presentation = Presentation(
            id=f"urn:uuid:{uuid.uuid4()}",
            holder=holder,
            credentials=(embedded,),
        )
        proof = self.proof_engine.sign(
            presentation.to_dict(include_proof=False),
            holder_key,
            purpose="assertionMethod",
            challenge=challenge,
            domain=domain,
        )
        logger.info("Created presentation %s for %s", presentation.id, credential.id)
        return presentation.with_proof(proof)
