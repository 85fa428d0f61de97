"""
Credential storage contract.

Persistent backends live outside this package; the in-memory store backs the
CLI demo and the tests.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod

from vc_engine.models import Credential

logger = logging.getLogger(__name__)


class CredentialStoreError(Exception):
    """Raised on duplicate or missing credentials."""


class CredentialStore(ABC):
    """Abstract credential store keyed by credential id."""

    @abstractmethod
    def save(self, credential: Credential) -> None:
        """Store a new credential.

        Raises:
            CredentialStoreError: If a credential with the same id exists.
        """

    @abstractmethod
    def get(self, credential_id: str) -> Credential:
        """Fetch a credential by id.

        Raises:
            CredentialStoreError: If the credential is unknown.
        """

    @abstractmethod
    def list(self, holder: str | None = None) -> list[Credential]:
        """List credentials in save order, optionally only those whose subject is ``holder``."""
        """List stored credentials, optionally only those of ``holder``."""

    @abstractmethod
    def delete(self, credential_id: str) -> None:
        """Delete a credential.

        Raises:
            CredentialStoreError: If the credential is unknown.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}>"


class InMemoryCredentialStore(CredentialStore):
    """Credential store held in a process-local dict.

    Writes are serialized by a lock and credentials are listed in the order
    they were saved.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._credentials: dict[str, Credential] = {}

    def save(self, credential: Credential) -> None:
        """Store ``credential`` under its id."""
        with self._lock:
            if credential.id in self._credentials:
                raise CredentialStoreError(f"Duplicate credential id: {credential.id}")
            self._credentials[credential.id] = credential
        logger.debug("Stored %s", credential.id)

    def get(self, credential_id: str) -> Credential:
        """Return the stored credential object itself, not a copy."""
        try:
            return self._credentials[credential_id]
        except KeyError:
            raise CredentialStoreError(f"Credential not found: {credential_id}") from None

    def list(self, holder: str | None = None) -> list[Credential]:
        """List credentials in save order, optionally only those of ``holder``."""
        credentials = list(self._credentials.values())
        if holder is None:
            return credentials
        return [c for c in credentials if c.subject.id == holder]

    def delete(self, credential_id: str) -> None:
        """Remove the credential stored under ``credential_id``."""
        with self._lock:
            if self._credentials.pop(credential_id, None) is None:
                raise CredentialStoreError(f"Credential not found: {credential_id}")
        logger.debug("Deleted %s", credential_id)
