"""Credential lookup by opaque identifier."""

from __future__ import annotations

from typing import Protocol

from .models import ClientCertificate


def _text(value) -> str | None:
    return None if value is None else str(value)


class SecretResolver(Protocol):
    def resolve_secret(self, credentials_id: str) -> str | None: ...

    def resolve_certificate(self, credentials_id: str) -> ClientCertificate | None: ...


class CredentialStore:
    """Credentials held in a config mapping.

    Each entry is either a plain string (the secret) or a mapping with
    ``secret`` and/or ``certificate`` / ``key`` / ``password``.
    """

    def __init__(self, entries: dict | None = None):
        self.entries = entries or {}

    def resolve_secret(self, credentials_id: str) -> str | None:
        entry = self.entries.get(credentials_id)
        if entry is None or isinstance(entry, (list, bool)):
            return None
        if isinstance(entry, dict):
            entry = entry.get("secret") or entry.get("token")
            return str(entry) if entry else None
        return str(entry)

    def resolve_certificate(self, credentials_id: str) -> ClientCertificate | None:
        entry = self.entries.get(credentials_id)
        if not isinstance(entry, dict) or not entry.get("certificate"):
            return None
        return ClientCertificate(
            cert_file=str(entry["certificate"]),
            key_file=_text(entry.get("key")),
            password=_text(entry.get("password")),
        )


class ChainedCredentialStore:
    """Job-scoped store first, then the instance-scoped one."""

    def __init__(self, *stores: SecretResolver):
        self.stores = stores

    def resolve_secret(self, credentials_id: str) -> str | None:
        for store in self.stores:
            secret = store.resolve_secret(credentials_id)
            if secret is not None:
                return secret
        return None

    def resolve_certificate(self, credentials_id: str) -> ClientCertificate | None:
        for store in self.stores:
            cert = store.resolve_certificate(credentials_id)
            if cert is not None:
                return cert
        return None
