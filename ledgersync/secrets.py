"""
Secrets reference provider.

Secrets appear in configuration as references (e.g., "env:RPC_TOKEN"), not
raw values, so config files can be committed and nothing sensitive reaches
the console or the audit log.

The reference format is: "<provider>:<key>"
- env:VAR_NAME  - environment variable
- file:PATH     - first line of a file (e.g., a mounted secret)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Protocol


class SecretsProvider(Protocol):
    """Protocol for resolving secret references to values."""

    def get(self, ref: str) -> str | None:
        """Resolve a secret reference to its value, or None if not found."""
        ...

    def supports(self, ref: str) -> bool:
        """Check if this provider can handle the given reference."""
        ...


class EnvSecretsProvider:
    """
    Resolve secrets from environment variables.

    Example: "env:RPC_TOKEN" resolves to os.environ["RPC_TOKEN"]
    """

    PREFIX = "env:"

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        var_name = ref[len(self.PREFIX) :]
        return os.environ.get(var_name)


class FileSecretsProvider:
    """Resolve secrets from files: "file:/run/secrets/rpc_token"."""

    PREFIX = "file:"

    def supports(self, ref: str) -> bool:
        return ref.startswith(self.PREFIX)

    def get(self, ref: str) -> str | None:
        if not self.supports(ref):
            return None
        path = Path(ref[len(self.PREFIX) :]).expanduser()
        if not path.is_file():
            return None
        lines = path.read_text(encoding="utf-8").splitlines()
        return lines[0].strip() if lines else None


class CompositeSecretsProvider:
    """
    Combine multiple secrets providers.

    Tries each provider in order until one returns a value.
    """

    def __init__(self, providers: list[SecretsProvider] | None = None):
        self.providers = providers or [EnvSecretsProvider(), FileSecretsProvider()]

    def supports(self, ref: str) -> bool:
        return any(p.supports(ref) for p in self.providers)

    def get(self, ref: str) -> str | None:
        for provider in self.providers:
            if provider.supports(ref):
                value = provider.get(ref)
                if value is not None:
                    return value
        return None


def resolve_secret(ref: str | None, provider: SecretsProvider | None = None) -> str | None:
    """Resolve one reference; ``None`` in, ``None`` out."""
    if not ref:
        return None
    provider = provider or CompositeSecretsProvider()
    return provider.get(ref)
