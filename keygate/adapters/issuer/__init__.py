"""Upstream issuer adapters - abstract the service that mints raw keys."""

from keygate.adapters.issuer.base import AbstractCredentialIssuer, IssuedCredential
from keygate.adapters.issuer.http_client import HttpCredentialIssuer

__all__ = [
    "AbstractCredentialIssuer",
    "HttpCredentialIssuer",
    "IssuedCredential",
]
