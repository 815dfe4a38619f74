"""Identifier generation and format checks."""

from newspassid.identity.generator import generate_id, generate_token
from newspassid.identity.identifiers import (
    IdentifierFormat,
    get_namespace,
    is_valid_identifier,
    is_valid_namespace,
)

__all__ = [
    "IdentifierFormat",
    "generate_id",
    "generate_token",
    "get_namespace",
    "is_valid_identifier",
    "is_valid_namespace",
]
