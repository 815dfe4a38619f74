"""Identifier format checks and namespace extraction.

Identifiers look like ``<namespace>-<token>``. The structural rule shared by
client and backend is "exactly two non-empty dash-separated components";
each backend deployment additionally pins a stricter pattern (see
``IdentifierFormat``).
"""

from __future__ import annotations

import re
from typing import Final

NAMESPACE_PATTERN: Final = re.compile(r"^[A-Za-z0-9_]+$")

# Namespace, one dash, alphanumeric token
DEFAULT_ID_PATTERN: Final = r"^(?P<namespace>[A-Za-z0-9_]+)-(?P<token>[A-Za-z0-9]+)$"


def is_valid_namespace(namespace: str) -> bool:
    """A namespace is a short run of letters, digits or underscores (no dashes)."""
    return bool(namespace) and NAMESPACE_PATTERN.match(namespace) is not None


def is_valid_identifier(identifier: object) -> bool:
    """Structural check: exactly two non-empty dash-separated components."""
    if not isinstance(identifier, str) or not identifier:
        return False
    parts = identifier.split("-")
    return len(parts) == 2 and all(parts)


def get_namespace(identifier: str) -> str:
    """Return the namespace component of an identifier."""
    return identifier.split("-", 1)[0]


class IdentifierFormat:
    """A deployment's fixed identifier pattern.

    The pattern may define a ``namespace`` named group; when it does, that
    group is used as the namespace, otherwise the text before the first dash.

    Example:
        >>> fmt = IdentifierFormat(r"^publisher-\\d+$")
        >>> fmt.matches("publisher-42")
        True
    """

    def __init__(self, pattern: str) -> None:
        self.pattern = re.compile(pattern)

    def matches(self, identifier: object) -> bool:
        if not isinstance(identifier, str) or not is_valid_identifier(identifier):
            return False
        return self.pattern.fullmatch(identifier) is not None

    def namespace_of(self, identifier: str) -> str:
        match = self.pattern.fullmatch(identifier)
        if match is not None and "namespace" in self.pattern.groupindex:
            return match.group("namespace")
        return get_namespace(identifier)
