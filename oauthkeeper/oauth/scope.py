"""Scope parsing and checks."""

from typing import Iterable, List, Optional


def parse_scope(scope: Optional[str]) -> List[str]:
    """Split a space-separated scope string into its tokens."""
    if not scope:
        return []
    return [token for token in scope.split(" ") if token]


def validate_scope(requested: Optional[str], allowed: Optional[Iterable[str]]) -> Optional[str]:
    """
    Check a requested scope against a client's allowed scopes.

    Args:
        requested: Space-separated scope from the request, if any
        allowed: The client's scope list; ``None`` for an unrestricted
                 administrative client

    Returns:
        The requested scope unchanged when every token is allowed, otherwise
        ``None``. A missing request also returns ``None`` ("no scope"); callers
        tell the two apart by whether a scope was requested at all.
    """
    tokens = parse_scope(requested)
    if not tokens or allowed is None:
        return None
    allowed_set = set(allowed)
    if all(token in allowed_set for token in tokens):
        return requested
    return None


def verify_scope(granted: Optional[str], required: Optional[str]) -> bool:
    """True only if ``granted`` is non-empty and contains every required token."""
    granted_tokens = set(parse_scope(granted))
    if not granted_tokens:
        return False
    return all(token in granted_tokens for token in parse_scope(required))


def is_subset(requested: Optional[str], original: Optional[str]) -> bool:
    """True when every token of ``requested`` appears in ``original``."""
    original_tokens = set(parse_scope(original))
    return all(token in original_tokens for token in parse_scope(requested))
