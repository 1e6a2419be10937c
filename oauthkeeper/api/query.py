"""
Query string parsing for the list and count endpoints.

Each parser returns plain values or raises ``ParameterError`` with the
message shown to the caller.
"""

import re
from typing import List, Optional, Set, Tuple

from oauthkeeper.storage.interface import USER_SORT_KEYS

from .errors import ParameterError

DEFAULT_PAGE_SIZE = 100
USER_OPTIONAL_FIELDS = ("expired", "disabled")

_DIGITS = re.compile(r"^[0-9]+$")


def parse_paging(num: Optional[str], p: Optional[str]) -> Tuple[int, int]:
    """
    Parse ``num`` (page size) and ``p`` (1-based page).

    ``p=0`` is accepted and means the first page.

    Returns:
        ``(skip, limit)``
    """
    num = num or str(DEFAULT_PAGE_SIZE)
    p = p or "1"
    if not _DIGITS.match(num) or int(num) == 0:
        raise ParameterError("`num` must be a positive number")
    if not _DIGITS.match(p):
        raise ParameterError("`p` must be zero or a positive number")
    limit = int(num)
    page = max(int(p), 1)
    return (page - 1) * limit, limit


def parse_user_fields(fields: Optional[str]) -> Set[str]:
    """Optional user fields to include in list results, besides ``roles``."""
    if fields is None:
        return set()
    selected = set()
    for name in fields.split(","):
        if name not in USER_OPTIONAL_FIELDS:
            raise ParameterError("`fields` must be expired or disabled")
        selected.add(name)
    return selected


def parse_user_sort(sort: Optional[str]) -> List[Tuple[str, bool]]:
    """Parse ``key:asc|desc`` pairs, comma separated, into ``(key, ascending)``."""
    if sort is None:
        return []
    result = []
    seen = set()
    for item in sort.split(","):
        pair = item.split(":")
        if len(pair) != 2:
            raise ParameterError("`sort` must be [field:asc|desc] pairs")
        key, order = pair
        if key not in USER_SORT_KEYS:
            raise ParameterError("sort key must be email, created, validated, or name")
        if order not in ("asc", "desc"):
            raise ParameterError("sort value must be asc or desc")
        if key in seen:
            raise ParameterError("duplicate sort keys")
        seen.add(key)
        result.append((key, order == "asc"))
    return result
