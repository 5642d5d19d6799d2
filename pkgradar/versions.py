"""Version ordering over free-text version strings.

Upstream projects follow no single version grammar, so versions are
compared token by token: maximal digit runs compare numerically, maximal
letter runs compare lexically, and separators are ignored.  Anything that
cannot be split this way is ``INCOMPARABLE`` and callers must treat the
comparison as unknown.
"""

import re
from enum import Enum

from .errors import ParseError

_VALID_RE = re.compile(r"^[0-9][0-9A-Za-z._+~-]*$")
_TOKEN_RE = re.compile(r"\d+|[A-Za-z]+")


class Ordering(str, Enum):
    LESS = "less"
    EQUAL = "equal"
    GREATER = "greater"
    INCOMPARABLE = "incomparable"


def decompose(version: str) -> tuple[int | str, ...]:
    """Split a version string into orderable tokens.

    A leading ``v``/``V`` directly followed by a digit is dropped
    (``v1.2`` == ``1.2``).

    Args:
        version: Version string such as ``1.36.1`` or ``2.0rc3``.

    Returns:
        Tuple of ints (numeric tokens) and lowercase strings (literal tokens).

    Raises:
        ParseError: if the string is empty or not shaped like a version.
    """
    v = (version or "").strip()
    if len(v) > 1 and v[0] in "vV" and v[1].isdigit():
        v = v[1:]
    if not _VALID_RE.match(v):
        raise ParseError(f"cannot parse version {version!r}")
    return tuple(int(t) if t.isdigit() else t.lower() for t in _TOKEN_RE.findall(v))


def is_decomposable(version: str) -> bool:
    try:
        decompose(version)
    except ParseError:
        return False
    return True


def _cmp_token(x: int | str, y: int | str) -> int:
    # a number always sorts after a word: 1.0.1 > 1.0rc1
    if isinstance(x, int) and isinstance(y, str):
        return 1
    if isinstance(x, str) and isinstance(y, int):
        return -1
    if x == y:
        return 0
    return -1 if x < y else 1  # type: ignore[operator]


def compare_tokens(a: tuple[int | str, ...], b: tuple[int | str, ...]) -> Ordering:
    for x, y in zip(a, b):
        c = _cmp_token(x, y)
        if c:
            return Ordering.LESS if c < 0 else Ordering.GREATER
    if len(a) == len(b):
        return Ordering.EQUAL
    return Ordering.LESS if len(a) < len(b) else Ordering.GREATER


def compare(a: str, b: str) -> Ordering:
    """Order two version strings.

    Args:
        a: First version.
        b: Second version.

    Returns:
        ``LESS``, ``EQUAL`` or ``GREATER`` describing ``a`` relative to
        ``b``, or ``INCOMPARABLE`` when either string cannot be decomposed.
        Never raises.
    """
    try:
        ta = decompose(a)
        tb = decompose(b)
    except ParseError:
        return Ordering.INCOMPARABLE
    return compare_tokens(ta, tb)
