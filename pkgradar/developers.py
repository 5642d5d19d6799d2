"""Developer ownership lookup.

Parses a DEVELOPERS file made of blocks like::

    N:	Jane Doe <jane@example.com>
    F:	package/busybox/
    F:	package/zlib/zlib.mk

and answers "who looks after this recipe path?".
"""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Developer:
    """A developer and the paths they own.

    Attributes:
        name: Name and e-mail as written in the file.
        files: Owned paths; entries ending in ``/`` are directory prefixes.
    """

    name: str
    files: tuple[str, ...] = ()

    def owns(self, path: str) -> bool:
        for f in self.files:
            if path == f:
                return True
            if f.endswith("/") and path.startswith(f):
                return True
        return False


class DeveloperIndex:
    """Read-only lookup from a recipe path to the developers owning it."""

    def __init__(self, developers: list[Developer] | None = None):
        self._developers = tuple(developers or ())

    def __len__(self) -> int:
        return len(self._developers)

    def developers_for(self, path: str) -> list[str]:
        return [d.name for d in self._developers if d.owns(path)]


def parse_developers(text: str) -> DeveloperIndex:
    """Parse the contents of a DEVELOPERS file.

    Args:
        text: File contents.

    Returns:
        ``DeveloperIndex`` over every ``N:`` block that owns at least one path.
    """
    developers: list[Developer] = []
    name: str | None = None
    files: list[str] = []

    def _flush() -> None:
        if name and files:
            developers.append(Developer(name=name, files=tuple(files)))

    for raw in text.splitlines():
        line = raw.strip()
        if line.startswith("#"):
            continue
        if not line:
            _flush()
            name, files = None, []
        elif line.startswith("N:"):
            _flush()
            name, files = line[2:].strip(), []
        elif line.startswith("F:") and name:
            files.append(line[2:].strip())
    _flush()
    return DeveloperIndex(developers)


def load_developers(path: Path) -> DeveloperIndex:
    return parse_developers(path.read_text(encoding="utf-8"))
