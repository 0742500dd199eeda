"""File-trigger event matching and cluster peer specs."""

from __future__ import annotations

import enum
from dataclasses import dataclass

_U64_MAX = 2**64 - 1


class FileEventKind(enum.Enum):
    """Kind of a filesystem change notification."""

    ANY = "any"
    ACCESS = "access"
    CREATE = "create"
    MODIFY = "modify"
    REMOVE = "remove"
    OTHER = "other"


_WANTED = {
    "create": FileEventKind.CREATE,
    "modify": FileEventKind.MODIFY,
    "delete": FileEventKind.REMOVE,
}


def event_matches(kind: FileEventKind, want: str) -> bool:
    """True if a file trigger's event mask ``want`` accepts ``kind``."""
    if want == "any":
        return True
    expected = _WANTED.get(want)
    return expected is not None and kind is expected


@dataclass(frozen=True)
class PeerNode:
    """One member of a cluster: stable id and network address."""

    id: int
    addr: str


def parse_peer(spec: str) -> PeerNode:
    """Parse ``id@host:port``; raises ValueError on a malformed spec."""
    id_text, sep, addr = spec.partition("@")
    if not sep:
        raise ValueError(f"peer spec {spec!r} missing '@' (expected id@host:port)")
    if not id_text.lstrip("+").isdigit() or id_text.count("+") > 1 or not id_text.isascii():
        raise ValueError(f"peer id {id_text!r} is not a valid u64")
    node_id = int(id_text)
    if node_id > _U64_MAX:
        raise ValueError(f"peer id {id_text!r} is not a valid u64")
    if not addr:
        raise ValueError(f"peer spec {spec!r} has empty address")
    return PeerNode(id=node_id, addr=addr)