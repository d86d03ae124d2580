from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass
class Candidate:
    """One item returned by the vector backend for a query.

    ``image`` holds the stored asset as a base64 string; the backend decides
    ordering, so a Candidate carries no rank of its own.
    """

    id: str
    label: str = ""
    image: Optional[str] = None
    distance: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def format_candidate(item: "Candidate") -> str:
    """Create a compact string representation for logs/printing.

    Example: "id=<id>; dist=0.1234; label=<label>; image=<n> chars"
    """
    dist_str = f"{item.distance:.4f}" if item.distance is not None else "?"
    image_str = f"{len(item.image)} chars" if item.image else "-"
    return f"id={item.id}; dist={dist_str}; label={item.label}; image={image_str}"
