"""
Source model: SourceRef citations with explicit epistemic roles.

Cards and aggregates reference sources by id only; the registry holds the full
citation. Within a refresh the registry is add-only: an id that is already
registered keeps its first citation.
"""

import logging
import re
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

logger = logging.getLogger(__name__)

SOURCE_TYPES = (
    "manifesto",
    "policy_doc",
    "speech",
    "news_headline",
    "poll",
    "dataset",
    "official_stat",
    "other",
)

SOURCE_ROLES = (
    "party_stance_authoritative",
    "party_contextual",
    "media_framing",
    "polling_evidence",
    "public_signal_proxy",
    "reality_metric",
    "institutional_constraint",
)


@dataclass
class SourceRef:
    id: str
    title: str
    type: str
    role: str
    retrieved_at: str
    publisher: Optional[str] = None
    published_at: Optional[str] = None
    url: Optional[str] = None
    location: Optional[str] = None
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


def now_iso() -> str:
    """UTC timestamp to the second, e.g. 2024-05-01T12:00:00Z."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def create_source_ref(
    id: str,
    title: str,
    type: str,
    role: str,
    publisher: Optional[str] = None,
    published_at: Optional[str] = None,
    retrieved_at: Optional[str] = None,
    url: Optional[str] = None,
    location: Optional[str] = None,
    note: Optional[str] = None,
) -> SourceRef:
    """
    Build a SourceRef, stamping retrieved_at with the current time when omitted.

    Raises:
        ValueError: If type or role is outside the enumerations
    """
    if type not in SOURCE_TYPES:
        raise ValueError(f"Unknown source type: {type}")
    if role not in SOURCE_ROLES:
        raise ValueError(f"Unknown source role: {role}")
    return SourceRef(
        id=id,
        title=title,
        type=type,
        role=role,
        retrieved_at=retrieved_at or now_iso(),
        publisher=publisher,
        published_at=published_at,
        url=url,
        location=location,
        note=note,
    )


def source_id(prefix: str, slug: str) -> str:
    """Compose a source id, replacing anything outside [a-z0-9_-] with underscores."""
    return f"{prefix}_{re.sub(r'[^a-z0-9_-]', '_', slug, flags=re.IGNORECASE)}"


class SourceRegistry:
    """Add-only mapping of source id -> SourceRef."""

    def __init__(self):
        self._refs: Dict[str, SourceRef] = {}

    def add(self, ref: SourceRef) -> bool:
        """
        Register a citation unless its id is already present.

        Returns:
            True if the ref was added, False if the id was already registered
        """
        if ref.id in self._refs:
            return False
        self._refs[ref.id] = ref
        return True

    def get(self, ref_id: str) -> Optional[SourceRef]:
        return self._refs.get(ref_id)

    def __contains__(self, ref_id: str) -> bool:
        return ref_id in self._refs

    def __len__(self) -> int:
        return len(self._refs)

    def __iter__(self) -> Iterator[str]:
        return iter(self._refs)

    def items(self):
        return self._refs.items()

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {k: v.to_dict() for k, v in self._refs.items()}
