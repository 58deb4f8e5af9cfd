"""
Per-subject configuration loaded from config/subjects.yaml.

A subject must be configured before it can be refreshed; asking for an
unconfigured subject raises UnknownSubjectError, which is one of the two
refresh-fatal conditions.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from respect_monitor.config.loader import load_yaml_config

logger = logging.getLogger(__name__)

SUBJECTS_FILE = "subjects.yaml"
DEFAULT_TRIGGER_SET = "migration"

DEFAULT_MEDIA_WINDOW_DAYS = 14
DEFAULT_POLL_WINDOW_MONTHS = 6


class UnknownSubjectError(Exception):
    """Raised when a subject id has no configuration."""

    def __init__(self, subject_id: str):
        self.subject_id = subject_id
        super().__init__(f"Unknown subject: {subject_id}")


@dataclass
class SubjectConfig:
    id: str
    label: str
    parent_id: Optional[str] = None
    media_window_days: int = DEFAULT_MEDIA_WINDOW_DAYS
    poll_window_months: int = DEFAULT_POLL_WINDOW_MONTHS
    search_query: str = ""
    keywords: List[str] = field(default_factory=list)
    institutional: Optional[Dict[str, Any]] = None
    metrics: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, subject_id: str, data: Dict[str, Any]) -> "SubjectConfig":
        return cls(
            id=subject_id,
            label=data.get("label", subject_id),
            parent_id=data.get("parent_id"),
            media_window_days=int(data.get("media_window_days", DEFAULT_MEDIA_WINDOW_DAYS)),
            poll_window_months=int(data.get("poll_window_months", DEFAULT_POLL_WINDOW_MONTHS)),
            search_query=(data.get("search_query") or "").strip(),
            keywords=[str(k) for k in data.get("keywords") or []],
            institutional=data.get("institutional"),
            metrics=data.get("metrics"),
        )


_config_cache: Optional[Dict[str, Any]] = None


def _load_raw(reload: bool = False) -> Dict[str, Any]:
    global _config_cache
    if _config_cache is None or reload:
        _config_cache = load_yaml_config(SUBJECTS_FILE)
    return _config_cache


def load_subjects(reload: bool = False) -> Dict[str, SubjectConfig]:
    """
    Load every configured subject.

    Returns:
        Dict of subject id -> SubjectConfig
    """
    raw = _load_raw(reload).get("subjects") or {}
    return {sid: SubjectConfig.from_dict(sid, data or {}) for sid, data in raw.items()}


def get_subject(subject_id: str) -> SubjectConfig:
    """
    Look up one subject.

    Raises:
        UnknownSubjectError: If the subject is not configured
    """
    subjects = load_subjects()
    if subject_id not in subjects:
        raise UnknownSubjectError(subject_id)
    return subjects[subject_id]


def get_trigger_phrases(subject_id: str) -> List[str]:
    """Trigger phrases for passage extraction, falling back to the migration set."""
    triggers = _load_raw().get("triggers") or {}
    phrases = triggers.get(subject_id)
    if phrases is None:
        phrases = triggers.get(DEFAULT_TRIGGER_SET) or []
    return [str(p) for p in phrases]
