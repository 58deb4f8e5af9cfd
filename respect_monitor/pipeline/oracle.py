"""
External classification oracle (LLM) behind a narrow interface.

Two roles are served by the same remote dependency:

- ClassificationOracle: batch-label headlines, index -> framing id
- StanceOracle: extract party stances from manifesto excerpts, and write a
  short summary of findings for a party card

Both raise OracleError on transport failures or malformed replies. Callers
decide the fallback; nothing here retries.

Usage:
    from respect_monitor.pipeline.oracle import OpenAIOracle

    oracle = OpenAIOracle()           # needs OPENAI_API_KEY
    labels = oracle.classify("small_boats", media_items)
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from openai import OpenAI

from respect_monitor.config.secrets import get_openai_key
from respect_monitor.pipeline.models import ActorStance, RawMediaItem, StanceEvidence
from respect_monitor.pipeline.taxonomy import RESPECTS, RESPECT_IDS, is_respect_id, respect_label

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 60.0
CLASSIFY_TEMPERATURE = 0.2
SUMMARY_TEMPERATURE = 0.3

MIXED_INDETERMINATE = "mixed_indeterminate"
EXTRACTED_CONFIDENCE = 0.75
SECONDARY_CONFIDENCE_FACTOR = 0.6
MAX_EVIDENCE_QUOTES = 5
LEDE_PROMPT_CHARS = 150


class OracleError(Exception):
    """Raised when the oracle cannot produce a usable answer."""
    pass


class ClassificationOracle(ABC):
    """Batch classifier for media items."""

    @abstractmethod
    def classify(self, subject_id: str, items: Sequence[RawMediaItem]) -> Dict[int, str]:
        """
        Label each item with one framing.

        Args:
            subject_id: Subject being refreshed
            items: Items in prompt order

        Returns:
            Dict of item index -> respect id. Missing or out-of-catalog
            indices are left out so the caller applies the default.

        Raises:
            OracleError: On transport failure or malformed reply
        """
        pass


class StanceOracle(ABC):
    """Stance extraction over manifesto excerpts."""

    @abstractmethod
    def extract(
        self,
        party_id: str,
        party_label: str,
        excerpts_by_subject: Dict[str, str],
        subjects: Sequence[Dict[str, str]],
    ) -> List[Dict[str, Any]]:
        """
        Extract raw positions, one per subject.

        Returns:
            List of dicts with subject_id, primary_respect, secondary_respects,
            priority_rationale, authoritative_sources

        Raises:
            OracleError: On transport failure or malformed reply
        """
        pass

    def summarize(
        self,
        party_label: str,
        primary_respect: str,
        secondary_respect: Optional[str],
        evidence_quotes: Sequence[str] = (),
    ) -> Optional[str]:
        """Short summary of why the primary framing is primary. None when unsupported."""
        return None


def parse_classification_response(raw: str, n_items: int) -> Dict[int, str]:
    """
    Parse a classification reply of the form
    {"classifications": [{"index": 0, "respect_id": "..."}]}.

    Args:
        raw: Raw JSON text from the oracle
        n_items: Number of items that were sent

    Returns:
        Dict of index -> respect id for valid entries only

    Raises:
        OracleError: If the reply is not a JSON object with a classifications list
    """
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise OracleError(f"Oracle did not return valid JSON: {str(raw)[:200]}") from e

    if not isinstance(parsed, dict) or not isinstance(parsed.get("classifications", []), list):
        raise OracleError("Oracle reply missing 'classifications' list")

    labels: Dict[int, str] = {}
    for entry in parsed.get("classifications", []):
        if not isinstance(entry, dict):
            continue
        index = entry.get("index")
        respect_id = entry.get("respect_id")
        if isinstance(index, bool) or not isinstance(index, int):
            continue
        if not 0 <= index < n_items:
            continue
        if not isinstance(respect_id, str) or not is_respect_id(respect_id):
            logger.debug(f"Dropping out-of-catalog label for index {index}: {respect_id}")
            continue
        labels.setdefault(index, respect_id)
    return labels


def positions_to_stances(
    positions: Sequence[Dict[str, Any]],
    party_id: str,
    doc_id: str,
    party_label: Optional[str] = None,
) -> List[ActorStance]:
    """
    Convert raw extracted positions into ActorStance records.

    Positions whose primary framing is mixed_indeterminate or outside the
    catalog are dropped.
    """
    stances = []
    for raw in positions:
        if not isinstance(raw, dict):
            continue
        primary = str(raw.get("primary_respect") or "").strip()
        if primary == MIXED_INDETERMINATE or not is_respect_id(primary):
            continue
        secondaries = [s for s in raw.get("secondary_respects") or [] if isinstance(s, str) and is_respect_id(s)]
        secondary = secondaries[0] if secondaries else None
        evidence = [
            StanceEvidence(doc_id=doc_id, quote=str(s).strip())
            for s in raw.get("authoritative_sources") or []
            if isinstance(s, str) and s.strip()
        ][:MAX_EVIDENCE_QUOTES]
        stances.append(ActorStance(
            subject_id=str(raw.get("subject_id", "")),
            actor_id=party_id,
            primary_respect=primary,
            primary_confidence=EXTRACTED_CONFIDENCE,
            secondary_respect=secondary,
            secondary_confidence=EXTRACTED_CONFIDENCE * SECONDARY_CONFIDENCE_FACTOR if secondary else None,
            evidence=evidence,
            status="proposed",
            actor_label=party_label,
        ))
    return stances


def get_openai_client(timeout: float = DEFAULT_TIMEOUT_SECONDS) -> OpenAI:
    """Build an OpenAI client from the configured key."""
    return OpenAI(api_key=get_openai_key(), timeout=timeout)


class OpenAIOracle(ClassificationOracle, StanceOracle):
    """Both oracle roles backed by the OpenAI chat completions API."""

    def __init__(self, client: Optional[OpenAI] = None, model: str = DEFAULT_MODEL,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.client = client or get_openai_client(timeout)
        self.model = model
        self.timeout = timeout

    def _complete(self, messages: List[Dict[str, str]], temperature: float,
                  json_mode: bool = True, max_tokens: Optional[int] = None) -> str:
        kwargs: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "timeout": self.timeout,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if max_tokens:
            kwargs["max_tokens"] = max_tokens
        try:
            response = self.client.chat.completions.create(**kwargs)
        except Exception as e:
            raise OracleError(f"Oracle request failed: {e}") from e
        if not response.choices:
            raise OracleError("Oracle returned no choices")
        return response.choices[0].message.content or ""

    def classify(self, subject_id: str, items: Sequence[RawMediaItem]) -> Dict[int, str]:
        if not items:
            return {}
        respect_list = "\n".join(f"- {r.id}: {r.label}" for r in RESPECTS)
        headlines = "\n".join(
            f"{i}. {m.title}" + (f" | {m.lede[:LEDE_PROMPT_CHARS]}" if m.lede else "")
            for i, m in enumerate(items)
        )
        system_prompt = (
            'You classify UK news headlines into exactly one political "respect" (frame). '
            'Reply with valid JSON only: {"classifications": [{"index": 0, "respect_id": "security_border"}]}. '
            f"Every respect_id must be one of: {', '.join(RESPECT_IDS)}."
        )
        user_prompt = (
            f"Subject: {subject_id}\n\nRespects (choose ONE per headline):\n{respect_list}\n\n"
            f"Headlines (index. title | lede):\n{headlines}\n\n"
            f"Return JSON for all {len(items)} items."
        )
        raw = self._complete(
            [{"role": "system", "content": system_prompt}, {"role": "user", "content": user_prompt}],
            CLASSIFY_TEMPERATURE,
        )
        labels = parse_classification_response(raw, len(items))
        logger.info(f"Oracle labelled {len(labels)}/{len(items)} headlines for {subject_id}")
        return labels

    def extract(
        self,
        party_id: str,
        party_label: str,
        excerpts_by_subject: Dict[str, str],
        subjects: Sequence[Dict[str, str]],
    ) -> List[Dict[str, Any]]:
        respect_list = "\n".join(f"- {r.id}: {r.judgement_question}" for r in RESPECTS)
        sections = "\n\n".join(
            f"## {s['id']} ({s.get('label', s['id'])})\n{excerpts_by_subject.get(s['id']) or '(no relevant text found)'}"
            for s in subjects
        )
        system_prompt = (
            "You identify the decisive political respect in a party's manifesto: the one that orders, "
            "constrains or justifies the others. If none clearly does, use \"mixed_indeterminate\". "
            'Reply with JSON only: {"positions": [{"subject_id": "...", "primary_respect": "...", '
            '"secondary_respects": [], "priority_rationale": "...", "authoritative_sources": []}]}.\n'
            f"Respects:\n{respect_list}"
        )
        user_prompt = f"Party: {party_label} ({party_id})\n\nRelevant excerpts by subject:\n\n{sections}"
        raw = self._complete(
            [{"role": "system", "content": system_prompt}, {"role": "user", "content": user_prompt}],
            CLASSIFY_TEMPERATURE,
        )
        try:
            parsed = json.loads(raw)
        except ValueError as e:
            raise OracleError(f"Oracle did not return valid JSON: {raw[:200]}") from e
        positions = parsed.get("positions") if isinstance(parsed, dict) else None
        if not isinstance(positions, list):
            raise OracleError("Oracle reply missing 'positions' list")
        return positions

    def summarize(
        self,
        party_label: str,
        primary_respect: str,
        secondary_respect: Optional[str],
        evidence_quotes: Sequence[str] = (),
    ) -> Optional[str]:
        secondary = respect_label(secondary_respect) if secondary_respect else "None"
        evidence = ""
        if evidence_quotes and evidence_quotes[0]:
            quote = evidence_quotes[0]
            evidence = f'\nRelevant evidence: "{quote[:300]}{"..." if len(quote) > 300 else ""}"'
        text = self._complete(
            [
                {
                    "role": "system",
                    "content": (
                        "You write a brief 'Summary of findings' for a party's political stance. In 2-3 "
                        "sentences, explain why the primary respect was identified as primary and why the "
                        "secondary respect is secondary. Use neutral language and no bullet points."
                    ),
                },
                {
                    "role": "user",
                    "content": (
                        f"Party: {party_label}. Primary respect: {respect_label(primary_respect)}. "
                        f"Secondary respect: {secondary}.{evidence}\n\nWrite the summary of findings."
                    ),
                },
            ],
            SUMMARY_TEMPERATURE,
            json_mode=False,
            max_tokens=200,
        )
        return text.strip() or None


def manifesto_doc_id(party_id: str, now: Optional[datetime] = None) -> str:
    """Document id for a manifesto extracted on a given day, e.g. lab_manifesto_20240501."""
    day = (now or datetime.now(timezone.utc)).strftime("%Y%m%d")
    return f"{party_id}_manifesto_{day}"
