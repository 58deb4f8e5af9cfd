"""
Respect taxonomy: the fixed catalog of competing framings.

The catalog is an immutable tuple built once at import time. Its order is the
tie-break order everywhere in the pipeline: when two framings score equally,
the one listed first wins.

The stance-extraction subsystem uses its own vocabulary for framings. The
translation into pipeline ids lives in config/respect_mapping.yaml so it can
be extended without touching code.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, Optional, Tuple

from respect_monitor.config.loader import load_yaml_config

logger = logging.getLogger(__name__)

MAPPING_FILE = "respect_mapping.yaml"


@dataclass(frozen=True)
class Respect:
    id: str
    label: str
    judgement_question: str
    keyword_seeds: Tuple[str, ...]

    def to_dict(self) -> Dict:
        d = asdict(self)
        d["keyword_seeds"] = list(self.keyword_seeds)
        return d


RESPECTS: Tuple[Respect, ...] = (
    Respect(
        id="security_border",
        label="Security / Border control",
        judgement_question="Is migration primarily a threat to be controlled?",
        keyword_seeds=(
            "stop", "deter", "secure", "crackdown", "illegal", "enforcement",
            "threat", "gangs", "border", "boats", "crossings", "stop the boats",
            "tougher measures", "deterrence", "intercept", "trafficker",
            "smuggler", "channel crossing", "border force",
        ),
    ),
    Respect(
        id="humanitarian",
        label="Humanitarian / Moral responsibility",
        judgement_question="Are migrants primarily vulnerable persons owed protection?",
        keyword_seeds=(
            "dignity", "safety", "refuge", "compassion", "harm", "rescue",
            "welfare", "humanity", "protect", "vulnerable", "safe routes",
            "safe passage", "deaths at sea", "drowning", "charity", "refugee",
            "asylum seeker", "human rights",
        ),
    ),
    Respect(
        id="rule_of_law",
        label="Rule of law / Legal process",
        judgement_question="Must migration be governed strictly by legal process and rights?",
        keyword_seeds=(
            "due process", "lawful", "ECHR", "HRA", "courts", "obligations",
            "procedures", "legal", "convention", "rights", "legal challenge",
            "judicial review", "ruling", "appeal", "human rights act",
            "court blocks", "lawful route",
        ),
    ),
    Respect(
        id="sovereignty_control",
        label="Sovereignty / Democratic control",
        judgement_question="Who has the authority to decide migration policy?",
        keyword_seeds=(
            "control", "sovereignty", "mandate", "Parliament",
            "external constraint", "take back control", "uk border",
            "british border", "national border",
        ),
    ),
    Respect(
        id="capacity_delivery",
        label="Capacity / System performance",
        judgement_question="Is the problem state capacity and system failure?",
        keyword_seeds=(
            "backlog", "processing", "hotels", "inefficiency", "cost",
            "capacity", "system", "delivery", "asylum backlog",
            "processing delays", "hotel accommodation", "clearing the backlog",
            "casework",
        ),
    ),
    Respect(
        id="economy_prosperity",
        label="Economy / Prosperity",
        judgement_question="Is migration primarily an economic input/output issue?",
        keyword_seeds=(
            "workforce", "productivity", "skills", "growth",
            "pressure on services", "economy", "jobs",
        ),
    ),
    Respect(
        id="fairness_distribution",
        label="Fairness / Distribution",
        judgement_question="Is the issue fair treatment and distribution of resources?",
        keyword_seeds=("fair", "fairness", "distribution", "equity", "access", "disadvantaged"),
    ),
    Respect(
        id="stability_risk",
        label="Stability / Risk",
        judgement_question="Is the issue stability and risk management?",
        keyword_seeds=("stability", "risk", "uncertainty", "volatility", "crisis"),
    ),
    Respect(
        id="environment_sustainability",
        label="Environment / Sustainability",
        judgement_question="Is the issue environmental or sustainability impact?",
        keyword_seeds=("environment", "climate", "sustainability", "green"),
    ),
    Respect(
        id="national_interest_global",
        label="National interest / Global",
        judgement_question="Is the issue national interest and global standing?",
        keyword_seeds=("national interest", "global", "international", "reputation", "standing"),
    ),
)

RESPECT_IDS: Tuple[str, ...] = tuple(r.id for r in RESPECTS)

_BY_ID: Dict[str, Respect] = {r.id: r for r in RESPECTS}
_INDEX: Dict[str, int] = {r.id: i for i, r in enumerate(RESPECTS)}

DEFAULT_MEDIA_RESPECT = "security_border"
DEFAULT_POLL_RESPECT = "security_border"
DEFAULT_METRIC_RESPECT = "capacity_delivery"

# Relation vocabulary for party cards. "reframes" is reserved; nothing produces it yet.
RELATIONS = ("matches", "challenges", "reframes")


def is_respect_id(respect_id: str) -> bool:
    return respect_id in _BY_ID


def get_respect(respect_id: str) -> Optional[Respect]:
    return _BY_ID.get(respect_id)


def respect_label(respect_id: str) -> str:
    """Display label for a framing id, or the id itself when not in the catalog."""
    respect = _BY_ID.get(respect_id)
    return respect.label if respect else respect_id


def catalog_index(respect_id: str) -> int:
    """
    Position of a framing in the catalog, used as the tie-break rank.

    Unknown ids sort after every catalog entry.
    """
    return _INDEX.get(respect_id, len(RESPECTS))


def rank_by_value(values: Dict[str, float]):
    """
    Sort (respect_id, value) pairs highest value first, catalog order on ties.

    Args:
        values: Mapping of respect id to score or share

    Returns:
        List of (respect_id, value) tuples
    """
    return sorted(values.items(), key=lambda kv: (-kv[1], catalog_index(kv[0])))


_actor_mapping: Optional[Dict[str, str]] = None


def load_actor_mapping(reload: bool = False) -> Dict[str, str]:
    """
    Load the actor-vocabulary to pipeline-id translation table.

    Returns:
        Dict of actor respect id -> pipeline respect id
    """
    global _actor_mapping
    if _actor_mapping is None or reload:
        config = load_yaml_config(MAPPING_FILE)
        table = config.get("actor_to_pipeline") or {}
        _actor_mapping = {str(k): str(v) for k, v in table.items()}
    return _actor_mapping


def translate_actor_respect(
    actor_respect_id: Optional[str],
    mapping: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """
    Translate a framing id from the stance vocabulary into a pipeline id.

    Args:
        actor_respect_id: Id as written by the stance-extraction subsystem
        mapping: Translation table (defaults to config/respect_mapping.yaml)

    Returns:
        Pipeline respect id, or None when the id is unknown to both the table
        and the catalog
    """
    if not actor_respect_id:
        return None
    table = load_actor_mapping() if mapping is None else mapping
    translated = table.get(actor_respect_id)
    if translated is not None:
        if not is_respect_id(translated):
            logger.warning(f"Mapping for {actor_respect_id} points outside the catalog: {translated}")
            return None
        return translated
    if is_respect_id(actor_respect_id):
        return actor_respect_id
    return None
