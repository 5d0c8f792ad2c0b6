"""
Aggregation Engine

Merges every per-turn extraction for a user into one profile. The merge is a
pure function of the raw readings: inputs are sorted by (turn time, turn
sequence, turn id, framework) first, so replaying the same readings in any order yields
an identical profile.

Dimensional traits
    center = confidence-weighted median
    w_i    = c_i / (1 + (|v_i - center| / OUTLIER_SCALE)^2)
    value  = sum(w_i * v_i) / sum(w_i)
    confidence = noisy_or(c_i) * 1 / (1 + (spread / DISAGREEMENT_SCALE)^2)
    where spread is the confidence-weighted standard deviation around value.

Categorical traits
    winner = label with the largest confidence mass (ties: most recent reading)
    confidence = (winner mass / total mass) * noisy_or(winner readings)

Open-ended traits
    case-insensitive dedupe, ranked by frequency, then cumulative confidence,
    then first appearance; top `max_items` kept.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from intake_backend.models import Profile
from intake_backend.services.extraction_taxonomy import (
    CATEGORICAL,
    DIMENSIONAL,
    FRAMEWORKS,
    OPEN_ENDED,
    TraitSpec,
    normalize_value,
    resolve_trait,
)

logger = logging.getLogger(__name__)

OUTLIER_SCALE = 10.0
DISAGREEMENT_SCALE = 20.0
MAX_CONFIDENCE = 0.99
MBTI_AXES = ("e_i", "s_n", "t_f", "j_p")


@dataclass(frozen=True)
class Reading:
    turn_id: str
    turn_sequence: int
    framework: str
    trait: str
    value: Any
    confidence: float
    turn_time: float = 0.0

    @property
    def order_key(self) -> Tuple[float, int, str]:
        # Sequence numbers restart in every conversation, so the turn time leads
        return (self.turn_time, self.turn_sequence, self.turn_id)


@dataclass
class AggregatedProfile:
    frameworks: Dict[str, Dict[str, Dict[str, Any]]] = field(default_factory=dict)
    framework_confidence: Dict[str, float] = field(default_factory=dict)
    audit: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    raw_extractions: List[Dict[str, Any]] = field(default_factory=list)
    extraction_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frameworks": self.frameworks,
            "framework_confidence": self.framework_confidence,
            "audit": self.audit,
            "raw_extractions": self.raw_extractions,
            "extraction_count": self.extraction_count,
        }


def noisy_or(confidences: Iterable[float]) -> float:
    """Probability at least one reading is right, treating readings as independent."""
    miss = 1.0
    for confidence in confidences:
        miss *= 1.0 - max(0.0, min(1.0, confidence))
    return min(MAX_CONFIDENCE, 1.0 - miss)


def weighted_median(pairs: List[Tuple[float, float]]) -> float:
    ordered = sorted(pairs)
    total = sum(weight for _, weight in ordered)
    running = 0.0
    for value, weight in ordered:
        running += weight
        if running >= total / 2.0:
            return value
    return ordered[-1][0]


def aggregate_dimensional(readings: List[Reading]) -> Dict[str, Any]:
    total_confidence = sum(r.confidence for r in readings)
    if total_confidence <= 0:
        mean = sum(float(r.value) for r in readings) / len(readings)
        return {"value": round(mean, 2), "confidence": 0.0, "readings": len(readings)}

    center = weighted_median([(float(r.value), r.confidence) for r in readings if r.confidence > 0])
    weights = [
        r.confidence / (1.0 + (abs(float(r.value) - center) / OUTLIER_SCALE) ** 2)
        for r in readings
    ]
    value = sum(w * float(r.value) for w, r in zip(weights, readings)) / sum(weights)

    variance = sum(r.confidence * (float(r.value) - value) ** 2 for r in readings) / total_confidence
    spread = math.sqrt(variance)
    penalty = 1.0 / (1.0 + (spread / DISAGREEMENT_SCALE) ** 2)
    confidence = noisy_or(r.confidence for r in readings) * penalty

    return {
        "value": round(value, 2),
        "confidence": round(confidence, 4),
        "spread": round(spread, 2),
        "readings": len(readings),
    }


def aggregate_categorical(readings: List[Reading]) -> Dict[str, Any]:
    mass: Dict[str, float] = {}
    latest: Dict[str, Tuple[float, int, str]] = {}
    for reading in readings:
        mass[reading.value] = mass.get(reading.value, 0.0) + reading.confidence
        latest[reading.value] = max(latest.get(reading.value, reading.order_key), reading.order_key)

    winner = max(mass, key=lambda label: (mass[label], latest[label]))
    total_mass = sum(mass.values())
    if total_mass <= 0:
        return {"value": winner, "confidence": 0.0, "readings": len(readings), "distribution": mass}

    support = noisy_or(r.confidence for r in readings if r.value == winner)
    confidence = (mass[winner] / total_mass) * support
    return {
        "value": winner,
        "confidence": round(confidence, 4),
        "readings": len(readings),
        "distribution": {label: round(m, 4) for label, m in sorted(mass.items())},
    }


def aggregate_open_ended(readings: List[Reading], max_items: int) -> Dict[str, Any]:
    items: Dict[str, Dict[str, Any]] = {}
    position = 0
    for reading in readings:
        for text in reading.value:
            key = text.strip().lower()
            if not key:
                continue
            entry = items.get(key)
            if entry is None:
                entry = items[key] = {"text": text.strip(), "count": 0, "confidence": 0.0, "first": position}
                position += 1
            entry["count"] += 1
            entry["confidence"] += reading.confidence

    ranked = sorted(items.values(), key=lambda e: (-e["count"], -e["confidence"], e["first"]))
    return {
        "value": [entry["text"] for entry in ranked[:max_items]],
        "confidence": round(noisy_or(r.confidence for r in readings), 4),
        "readings": len(readings),
    }


def aggregate_trait(spec: TraitSpec, readings: List[Reading]) -> Dict[str, Any]:
    if spec.kind == DIMENSIONAL:
        return aggregate_dimensional(readings)
    if spec.kind == CATEGORICAL:
        return aggregate_categorical(readings)
    return aggregate_open_ended(readings, spec.max_items)


def _field(record: Any, name: str, default: Any = None) -> Any:
    if isinstance(record, dict):
        return record.get(name, default)
    return getattr(record, name, default)


def _timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if not isinstance(value, datetime):
        return None
    # SQLite hands back naive datetimes; they are stored as UTC
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def collect_readings(extractions: Iterable[Any]) -> Tuple[List[Reading], List[Dict[str, Any]]]:
    """Flatten extraction records into validated readings plus the raw audit trail.

    Accepts TurnExtraction rows or dicts with turn_id, turn_sequence,
    framework and traits, plus an optional turn_created_at.
    """
    raw = []
    for record in extractions:
        turn_created_at = _timestamp(_field(record, "turn_created_at"))
        raw.append({
            "turn_id": str(_field(record, "turn_id")),
            "turn_created_at": turn_created_at.isoformat() if turn_created_at else None,
            "turn_time": turn_created_at.timestamp() if turn_created_at else 0.0,
            "turn_sequence": int(_field(record, "turn_sequence", 0) or 0),
            "framework": str(_field(record, "framework")),
            "source": _field(record, "source", "llm") or "llm",
            "traits": _field(record, "traits") or {},
        })
    raw.sort(key=lambda r: (r["turn_time"], r["turn_sequence"], r["turn_id"], r["framework"]))

    readings: List[Reading] = []
    for record in raw:
        framework = record["framework"]
        if framework not in FRAMEWORKS:
            continue
        for trait in sorted(record["traits"]):
            payload = record["traits"][trait]
            resolved = resolve_trait(framework, trait)
            if resolved is None or not isinstance(payload, dict):
                continue
            canonical, spec = resolved
            value = normalize_value(framework, canonical, spec, payload.get("value"))
            if value is None:
                continue
            try:
                confidence = max(0.0, min(1.0, float(payload.get("confidence", 0.0))))
            except (TypeError, ValueError):
                continue
            readings.append(Reading(
                turn_id=record["turn_id"],
                turn_sequence=record["turn_sequence"],
                framework=framework,
                trait=canonical,
                value=value,
                confidence=confidence,
                turn_time=record["turn_time"],
            ))
    return readings, raw


def _derive_mbti_type(mbti: Dict[str, Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not all(axis in mbti for axis in MBTI_AXES):
        return None
    letters = "".join(mbti[axis]["value"] for axis in MBTI_AXES).upper()
    return {
        "value": letters,
        "confidence": round(min(mbti[axis]["confidence"] for axis in MBTI_AXES), 4),
        "derived": True,
    }


def aggregate(extractions: Iterable[Any]) -> AggregatedProfile:
    """Merge all extraction records for one user into an AggregatedProfile."""
    readings, raw = collect_readings(extractions)

    grouped: Dict[Tuple[str, str], List[Reading]] = {}
    for reading in readings:
        grouped.setdefault((reading.framework, reading.trait), []).append(reading)

    profile = AggregatedProfile(raw_extractions=raw, extraction_count=len(raw))
    for (framework, trait), group in sorted(grouped.items()):
        spec = FRAMEWORKS[framework][trait]
        profile.frameworks.setdefault(framework, {})[trait] = aggregate_trait(spec, group)
        profile.audit[f"{framework}.{trait}"] = [
            {
                "turn_id": r.turn_id,
                "turn_sequence": r.turn_sequence,
                "value": r.value,
                "confidence": r.confidence,
            }
            for r in group
        ]

    mbti_type = _derive_mbti_type(profile.frameworks.get("mbti", {}))
    if mbti_type:
        profile.frameworks["mbti"]["type"] = mbti_type

    for framework, traits in profile.frameworks.items():
        confidences = [t["confidence"] for name, t in traits.items() if not t.get("derived")]
        profile.framework_confidence[framework] = round(sum(confidences) / len(confidences), 4)

    return profile


class ProfileAggregator:
    """Rebuilds the cached Profile row from the raw extraction records."""

    def __init__(self, store):
        self.store = store

    async def reaggregate(self, user_id: str) -> Optional[Profile]:
        extractions = await self.store.list_extractions_for_user(user_id)
        existing = await self.store.get_profile(user_id)
        if not extractions and existing is None:
            return None

        aggregated = aggregate(extractions)
        now = datetime.now(timezone.utc)
        profile = existing or Profile(user_id=user_id, created_at=now)
        profile.frameworks = aggregated.frameworks
        profile.framework_confidence = aggregated.framework_confidence
        profile.audit = aggregated.audit
        profile.raw_extractions = aggregated.raw_extractions
        profile.extraction_count = aggregated.extraction_count
        profile.updated_at = now
        await self.store.put_profile(profile)

        logger.info(
            "[AGGREGATION] user=%s extractions=%d frameworks=%s",
            user_id,
            aggregated.extraction_count,
            sorted(aggregated.frameworks),
        )
        return profile
