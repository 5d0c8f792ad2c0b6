"""
Weighted Heuristic Scorer

score(record, config) -> ScoreResult(total, breakdown, priority)

A ScorerConfig is an ordered list of named sub-scorers, each with a declared
maximum, plus a list of hard disqualifiers. Disqualifiers run first; any match
forces total = 0 and skips every sub-scorer. Otherwise each sub-score is
clamped to [0, max_points] on its own and the clamped values are summed.
Priority comes from two fixed thresholds on the total.

Scoring is pure: given the same record and the same `now`, the result is the
same. Persisting the result is a separate step (`score_and_store`).
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Pattern, Sequence, Tuple

from intake_backend.models import ScoredRecord
from intake_backend.services.errors import ScorerConfigError

logger = logging.getLogger(__name__)

SubScoreFn = Callable[[Mapping[str, Any], datetime], float]
DisqualifierFn = Callable[[Mapping[str, Any]], bool]


@dataclass(frozen=True)
class SubScorer:
    name: str
    max_points: float
    fn: SubScoreFn


@dataclass(frozen=True)
class Disqualifier:
    name: str
    check: DisqualifierFn


@dataclass(frozen=True)
class ScorerConfig:
    name: str
    sub_scorers: Tuple[SubScorer, ...]
    disqualifiers: Tuple[Disqualifier, ...] = ()
    high_threshold: float = 75.0
    low_threshold: float = 40.0

    @property
    def max_total(self) -> float:
        return sum(s.max_points for s in self.sub_scorers)

    def validate(self) -> "ScorerConfig":
        if not self.sub_scorers:
            raise ScorerConfigError(f"{self.name}: no sub-scorers")
        names = [s.name for s in self.sub_scorers]
        if len(set(names)) != len(names):
            raise ScorerConfigError(f"{self.name}: duplicate sub-scorer names {names}")
        if any(s.max_points <= 0 for s in self.sub_scorers):
            raise ScorerConfigError(f"{self.name}: sub-scorer maximums must be positive")
        if not self.low_threshold < self.high_threshold <= self.max_total:
            raise ScorerConfigError(
                f"{self.name}: thresholds must satisfy low < high <= {self.max_total}"
            )
        return self


@dataclass
class ScoreResult:
    scorer: str
    total: float
    breakdown: Dict[str, float] = field(default_factory=dict)
    priority: str = "low"
    disqualified_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scorer": self.scorer,
            "total": self.total,
            "breakdown": self.breakdown,
            "priority": self.priority,
            "disqualified_by": self.disqualified_by,
        }


def priority_for(total: float, config: ScorerConfig) -> str:
    if total >= config.high_threshold:
        return "high"
    if total < config.low_threshold:
        return "low"
    return "medium"


def score(record: Mapping[str, Any], config: ScorerConfig, now: Optional[datetime] = None) -> ScoreResult:
    now = now or datetime.now(timezone.utc)

    for disqualifier in config.disqualifiers:
        if disqualifier.check(record):
            return ScoreResult(
                scorer=config.name,
                total=0.0,
                breakdown={s.name: 0.0 for s in config.sub_scorers},
                priority=priority_for(0.0, config),
                disqualified_by=disqualifier.name,
            )

    breakdown = {}
    for sub in config.sub_scorers:
        raw = float(sub.fn(record, now))
        breakdown[sub.name] = max(0.0, min(sub.max_points, raw))

    total = sum(breakdown.values())
    return ScoreResult(
        scorer=config.name,
        total=total,
        breakdown=breakdown,
        priority=priority_for(total, config),
    )


def score_records_batch(records: Iterable[Mapping[str, Any]], config: ScorerConfig,
                        now: Optional[datetime] = None) -> List[Tuple[Mapping[str, Any], ScoreResult]]:
    """Score many records; a record whose scoring raises is logged and skipped."""
    now = now or datetime.now(timezone.utc)
    results = []
    for record in records:
        try:
            results.append((record, score(record, config, now)))
        except Exception:
            logger.exception("[SCORING] %s scorer failed on record %s", config.name, record.get("id"))
    return results


async def score_and_store(store, entity_id: str, record: Mapping[str, Any], config: ScorerConfig,
                          now: Optional[datetime] = None) -> ScoredRecord:
    """Score a record and upsert the (entity_id, scorer) result row."""
    result = score(record, config, now)
    row = await store.get_scored_record(entity_id, config.name)
    if row is None:
        row = ScoredRecord(id=uuid.uuid4(), entity_id=entity_id, scorer=config.name)
    row.total_score = result.total
    row.breakdown = result.breakdown
    row.priority = result.priority
    row.disqualified_by = result.disqualified_by
    row.scored_at = datetime.now(timezone.utc)
    await store.put_scored_record(row)

    logger.info(
        "[SCORING] %s %s total=%.1f priority=%s%s",
        config.name, entity_id, result.total, result.priority,
        f" disqualified_by={result.disqualified_by}" if result.disqualified_by else "",
    )
    return row


# ----------------------------------------------------------------------
# Disqualifier builders
# ----------------------------------------------------------------------

def _text(record: Mapping[str, Any], field_name: str) -> str:
    value = record.get(field_name)
    return value if isinstance(value, str) else ""


def keyword_disqualifier(name: str, field_name: str, keywords: Sequence[str],
                         allowed_words: Sequence[str] = ()) -> Disqualifier:
    """Match any keyword as a case-insensitive substring.

    `allowed_words` are blanked out before matching, which lets ordinary words
    such as "insane" through a short keyword like "nsa".
    """
    lowered = tuple(keyword.lower() for keyword in keywords)
    allowed = tuple(word.lower() for word in allowed_words)

    def check(record: Mapping[str, Any]) -> bool:
        content = _text(record, field_name).lower()
        for word in allowed:
            content = content.replace(word, " ")
        return any(keyword in content for keyword in lowered)

    return Disqualifier(name, check)


def pattern_disqualifier(name: str, field_name: str, pattern: Pattern) -> Disqualifier:
    return Disqualifier(name, lambda record: bool(pattern.search(_text(record, field_name))))


def min_length_disqualifier(name: str, field_name: str, min_length: int) -> Disqualifier:
    return Disqualifier(name, lambda record: len(_text(record, field_name)) < min_length)


def field_equals_disqualifier(name: str, field_name: str, value: Any) -> Disqualifier:
    return Disqualifier(name, lambda record: record.get(field_name) == value)


def truthy_disqualifier(name: str, field_name: str) -> Disqualifier:
    return Disqualifier(name, lambda record: bool(record.get(field_name)))
