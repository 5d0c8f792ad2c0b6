"""
Safety Screening Engine

Accumulates extractor-emitted safety signals into per-category risk scores.

Per category the score is the strongest signal, nudged up by every other
corroborating signal of at least CORROBORATION_FLOOR:

    score = 100 - (100 - s_max) * prod(1 - CORROBORATION_WEIGHT * s_j / 100)

The formula is order independent, so replaying the same signals is a no-op.
Stored scores only ever go up, and `flagged_for_review` once set is left for
a human reviewer to clear.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from intake_backend.models import SafetyScreening, TurnSafetySignal
from intake_backend.services.extraction_taxonomy import SAFETY_CATEGORIES

logger = logging.getLogger(__name__)

CORROBORATION_FLOOR = 40.0
CORROBORATION_WEIGHT = 0.5
REVIEW_THRESHOLD = 40.0  # orange and above


def risk_level(max_score: float) -> str:
    if max_score < 20:
        return "green"
    if max_score < 40:
        return "yellow"
    if max_score <= 70:
        return "orange"
    return "red"


def category_score(severities: Iterable[float]) -> float:
    ordered = sorted((max(0.0, min(100.0, float(s))) for s in severities), reverse=True)
    if not ordered:
        return 0.0
    remaining = 100.0 - ordered[0]
    for severity in ordered[1:]:
        if severity >= CORROBORATION_FLOOR:
            remaining *= 1.0 - CORROBORATION_WEIGHT * severity / 100.0
    return round(100.0 - remaining, 2)


def score_signals(signals: Iterable[Any]) -> Dict[str, Dict[str, Any]]:
    """Group signals by category -> {"score", "count"}."""
    severities: Dict[str, List[float]] = {category: [] for category in SAFETY_CATEGORIES}
    for signal in signals:
        category = signal["category"] if isinstance(signal, dict) else signal.category
        severity = signal["severity"] if isinstance(signal, dict) else signal.severity
        if category in severities:
            severities[category].append(severity)
    return {
        category: {"score": category_score(values), "count": len(values)}
        for category, values in severities.items()
    }


class SafetyScreeningEngine:
    """Persists per-turn signals and rebuilds the user's screening from them."""

    def __init__(self, store):
        self.store = store

    async def record_signals(self, user_id: str, turn, signals: Sequence[Any]) -> Optional[SafetyScreening]:
        """Store the signals raised for one turn, then rescreen the user.

        Signals are keyed by (turn id, index), so recording the same turn twice
        replaces rather than duplicates.
        """
        rows = [
            TurnSafetySignal(
                id=uuid.uuid4(),
                turn_id=turn.id,
                conversation_id=turn.conversation_id,
                user_id=user_id,
                turn_sequence=turn.sequence_number,
                signal_index=index,
                category=signal.category,
                severity=float(signal.severity),
                evidence=signal.evidence,
            )
            for index, signal in enumerate(signals)
        ]
        await self.store.replace_turn_safety_signals(turn.id, rows)
        return await self.rescreen(user_id)

    async def rescreen(self, user_id: str) -> Optional[SafetyScreening]:
        """Rebuild the screening; a user with no signals and no screening gets none."""
        signals = await self.store.list_safety_signals_for_user(user_id)
        screening = await self.store.get_safety_screening(user_id)
        if screening is None and not signals:
            return None

        scored = score_signals(signals)
        now = datetime.now(timezone.utc)
        if screening is None:
            screening = SafetyScreening(
                user_id=user_id,
                category_scores={},
                signal_counts={},
                evidence=[],
                max_severity=0.0,
                overall_risk_level="green",
                flagged_for_review=False,
                created_at=now,
            )

        previous = dict(screening.category_scores or {})
        screening.category_scores = {
            category: max(float(previous.get(category, 0.0)), data["score"])
            for category, data in scored.items()
        }
        screening.signal_counts = {category: data["count"] for category, data in scored.items()}
        screening.evidence = [
            {
                "category": s.category,
                "severity": s.severity,
                "evidence": s.evidence,
                "turn_id": str(s.turn_id),
                "turn_sequence": s.turn_sequence,
            }
            for s in sorted(signals, key=lambda s: (s.turn_sequence, str(s.turn_id), s.signal_index))
        ]

        max_score = max(screening.category_scores.values(), default=0.0)
        screening.max_severity = max(float(screening.max_severity or 0.0), max_score)
        screening.overall_risk_level = risk_level(screening.max_severity)

        if screening.max_severity >= REVIEW_THRESHOLD and not screening.flagged_for_review:
            screening.flagged_for_review = True
            screening.flagged_at = now
            logger.warning(
                "[SAFETY] user=%s flagged for review (risk=%s, max=%.1f)",
                user_id,
                screening.overall_risk_level,
                screening.max_severity,
            )

        screening.updated_at = now
        await self.store.put_safety_screening(screening)
        return screening

    async def get_screening(self, user_id: str) -> Optional[SafetyScreening]:
        return await self.store.get_safety_screening(user_id)
