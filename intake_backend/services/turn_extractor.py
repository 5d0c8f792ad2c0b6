"""
Turn Extractor

Sends one user answer (with the prior Q&A history) to the language model with
the framework taxonomy, and turns the reply into validated readings:

    {
        "extractions": [ExtractionResult(framework, {trait: {value, confidence, evidence}})],
        "safety_flags": [SafetySignal(category, severity, evidence)],
        "needs_follow_up": bool,
        "follow_up_suggestion": Optional[str],
    }

The extractor fails open: a timeout, transport error or unparseable reply
produces an empty outcome marked `failed`, never an exception.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from intake_backend.config import EXTRACTION_MAX_TOKENS, EXTRACTION_TIMEOUT_SECONDS
from intake_backend.services.errors import LLMCallError
from intake_backend.services.extraction_taxonomy import (
    FRAMEWORKS,
    RESERVED_KEYS,
    SAFETY_CATEGORIES,
    describe_taxonomy,
    normalize_key,
    normalize_value,
    resolve_trait,
)
from intake_backend.services.local_llm_client import extract_json_from_text
from intake_backend.services.prompt_manager import get_prompt_manager

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    framework: str
    traits: Dict[str, Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {"framework": self.framework, "traits": self.traits}


@dataclass
class SafetySignal:
    category: str
    severity: float
    evidence: str

    def to_dict(self) -> Dict[str, Any]:
        return {"category": self.category, "severity": self.severity, "evidence": self.evidence}


@dataclass
class ExtractionOutcome:
    extractions: List[ExtractionResult] = field(default_factory=list)
    safety_flags: List[SafetySignal] = field(default_factory=list)
    needs_follow_up: bool = False
    follow_up_suggestion: Optional[str] = None
    failed: bool = False
    error: Optional[str] = None
    dropped: List[str] = field(default_factory=list)

    @classmethod
    def empty(cls, error: str) -> "ExtractionOutcome":
        return cls(failed=True, error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "extractions": [e.to_dict() for e in self.extractions],
            "safety_flags": [s.to_dict() for s in self.safety_flags],
            "needs_follow_up": self.needs_follow_up,
            "follow_up_suggestion": self.follow_up_suggestion,
        }


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _normalize_evidence(raw: Any) -> List[str]:
    if raw is None:
        return []
    items = raw if isinstance(raw, (list, tuple)) else [raw]
    return [str(item).strip() for item in items if item is not None and str(item).strip()]


def _normalize_confidence(raw: Any) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    try:
        confidence = float(raw)
    except (TypeError, ValueError):
        return None
    if confidence != confidence:
        return None
    return _clamp(confidence, 0.0, 1.0)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def validate_reading(framework: str, trait: str, raw: Any) -> Tuple[Optional[str], Optional[Dict[str, Any]], Optional[str]]:
    """Validate one trait reading.

    Returns (canonical_trait, reading, rejection_reason); exactly one of
    reading / rejection_reason is set.
    """
    resolved = resolve_trait(framework, trait)
    if resolved is None:
        return None, None, "unknown trait"
    canonical, spec = resolved

    if not isinstance(raw, dict):
        # Bare values carry no confidence or evidence
        return canonical, None, "reading is not an object"

    value = normalize_value(framework, canonical, spec, raw.get("value"))
    if value is None:
        return canonical, None, "value does not fit the trait scale"

    confidence = _normalize_confidence(raw.get("confidence", 0.0))
    if confidence is None:
        return canonical, None, "confidence is not a number"

    evidence = _normalize_evidence(raw.get("evidence"))
    if confidence > 0 and not evidence:
        return canonical, None, "non-zero confidence without evidence"

    return canonical, {"value": value, "confidence": confidence, "evidence": evidence}, None


def validate_safety_flag(raw: Any) -> Optional[SafetySignal]:
    if not isinstance(raw, dict):
        return None
    category = normalize_key(raw.get("category", ""))
    if category not in SAFETY_CATEGORIES:
        return None
    try:
        severity = float(raw.get("severity", 0))
    except (TypeError, ValueError):
        return None
    if severity != severity:
        return None
    evidence = raw.get("evidence")
    if isinstance(evidence, (list, tuple)):
        evidence = "; ".join(_normalize_evidence(evidence))
    evidence = str(evidence or "").strip()
    if not evidence:
        return None
    return SafetySignal(category=category, severity=_clamp(severity, 0.0, 100.0), evidence=evidence)


def validate_payload(payload: Any) -> ExtractionOutcome:
    """Apply the framework/trait schema to a decoded model reply."""
    if not isinstance(payload, dict):
        return ExtractionOutcome.empty("extraction payload is not a JSON object")

    outcome = ExtractionOutcome()

    for key, traits in payload.items():
        framework = normalize_key(key)
        if framework in RESERVED_KEYS:
            continue
        if framework not in FRAMEWORKS:
            outcome.dropped.append(f"{key}: unknown framework")
            continue
        if not isinstance(traits, dict):
            outcome.dropped.append(f"{key}: traits are not an object")
            continue

        accepted: Dict[str, Dict[str, Any]] = {}
        for trait, raw in traits.items():
            canonical, reading, reason = validate_reading(framework, trait, raw)
            if reading is None:
                outcome.dropped.append(f"{framework}.{trait}: {reason}")
                continue
            accepted[canonical] = reading
        if accepted:
            outcome.extractions.append(ExtractionResult(framework=framework, traits=accepted))

    raw_flags = payload.get("safety_flags") or []
    if not isinstance(raw_flags, list):
        raw_flags = [raw_flags]
    for raw_flag in raw_flags:
        signal = validate_safety_flag(raw_flag)
        if signal is None:
            outcome.dropped.append(f"safety_flag: {str(raw_flag)[:80]}")
            continue
        outcome.safety_flags.append(signal)

    outcome.needs_follow_up = _to_bool(payload.get("needs_follow_up", False))
    suggestion = payload.get("follow_up_suggestion")
    if isinstance(suggestion, str) and suggestion.strip():
        outcome.follow_up_suggestion = suggestion.strip()

    return outcome


def parse_extraction_response(text: str) -> ExtractionOutcome:
    try:
        payload = extract_json_from_text(text)
    except (json.JSONDecodeError, ValueError) as exc:
        return ExtractionOutcome.empty(f"unparseable extraction response: {exc}")
    return validate_payload(payload)


def format_history(conversation_history: Sequence[Tuple[str, str]]) -> str:
    if not conversation_history:
        return "(no prior answers)"
    return "\n\n".join(f"Q: {question}\nA: {answer}" for question, answer in conversation_history)


class TurnExtractor:
    """One LLM call per user turn; lenient parse, strict schema, fail open."""

    def __init__(self, llm, timeout_seconds: float = EXTRACTION_TIMEOUT_SECONDS,
                 max_tokens: int = EXTRACTION_MAX_TOKENS):
        self.llm = llm
        self.timeout_seconds = timeout_seconds
        self.max_tokens = max_tokens
        self.prompt_manager = get_prompt_manager()

    def build_prompts(self, turn_text: str, conversation_history: Sequence[Tuple[str, str]],
                      question_text: str = "", extraction_targets: Sequence[str] = ()) -> Tuple[str, str]:
        system_prompt = self.prompt_manager.render_prompt(
            "extraction_system",
            {
                "taxonomy": describe_taxonomy(),
                "safety_categories": ", ".join(SAFETY_CATEGORIES),
            },
        )
        user_prompt = self.prompt_manager.render_prompt(
            "extraction_user",
            {
                "history": format_history(conversation_history),
                "question": question_text or "(free-form answer)",
                "extraction_targets": ", ".join(extraction_targets) or "any",
                "response": turn_text,
            },
        )
        return system_prompt, user_prompt

    async def extract(self, turn_text: str, conversation_history: Sequence[Tuple[str, str]],
                      question_text: str = "", extraction_targets: Sequence[str] = ()) -> ExtractionOutcome:
        system_prompt, user_prompt = self.build_prompts(
            turn_text, conversation_history, question_text, extraction_targets
        )
        metadata = self.prompt_manager.get_prompt_metadata("extraction_system")

        try:
            response_text = await self.llm.complete(
                system_prompt,
                user_prompt,
                timeout_seconds=self.timeout_seconds,
                max_tokens=self.max_tokens,
                temperature=metadata["temperature"],
                json_response=True,
            )
        except LLMCallError as exc:
            logger.warning("[EXTRACTION] LLM call failed, failing open: %s", exc)
            return ExtractionOutcome.empty(str(exc))

        outcome = parse_extraction_response(response_text)
        if outcome.failed:
            logger.warning("[EXTRACTION] %s", outcome.error)
        elif outcome.dropped:
            logger.info("[EXTRACTION] Dropped %d readings: %s", len(outcome.dropped), outcome.dropped[:10])
        return outcome
