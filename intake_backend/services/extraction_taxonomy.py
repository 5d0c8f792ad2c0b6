"""
Framework/trait schema shared by the turn extractor, the questionnaire
mapper and the aggregation engine.

Every trait has a kind:
- dimensional: numeric value on a fixed scale, merged by weighted mean
- categorical: one label out of a closed set, merged by weighted plurality
- open_ended: list of free-text items, merged by dedupe + ranking
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

DIMENSIONAL = "dimensional"
CATEGORICAL = "categorical"
OPEN_ENDED = "open_ended"


@dataclass(frozen=True)
class TraitSpec:
    kind: str
    description: str = ""
    scale: Tuple[float, float] = (0.0, 100.0)
    categories: Tuple[str, ...] = ()
    max_items: int = 5


def _dim(description: str, scale: Tuple[float, float] = (0.0, 100.0)) -> TraitSpec:
    return TraitSpec(kind=DIMENSIONAL, description=description, scale=scale)


def _cat(description: str, *categories: str) -> TraitSpec:
    return TraitSpec(kind=CATEGORICAL, description=description, categories=tuple(categories))


def _open(description: str, max_items: int = 5) -> TraitSpec:
    return TraitSpec(kind=OPEN_ENDED, description=description, max_items=max_items)


_LOVE_LANGUAGES = ("words_of_affirmation", "acts_of_service", "gifts", "quality_time", "physical_touch")
_ENNEAGRAM_TYPES = tuple(str(n) for n in range(1, 10))

FRAMEWORKS: Dict[str, Dict[str, TraitSpec]] = {
    "big_five": {
        "openness": _dim("curiosity, creativity, openness to experience"),
        "conscientiousness": _dim("organization, reliability, self-discipline"),
        "extraversion": _dim("sociability, assertiveness, energy from others"),
        "agreeableness": _dim("compassion, cooperation, trust"),
        "neuroticism": _dim("anxiety and stress response (high = less stable)"),
    },
    "attachment": {
        "style": _cat("attachment style", "secure", "anxious", "avoidant", "disorganized"),
    },
    "eq": {
        "self_awareness": _dim("understanding of own emotions"),
        "self_regulation": _dim("managing own emotions"),
        "motivation": _dim("inner drive"),
        "empathy": _dim("understanding others' emotions"),
        "social_skills": _dim("handling relationships"),
        "overall": _dim("overall emotional intelligence"),
    },
    "cognitive": {
        "vocabulary_level": _dim("word choice sophistication"),
        "cognitive_complexity": _dim("nuanced, both-and thinking"),
        "abstract_reasoning": _dim("working with abstract concepts"),
        "iq_estimate": _cat("IQ estimate range", "average", "above_average", "high", "very_high"),
    },
    "mbti": {
        "e_i": _cat("Extraversion vs Introversion", "e", "i"),
        "s_n": _cat("Sensing vs Intuition", "s", "n"),
        "t_f": _cat("Thinking vs Feeling", "t", "f"),
        "j_p": _cat("Judging vs Perceiving", "j", "p"),
    },
    "enneagram": {
        "type": _cat("core type 1-9", *_ENNEAGRAM_TYPES),
        "wing": _cat("wing type 1-9", *_ENNEAGRAM_TYPES),
        "health_level": _dim("health level (1=healthy, 9=unhealthy)", scale=(1.0, 9.0)),
    },
    "disc": {
        "dominance": _dim("directness, results focus"),
        "influence": _dim("persuasion, enthusiasm"),
        "steadiness": _dim("patience, consistency"),
        "conscientiousness": _dim("accuracy, structure"),
    },
    "love_languages": {
        "primary": _cat("strongest love language", *_LOVE_LANGUAGES),
        "secondary": _cat("second love language", *_LOVE_LANGUAGES),
    },
    "values": {
        "core_values": _open("top core values (family, growth, faith, adventure, security, ...)"),
    },
    "life_vision": {
        "career_trajectory": _open("career direction and ambitions", max_items=3),
        "family_goals": _open("marriage and children plans", max_items=3),
        "lifestyle": _open("lifestyle preferences", max_items=5),
        "geographic_flexibility": _open("willingness to relocate", max_items=2),
        "deal_breakers": _open("stated deal-breakers", max_items=5),
    },
}

SAFETY_CATEGORIES = ("attached", "narcissism", "machiavellianism", "psychopathy", "inconsistency")

# Keys the model may emit alongside frameworks.
RESERVED_KEYS = {"safety_flags", "needs_follow_up", "follow_up_suggestion"}

TRAIT_ALIASES: Dict[str, Dict[str, str]] = {
    "eq": {"overall_eq": "overall", "eq_overall": "overall", "emotional_regulation": "self_regulation"},
    "mbti": {"ei": "e_i", "sn": "s_n", "tf": "t_f", "jp": "j_p"},
    "enneagram": {"core_type": "type", "health": "health_level"},
    "love_languages": {"primary_language": "primary", "secondary_language": "secondary"},
    "values": {"values": "core_values", "top_values": "core_values"},
    "life_vision": {"lifestyle_preferences": "lifestyle", "dealbreakers": "deal_breakers"},
}

CATEGORY_ALIASES: Dict[str, Dict[str, str]] = {
    "mbti": {
        "extraversion": "e", "extroversion": "e", "introversion": "i",
        "sensing": "s", "intuition": "n", "thinking": "t", "feeling": "f",
        "judging": "j", "perceiving": "p",
    },
    "love_languages": {
        "words": "words_of_affirmation", "affirmation": "words_of_affirmation",
        "acts": "acts_of_service", "service": "acts_of_service",
        "receiving_gifts": "gifts", "time": "quality_time", "touch": "physical_touch",
        "physical": "physical_touch",
    },
}


def normalize_key(value: Any) -> str:
    return re.sub(r"[\s\-/]+", "_", str(value).strip().lower())


def resolve_trait(framework: str, trait: str) -> Optional[Tuple[str, TraitSpec]]:
    """Map a (possibly aliased) trait name to its canonical name and spec."""
    traits = FRAMEWORKS.get(framework)
    if traits is None:
        return None
    key = normalize_key(trait)
    key = TRAIT_ALIASES.get(framework, {}).get(key, key)
    spec = traits.get(key)
    if spec is None:
        return None
    return key, spec


def normalize_dimensional(spec: TraitSpec, value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN
        return None
    low, high = spec.scale
    return max(low, min(high, number))


def _enneagram_digit(value: Any, wing: bool) -> Optional[str]:
    text = str(value).lower()
    # "4w5": the type is 4, the wing is 5
    if wing:
        match = re.search(r"w\s*([1-9])", text)
        if match:
            return match.group(1)
    match = re.search(r"[1-9]", text)
    return match.group(0) if match else None


def normalize_categorical(framework: str, trait: str, spec: TraitSpec, value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return None
    if spec.categories == _ENNEAGRAM_TYPES:
        return _enneagram_digit(value, wing=trait == "wing")
    key = normalize_key(value)
    key = CATEGORY_ALIASES.get(framework, {}).get(key, key)
    if key in spec.categories:
        return key
    return None


def normalize_open_ended(value: Any) -> List[str]:
    if value is None:
        return []
    items = value if isinstance(value, (list, tuple)) else [value]
    cleaned = []
    for item in items:
        if item is None or isinstance(item, (dict, list)):
            continue
        text = str(item).strip()
        if text:
            cleaned.append(text)
    return cleaned


def normalize_value(framework: str, trait: str, spec: TraitSpec, value: Any) -> Any:
    """Return the canonical value for a trait, or None when it does not fit the schema."""
    if spec.kind == DIMENSIONAL:
        return normalize_dimensional(spec, value)
    if spec.kind == CATEGORICAL:
        return normalize_categorical(framework, trait, spec, value)
    items = normalize_open_ended(value)
    return items or None


def describe_taxonomy() -> str:
    """Human-readable taxonomy block for the extraction prompt."""
    lines = []
    for index, (framework, traits) in enumerate(FRAMEWORKS.items(), start=1):
        lines.append(f"{index}. {framework}")
        for trait, spec in traits.items():
            if spec.kind == DIMENSIONAL:
                low, high = spec.scale
                shape = f"number {low:g}-{high:g}"
            elif spec.kind == CATEGORICAL:
                shape = "one of: " + ", ".join(spec.categories)
            else:
                shape = f"list of up to {spec.max_items} short strings"
            lines.append(f"   - {trait} ({shape}): {spec.description}")
    return "\n".join(lines)
