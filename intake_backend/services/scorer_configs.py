"""Concrete scorer configurations: inbound lead qualification and partner fit."""

import re
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence

from intake_backend.services.errors import ScorerConfigError
from intake_backend.services.heuristic_scorer import (
    ScorerConfig,
    SubScorer,
    field_equals_disqualifier,
    keyword_disqualifier,
    min_length_disqualifier,
    pattern_disqualifier,
    truthy_disqualifier,
)

# ----------------------------------------------------------------------
# Lead qualification (max 100)
# ----------------------------------------------------------------------

CONTENT_FIELD = "trigger_content"

SPAM_KEYWORDS = (
    "onlyfans",
    "cashapp",
    "venmo",
    "paypal",
    "kik",
    "snapchat premium",
    "selling",
    "telegram",
    "whatsapp me",
    "dm for",
    "sugar daddy",
    "sugar baby",
    "findom",
    "feet pics",
    "send $",
    "quick hookup",
    "one night",
    "nsa",
    "fwb",
    "hookup only",
    "dtf",
)

# Everyday words that contain a short spam keyword
SPAM_ALLOWED_WORDS = (
    "insane",
    "insanity",
    "kansas",
    "counselling",
)

INTENT_KEYWORDS = (
    "marriage",
    "long-term",
    "settle down",
    "life partner",
    "serious relationship",
    "forever",
    "committed",
    "looking for something real",
    "tired of games",
    "genuine connection",
    "soulmate",
)

TARGET_AGE_RANGES = ((25, 34), (35, 44), (45, 54), (50, 60), (30, 39), (40, 49), (55, 64))
THOUGHTFUL_WORDS = ("because", "reason", "feel", "think", "believe", "realize", "understand")

MIN_CONTENT_LENGTH = 50
REPEATED_CHARS = re.compile(r"(.)\1{4,}")
GIBBERISH_WORD = re.compile(r"\b\w{20,}\b")
URL_FRAGMENT = re.compile(r"http|www\.|\.com|\.net", re.IGNORECASE)
LONG_DIGIT_RUN = re.compile(r"\d{10,}")
PERSONAL_PRONOUNS = re.compile(r"\b(I am|I'm|I've|I want|I'm looking|my|me|myself)\b", re.IGNORECASE)


def _content(record: Mapping[str, Any]) -> str:
    value = record.get(CONTENT_FIELD)
    return value if isinstance(value, str) else ""


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def score_relationship_intent(record: Mapping[str, Any], now: datetime) -> float:
    goal = record.get("relationship_goal")
    if goal == "serious":
        points = 20
    elif goal == "unknown":
        points = 10
    else:
        points = 0
    content = _content(record).lower()
    points += sum(1 for keyword in INTENT_KEYWORDS if keyword in content)
    return points


def score_age_fit(record: Mapping[str, Any], now: datetime) -> float:
    age_range = record.get("estimated_age_range")
    if not age_range:
        return 10
    match = re.search(r"\d+", str(age_range))
    if not match:
        return 10
    age = int(match.group(0))
    if any(low <= age <= high for low, high in TARGET_AGE_RANGES):
        return 20
    if 22 <= age <= 65:
        return 15
    return 5


def make_location_scorer(target_locations: Sequence[str] = ()):
    targets = [location.lower() for location in target_locations if location]

    def score_location_fit(record: Mapping[str, Any], now: datetime) -> float:
        location = record.get("location_mentioned")
        if not location:
            return 7
        if targets:
            return 15 if any(t in str(location).lower() for t in targets) else 5
        # Any concrete location is a sign of a real person
        return 12

    return score_location_fit


def score_engagement_quality(record: Mapping[str, Any], now: datetime) -> float:
    content = _content(record)
    length = len(content)
    if length > 500:
        points = 8
    elif length > 300:
        points = 6
    elif length > 150:
        points = 4
    elif length > 75:
        points = 2
    else:
        points = 1

    pronouns = len(PERSONAL_PRONOUNS.findall(content))
    if pronouns > 3:
        points += 5
    elif pronouns > 1:
        points += 3

    lowered = content.lower()
    if any(word in lowered for word in THOUGHTFUL_WORDS):
        points += 4

    questions = content.count("?")
    if questions >= 2:
        points += 3
    elif questions == 1:
        points += 2
    return points


def score_profile_completeness(record: Mapping[str, Any], now: datetime) -> float:
    weights = {
        "email": 4,
        "estimated_age_range": 2,
        "estimated_gender": 1,
        "location_mentioned": 2,
        "full_name": 1,
    }
    return sum(points for field_name, points in weights.items() if record.get(field_name))


def score_recency(record: Mapping[str, Any], now: datetime) -> float:
    created = _parse_datetime(record.get("created_at"))
    if created is None:
        return 0
    days = (now - created).total_seconds() / 86400
    for limit, points in ((1, 10), (3, 8), (7, 6), (14, 4), (30, 2)):
        if days < limit:
            return points
    return 0


def build_lead_config(target_locations: Sequence[str] = ()) -> ScorerConfig:
    return ScorerConfig(
        name="lead",
        sub_scorers=(
            SubScorer("relationship_intent", 25, score_relationship_intent),
            SubScorer("age_fit", 20, score_age_fit),
            SubScorer("location_fit", 15, make_location_scorer(target_locations)),
            SubScorer("engagement_quality", 20, score_engagement_quality),
            SubScorer("profile_completeness", 10, score_profile_completeness),
            SubScorer("recency", 10, score_recency),
        ),
        disqualifiers=(
            keyword_disqualifier("spam_keyword", CONTENT_FIELD, SPAM_KEYWORDS, SPAM_ALLOWED_WORDS),
            field_equals_disqualifier("casual_intent", "relationship_goal", "casual"),
            min_length_disqualifier("content_too_short", CONTENT_FIELD, MIN_CONTENT_LENGTH),
            pattern_disqualifier("repeated_characters", CONTENT_FIELD, REPEATED_CHARS),
            pattern_disqualifier("gibberish_word", CONTENT_FIELD, GIBBERISH_WORD),
            pattern_disqualifier("embedded_url", CONTENT_FIELD, URL_FRAGMENT),
            pattern_disqualifier("long_digit_run", CONTENT_FIELD, LONG_DIGIT_RUN),
        ),
        high_threshold=75,
        low_threshold=40,
    ).validate()


# ----------------------------------------------------------------------
# Partner fit (max 20)
# ----------------------------------------------------------------------

BUSINESS_BUILDER_POINTS = {
    "practice_owner": 3,
    "multi_state_practice": 2,
    "content_creator": 2,
    "conference_speaker": 2,
    "actec_fellow": 1,
}

EXPERTISE_POINTS = {
    "dynasty_trust_specialist": 3,
    "asset_protection_specialist": 3,
    "international_planning": 2,
}


def score_business_builder(record: Mapping[str, Any], now: datetime) -> float:
    return sum(points for flag, points in BUSINESS_BUILDER_POINTS.items() if record.get(flag))


def score_expertise(record: Mapping[str, Any], now: datetime) -> float:
    points = sum(p for flag, p in EXPERTISE_POINTS.items() if record.get(flag))
    try:
        years = float(record.get("years_experience") or 0)
    except (TypeError, ValueError):
        years = 0
    if years >= 15:
        points += 2
    return points


def build_partner_config() -> ScorerConfig:
    return ScorerConfig(
        name="partner",
        sub_scorers=(
            SubScorer("business_builder", 10, score_business_builder),
            SubScorer("expertise", 10, score_expertise),
        ),
        disqualifiers=(truthy_disqualifier("unsubscribed", "email_unsubscribed"),),
        high_threshold=15,
        low_threshold=8,
    ).validate()


LEAD_SCORER = build_lead_config()
PARTNER_SCORER = build_partner_config()

SCORERS: Dict[str, ScorerConfig] = {
    LEAD_SCORER.name: LEAD_SCORER,
    PARTNER_SCORER.name: PARTNER_SCORER,
}


def get_scorer_config(name: str) -> ScorerConfig:
    try:
        return SCORERS[name]
    except KeyError:
        raise ScorerConfigError(f"Unknown scorer: {name}") from None
