"""
Conditional questionnaire: an AI-free intake path where each multiple-choice
answer picks the next question and maps directly onto framework traits.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from intake_backend.services.errors import InvalidInputError, UnknownQuestionError
from intake_backend.services.extraction_taxonomy import (
    DIMENSIONAL,
    normalize_value,
    resolve_trait,
)
from intake_backend.services.question_catalog import ChapterInfo, QuestionCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TraitMapping:
    framework: str
    trait: str
    score: float  # contribution to the trait, 0-100
    confidence: float


@dataclass(frozen=True)
class AnswerOption:
    id: str
    text: str
    trait_mappings: Tuple[TraitMapping, ...] = ()
    next_question_id: Optional[str] = None


@dataclass(frozen=True)
class QuestionnaireQuestion:
    id: str
    chapter: int
    text: str
    kind: str  # 'multiple_choice', 'scale', 'text'
    category: str
    extraction_targets: Tuple[str, ...] = ()
    answers: Tuple[AnswerOption, ...] = ()
    scale_min: Optional[int] = None
    scale_max: Optional[int] = None
    scale_labels: Optional[Tuple[str, str]] = None
    follow_up_hints: Tuple[str, ...] = ()

    def find_answer(self, answer_id: str) -> Optional[AnswerOption]:
        for answer in self.answers:
            if answer.id == answer_id:
                return answer
        return None


def _m(framework: str, trait: str, score: float, confidence: float) -> TraitMapping:
    return TraitMapping(framework=framework, trait=trait, score=score, confidence=confidence)


QUESTIONNAIRE_CHAPTERS: Tuple[ChapterInfo, ...] = (
    ChapterInfo(1, 'Energy & Lifestyle', '⚡', 'How you recharge and live day to day'),
    ChapterInfo(2, 'Relationships & Attachment', '💞', 'How you connect and handle conflict'),
    ChapterInfo(3, 'Values & Future', '🚀', 'What matters and where you are headed'),
)

START_QUESTION_ID = 'intro_energy'

QUESTIONNAIRE: Tuple[QuestionnaireQuestion, ...] = (
    # Energy & lifestyle
    QuestionnaireQuestion(
        id='intro_energy', chapter=1, kind='multiple_choice', category='energy',
        text='How do you typically recharge after a long week?',
        extraction_targets=('extraversion', 'openness'),
        answers=(
            AnswerOption('social_recharge', 'Going out with friends, socializing, being around people', (
                _m('big_five', 'extraversion', 75, 0.8),
                _m('eq', 'social_skills', 70, 0.7),
            ), 'social_size'),
            AnswerOption('quiet_recharge', 'Staying home, quiet time, solo activities', (
                _m('big_five', 'extraversion', 25, 0.8),
                _m('eq', 'self_awareness', 65, 0.6),
            ), 'alone_activities'),
            AnswerOption('mixed_recharge', 'A mix - some social time, some alone time', (
                _m('big_five', 'extraversion', 50, 0.6),
            ), 'balance_preference'),
        ),
    ),
    QuestionnaireQuestion(
        id='social_size', chapter=1, kind='multiple_choice', category='energy',
        text='When you socialize, do you prefer...',
        extraction_targets=('extraversion', 'social_preferences'),
        answers=(
            AnswerOption('large_groups', 'Big groups, parties, lots of people', (
                _m('big_five', 'extraversion', 85, 0.9),
                _m('disc', 'influence', 75, 0.7),
            ), 'weekend_plans'),
            AnswerOption('small_groups', 'Small groups, intimate gatherings, close friends', (
                _m('big_five', 'extraversion', 60, 0.8),
                _m('big_five', 'agreeableness', 70, 0.6),
            ), 'weekend_plans'),
        ),
    ),
    QuestionnaireQuestion(
        id='alone_activities', chapter=1, kind='multiple_choice', category='interests',
        text='What do you enjoy doing in your alone time?',
        extraction_targets=('openness', 'interests'),
        answers=(
            AnswerOption('creative_solo', 'Creative hobbies (art, music, writing, crafts)', (
                _m('big_five', 'openness', 80, 0.8),
                _m('enneagram', 'type_4', 70, 0.6),
            ), 'weekend_plans'),
            AnswerOption('learning_solo', 'Learning (reading, courses, documentaries)', (
                _m('big_five', 'openness', 85, 0.9),
                _m('enneagram', 'type_5', 75, 0.7),
            ), 'weekend_plans'),
            AnswerOption('relaxing_solo', 'Relaxing (TV, movies, games, rest)', (
                _m('disc', 'steadiness', 75, 0.7),
                _m('enneagram', 'type_9', 65, 0.6),
            ), 'weekend_plans'),
            AnswerOption('active_solo', 'Physical activity (gym, yoga, hiking, sports)', (
                _m('big_five', 'conscientiousness', 75, 0.7),
                _m('enneagram', 'type_3', 65, 0.6),
            ), 'weekend_plans'),
        ),
    ),
    QuestionnaireQuestion(
        id='balance_preference', chapter=1, kind='multiple_choice', category='energy',
        text='Which do you tend to need more of to feel balanced?',
        extraction_targets=('extraversion', 'self_awareness'),
        answers=(
            AnswerOption('need_more_social', 'I tend to need more social time', (
                _m('big_five', 'extraversion', 60, 0.7),
            ), 'weekend_plans'),
            AnswerOption('need_more_alone', 'I tend to need more alone time', (
                _m('big_five', 'extraversion', 40, 0.7),
            ), 'weekend_plans'),
            AnswerOption('truly_balanced', 'I genuinely need both equally', (
                _m('big_five', 'extraversion', 50, 0.8),
                _m('eq', 'self_awareness', 75, 0.7),
            ), 'weekend_plans'),
        ),
    ),
    QuestionnaireQuestion(
        id='weekend_plans', chapter=1, kind='multiple_choice', category='planning',
        text='When you have a free weekend, do you...',
        extraction_targets=('conscientiousness', 'judging_perceiving'),
        answers=(
            AnswerOption('plan_ahead', 'Plan it out in advance - I like having a schedule', (
                _m('big_five', 'conscientiousness', 80, 0.9),
                _m('mbti', 'judging', 80, 0.8),
            ), 'home_environment'),
            AnswerOption('wing_it', 'See where the moment takes me - I prefer spontaneity', (
                _m('big_five', 'conscientiousness', 35, 0.8),
                _m('mbti', 'perceiving', 80, 0.8),
                _m('big_five', 'openness', 70, 0.6),
            ), 'home_environment'),
            AnswerOption('loose_plan', 'Have a loose idea but stay flexible', (
                _m('big_five', 'conscientiousness', 60, 0.7),
                _m('big_five', 'openness', 65, 0.6),
            ), 'home_environment'),
        ),
    ),
    QuestionnaireQuestion(
        id='home_environment', chapter=1, kind='multiple_choice', category='lifestyle',
        text='How would you describe your ideal home environment?',
        extraction_targets=('conscientiousness', 'lifestyle'),
        answers=(
            AnswerOption('organized_minimal', 'Organized, minimalist, everything in its place', (
                _m('big_five', 'conscientiousness', 85, 0.9),
                _m('enneagram', 'type_1', 70, 0.7),
            ), 'relationship_history'),
            AnswerOption('cozy_lived_in', 'Cozy, lived-in, warm and welcoming', (
                _m('big_five', 'agreeableness', 75, 0.7),
                _m('enneagram', 'type_2', 65, 0.6),
            ), 'relationship_history'),
            AnswerOption('creative_expressive', 'Creative, expressive, reflects my personality', (
                _m('big_five', 'openness', 80, 0.8),
                _m('enneagram', 'type_4', 70, 0.7),
            ), 'relationship_history'),
            AnswerOption('functional_practical', 'Functional, practical, gets the job done', (
                _m('mbti', 'sensing', 75, 0.7),
                _m('disc', 'conscientiousness', 70, 0.6),
            ), 'relationship_history'),
        ),
    ),

    # Relationships & attachment
    QuestionnaireQuestion(
        id='relationship_history', chapter=2, kind='multiple_choice', category='relationships',
        text='Thinking about your past relationships, what pattern do you notice?',
        extraction_targets=('attachment', 'relationship_patterns'),
        answers=(
            AnswerOption('pattern_secure', 'Generally healthy - I can be close while maintaining independence', (
                _m('attachment', 'attachment_secure', 85, 0.8),
                _m('eq', 'eq_overall', 75, 0.7),
            ), 'conflict_style'),
            AnswerOption('pattern_anxious', 'I tend to worry about the relationship and need reassurance', (
                _m('attachment', 'attachment_anxious', 80, 0.85),
                _m('big_five', 'neuroticism', 65, 0.7),
            ), 'anxiety_followup'),
            AnswerOption('pattern_avoidant', 'I value my independence and can feel smothered easily', (
                _m('attachment', 'attachment_avoidant', 80, 0.85),
                _m('big_five', 'extraversion', 35, 0.6),
            ), 'avoidance_followup'),
            AnswerOption('pattern_learning', "I'm still learning what healthy looks like for me", (
                _m('eq', 'self_awareness', 75, 0.8),
                _m('big_five', 'openness', 70, 0.6),
            ), 'growth_question'),
        ),
    ),
    QuestionnaireQuestion(
        id='conflict_style', chapter=2, kind='multiple_choice', category='communication',
        text="When there's a disagreement in a relationship, what's your typical approach?",
        extraction_targets=('conflict_style', 'communication'),
        answers=(
            AnswerOption('direct_conflict', 'Address it directly and talk it through', (
                _m('disc', 'dominance', 75, 0.8),
                _m('attachment', 'attachment_secure', 70, 0.7),
            ), 'values_family'),
            AnswerOption('need_time', 'I need some time to process before discussing', (
                _m('eq', 'self_regulation', 75, 0.8),
                _m('big_five', 'introversion', 65, 0.6),
            ), 'values_family'),
            AnswerOption('avoid_conflict', 'I tend to avoid conflict when possible', (
                _m('big_five', 'agreeableness', 80, 0.7),
                _m('enneagram', 'type_9', 75, 0.7),
            ), 'conflict_avoidance_followup'),
        ),
    ),

    # Values & future
    QuestionnaireQuestion(
        id='values_family', chapter=3, kind='scale', category='values',
        text='How important is family (biological or chosen) in your life?',
        extraction_targets=('values', 'family_orientation'),
        scale_min=1, scale_max=10,
        scale_labels=('Not very important', 'Extremely important'),
    ),
    QuestionnaireQuestion(
        id='children_desire', chapter=3, kind='multiple_choice', category='life_vision',
        text='How do you feel about having children?',
        extraction_targets=('family_goals', 'life_vision'),
        answers=(
            AnswerOption('definitely_want', 'I definitely want children', (
                _m('life_vision', 'wants_children', 100, 1.0),
            ), 'children_timeline'),
            AnswerOption('probably_want', 'I probably want children', (
                _m('life_vision', 'wants_children', 75, 0.7),
            ), 'life_priorities'),
            AnswerOption('unsure_children', "I'm unsure / open to it", (
                _m('life_vision', 'wants_children', 50, 0.5),
            ), 'life_priorities'),
            AnswerOption('probably_not', "I probably don't want children", (
                _m('life_vision', 'wants_children', 25, 0.7),
            ), 'life_priorities'),
            AnswerOption('definitely_not', "I definitely don't want children", (
                _m('life_vision', 'wants_children', 0, 1.0),
            ), 'life_priorities'),
            AnswerOption('have_children', 'I already have children', (
                _m('demographics', 'has_children', 100, 1.0),
            ), 'life_priorities'),
        ),
    ),
    QuestionnaireQuestion(
        id='life_priorities', chapter=3, kind='text', category='values',
        text='What are your top life priorities right now? (Name up to 3)',
        extraction_targets=('values', 'life_priorities'),
    ),
)

_MBTI_POLES = {
    'extraversion': ('e_i', 'e'), 'introversion': ('e_i', 'i'),
    'sensing': ('s_n', 's'), 'intuition': ('s_n', 'n'),
    'thinking': ('t_f', 't'), 'feeling': ('t_f', 'f'),
    'judging': ('j_p', 'j'), 'perceiving': ('j_p', 'p'),
}


def mapping_to_reading(mapping: TraitMapping, answer_text: str) -> Optional[Tuple[str, str, Any]]:
    """Translate a questionnaire trait mapping into a (framework, trait, value) reading.

    Returns None for mappings the profile taxonomy has no place for.
    """
    framework, trait = mapping.framework, mapping.trait
    if framework == 'attachment' and trait.startswith('attachment_'):
        return framework, 'style', trait[len('attachment_'):]
    if framework == 'enneagram' and trait.startswith('type_'):
        return framework, 'type', trait[len('type_'):]
    if framework == 'mbti':
        pole = _MBTI_POLES.get(trait)
        return (framework, pole[0], pole[1]) if pole else None
    if framework == 'big_five' and trait == 'introversion':
        return framework, 'extraversion', 100 - mapping.score
    if framework == 'life_vision' and trait == 'wants_children':
        return framework, 'family_goals', answer_text

    resolved = resolve_trait(framework, trait)
    if resolved is None or resolved[1].kind != DIMENSIONAL:
        return None
    return framework, resolved[0], mapping.score


def answer_to_extractions(question: QuestionnaireQuestion, answer: AnswerOption) -> Dict[str, Dict[str, Dict[str, Any]]]:
    """Build per-framework extraction payloads for a chosen answer.

    Shape matches what the turn extractor produces:
    {framework: {trait: {"value", "confidence", "evidence"}}}
    """
    evidence = [f"{question.text} -> {answer.text}"]
    extractions: Dict[str, Dict[str, Dict[str, Any]]] = {}
    for mapping in answer.trait_mappings:
        reading = mapping_to_reading(mapping, answer.text)
        if reading is None:
            logger.debug("[QUESTIONNAIRE] No taxonomy slot for %s:%s", mapping.framework, mapping.trait)
            continue
        framework, trait, raw_value = reading
        spec = resolve_trait(framework, trait)[1]
        value = normalize_value(framework, trait, spec, raw_value)
        if value is None:
            continue
        traits = extractions.setdefault(framework, {})
        existing = traits.get(trait)
        if existing is None or mapping.confidence > existing["confidence"]:
            traits[trait] = {
                "value": value,
                "confidence": float(mapping.confidence),
                "evidence": list(evidence),
            }
    return extractions


class ConditionalCatalog(QuestionCatalog):
    """Answer-driven traversal over the questionnaire.

    A next_question_id that is not in the questionnaire falls through to the
    next question in declared order, so every branch reaches the end.
    """

    mode = "questionnaire"

    def __init__(self, questions: Tuple[QuestionnaireQuestion, ...] = QUESTIONNAIRE,
                 start_question_id: str = START_QUESTION_ID,
                 chapters: Tuple[ChapterInfo, ...] = QUESTIONNAIRE_CHAPTERS):
        self._questions = questions
        self._order = [q.id for q in questions]
        self._by_id = {q.id: q for q in questions}
        self._start = start_question_id
        self._chapters = {c.number: c for c in chapters}

    @property
    def total_questions(self) -> int:
        return len(self._questions)

    def first_question_id(self) -> str:
        return self._start

    def get_question(self, question_id: str) -> QuestionnaireQuestion:
        question = self._by_id.get(question_id)
        if question is None:
            raise UnknownQuestionError(question_id)
        return question

    def _successor(self, question_id: str) -> Optional[str]:
        index = self._order.index(question_id)
        return self._order[index + 1] if index + 1 < len(self._order) else None

    def next_question(self, current_question_id: str, answer_id: Optional[str] = None) -> Optional[str]:
        question = self.get_question(current_question_id)
        if question.answers:
            answer = question.find_answer(answer_id) if answer_id else None
            if answer is None:
                return None
            if answer.next_question_id in self._by_id:
                return answer.next_question_id
        return self._successor(current_question_id)

    def chapter_of(self, question_id: str) -> ChapterInfo:
        return self._chapters[self.get_question(question_id).chapter]

    def chapters(self) -> List[ChapterInfo]:
        return [self._chapters[n] for n in sorted(self._chapters)]

    def resolve_answer(self, question_id: str, answer_id: Optional[str], message: Optional[str]) -> Tuple[Optional[AnswerOption], str]:
        """Validate a submitted answer and return (option, display text).

        Raises InvalidInputError when the answer does not fit the question.
        """
        question = self.get_question(question_id)
        if question.kind == 'multiple_choice':
            if not answer_id:
                raise InvalidInputError(f"answer_id is required for question {question_id}")
            answer = question.find_answer(answer_id)
            if answer is None:
                raise InvalidInputError(f"Unknown answer '{answer_id}' for question {question_id}")
            return answer, answer.text
        if question.kind == 'scale':
            try:
                value = int(str(answer_id).strip())
            except (TypeError, ValueError):
                raise InvalidInputError(f"A numeric answer_id is required for question {question_id}")
            if not question.scale_min <= value <= question.scale_max:
                raise InvalidInputError(
                    f"Answer {value} is outside {question.scale_min}-{question.scale_max} for question {question_id}"
                )
            return None, f"{value} / {question.scale_max}"
        text = (message or "").strip()
        if not text:
            raise InvalidInputError(f"A text answer is required for question {question_id}")
        return None, text


CONDITIONAL_CATALOG = ConditionalCatalog()


def calculate_traits_from_answers(answers: Mapping[str, str],
                                  catalog: Optional[ConditionalCatalog] = None) -> Dict[str, Dict[str, float]]:
    """Average raw trait mapping scores over answered questions.

    answers maps question id -> answer id. Keys of the result are
    "framework:trait"; score is the rounded mean, confidence the max.
    """
    catalog = catalog or CONDITIONAL_CATALOG
    totals: Dict[str, Dict[str, float]] = {}
    for question_id, answer_id in answers.items():
        try:
            answer = catalog.get_question(question_id).find_answer(answer_id)
        except UnknownQuestionError:
            continue
        if answer is None:
            continue
        for mapping in answer.trait_mappings:
            key = f"{mapping.framework}:{mapping.trait}"
            bucket = totals.setdefault(key, {"total": 0.0, "count": 0, "confidence": 0.0})
            bucket["total"] += mapping.score
            bucket["count"] += 1
            bucket["confidence"] = max(bucket["confidence"], mapping.confidence)

    return {
        key: {
            "score": math.floor(data["total"] / data["count"] + 0.5),
            "confidence": data["confidence"],
        }
        for key, data in totals.items()
    }
