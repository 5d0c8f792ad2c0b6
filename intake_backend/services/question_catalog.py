"""
Static interview catalog: seven chapters, 49 questions, each with extraction
targets and follow-up hints.

`QuestionCatalog` is the traversal contract shared by the linear interview and
the conditional questionnaire (see questionnaire.py). `next_question` returning
None means the conversation is complete.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from intake_backend.services.errors import UnknownQuestionError


@dataclass(frozen=True)
class ChapterInfo:
    number: int
    title: str
    emoji: str
    description: str


@dataclass(frozen=True)
class Question:
    id: str
    chapter: int
    number: int
    text: str
    extraction_targets: Tuple[str, ...] = ()
    follow_up_hints: Tuple[str, ...] = ()


class QuestionCatalog(ABC):
    mode: str = ""

    @property
    @abstractmethod
    def total_questions(self) -> int:
        ...

    @abstractmethod
    def first_question_id(self) -> str:
        ...

    @abstractmethod
    def get_question(self, question_id: str):
        ...

    @abstractmethod
    def next_question(self, current_question_id: str, answer_id: Optional[str] = None) -> Optional[str]:
        ...

    @abstractmethod
    def chapter_of(self, question_id: str) -> ChapterInfo:
        ...

    @abstractmethod
    def chapters(self) -> List[ChapterInfo]:
        ...


CHAPTERS: Tuple[ChapterInfo, ...] = (
    ChapterInfo(1, 'Your World', '🌍', "Let's start with where you are in life right now"),
    ChapterInfo(2, 'Your Story', '📖', 'Everyone has a unique journey'),
    ChapterInfo(3, 'Your Relationships', '💞', 'How you connect with others'),
    ChapterInfo(4, 'Your Mind', '🧠', 'How you think and process the world'),
    ChapterInfo(5, 'Your Heart', '❤️', 'What you feel and value'),
    ChapterInfo(6, 'Your Future', '🚀', "Where you're headed"),
    ChapterInfo(7, 'The Details', '✨', 'The little things that matter'),
)

QUESTION_BANK: Tuple[Question, ...] = (
    # Chapter 1 (questions 1-7)
    Question(
        id='ch1_q1', chapter=1, number=1,
        text="Let's start with the basics - what does a typical day look like for you?",
        extraction_targets=('lifestyle_indicators', 'activity_level', 'social_preference', 'work_life_balance'),
        follow_up_hints=(
            "That sounds interesting! What part of your day do you look forward to most?",
            "How do you usually wind down after a day like that?",
        ),
    ),
    Question(
        id='ch1_q2', chapter=1, number=2,
        text="Where are you currently based, and how do you feel about where you live?",
        extraction_targets=('geographic_flexibility', 'lifestyle_indicators', 'openness', 'values'),
        follow_up_hints=(
            "What do you love most about living there?",
            "Could you see yourself somewhere else, or are you pretty rooted?",
        ),
    ),
    Question(
        id='ch1_q3', chapter=1, number=3,
        text="Tell me about your work or what keeps you busy these days.",
        extraction_targets=('conscientiousness', 'career_trajectory', 'values', 'interests'),
        follow_up_hints=(
            "What drew you to that field?",
            "What's the most rewarding part of what you do?",
        ),
    ),
    Question(
        id='ch1_q4', chapter=1, number=4,
        text="Outside of work, what do you do for fun?",
        extraction_targets=('interests', 'extraversion', 'openness', 'activity_level'),
        follow_up_hints=(
            "How did you get into that?",
            "Do you prefer doing that solo or with others?",
        ),
    ),
    Question(
        id='ch1_q5', chapter=1, number=5,
        text="Are you more of a homebody or someone who's always out and about?",
        extraction_targets=('extraversion', 'social_preference', 'lifestyle_indicators'),
        follow_up_hints=(
            "What's your ideal weekend?",
            "Has that changed over time?",
        ),
    ),
    Question(
        id='ch1_q6', chapter=1, number=6,
        text="Do you have any pets, or are you a plant parent? Or neither?",
        extraction_targets=('lifestyle_indicators', 'nurturing_tendencies', 'agreeableness'),
        follow_up_hints=(
            "Tell me about them!",
            "Have you always been an animal/plant person?",
        ),
    ),
    Question(
        id='ch1_q7', chapter=1, number=7,
        text="What's something you're working on improving in your life right now?",
        extraction_targets=('conscientiousness', 'openness', 'self_awareness', 'growth_mindset'),
        follow_up_hints=(
            "What inspired you to focus on that?",
            "How's it going so far?",
        ),
    ),
    # Chapter 2 (questions 8-14)
    Question(
        id='ch2_q1', chapter=2, number=8,
        text="Where did you grow up, and what was that like for you?",
        extraction_targets=('attachment_style', 'values', 'family_dynamics', 'openness'),
        follow_up_hints=(
            "What's something from your childhood that shaped who you are?",
            "Do you still have ties there?",
        ),
    ),
    Question(
        id='ch2_q2', chapter=2, number=9,
        text="Tell me about your family - are you close with them?",
        extraction_targets=('attachment_style', 'family_goals', 'relationship_patterns', 'agreeableness'),
        follow_up_hints=(
            "What role do you play in your family?",
            "How has that relationship evolved?",
        ),
    ),
    Question(
        id='ch2_q3', chapter=2, number=10,
        text="What's a defining moment or experience that made you who you are today?",
        extraction_targets=('resilience', 'self_awareness', 'values', 'emotional_intelligence'),
        follow_up_hints=(
            "How did that change your perspective?",
            "Looking back, what did you learn from that?",
        ),
    ),
    Question(
        id='ch2_q4', chapter=2, number=11,
        text="Have you had any major plot twists in life - career changes, big moves, unexpected turns?",
        extraction_targets=('openness', 'risk_tolerance', 'adaptability', 'neuroticism'),
        follow_up_hints=(
            "What prompted that change?",
            "How do you feel about it now?",
        ),
    ),
    Question(
        id='ch2_q5', chapter=2, number=12,
        text="Is there a person who's had a significant influence on your life?",
        extraction_targets=('values', 'attachment_style', 'relationship_patterns'),
        follow_up_hints=(
            "What did they teach you?",
            "Are they still in your life?",
        ),
    ),
    Question(
        id='ch2_q6', chapter=2, number=13,
        text="What's something you used to believe that you've completely changed your mind about?",
        extraction_targets=('openness', 'growth_mindset', 'cognitive_flexibility', 'self_awareness'),
        follow_up_hints=(
            "What caused that shift?",
            "How did that feel?",
        ),
    ),
    Question(
        id='ch2_q7', chapter=2, number=14,
        text="If you could go back and give your younger self one piece of advice, what would it be?",
        extraction_targets=('wisdom', 'self_awareness', 'emotional_intelligence', 'values'),
        follow_up_hints=(
            "Do you think you would have listened?",
            "What made you learn that lesson?",
        ),
    ),
    # Chapter 3 (questions 15-21)
    Question(
        id='ch3_q1', chapter=3, number=15,
        text="What does your social circle look like - big group, tight-knit few, or somewhere in between?",
        extraction_targets=('extraversion', 'social_preference', 'relationship_patterns'),
        follow_up_hints=(
            "What do you value most in your friendships?",
            "How do you prefer to spend time with friends?",
        ),
    ),
    Question(
        id='ch3_q2', chapter=3, number=16,
        text="How do you typically handle conflict in relationships?",
        extraction_targets=('conflict_style', 'emotional_intelligence', 'agreeableness', 'neuroticism', 'communication_preference'),
        follow_up_hints=(
            "Has that always been your approach?",
            "What works best for you when tensions arise?",
        ),
    ),
    Question(
        id='ch3_q3', chapter=3, number=17,
        text="When you're going through something difficult, do you reach out or retreat?",
        extraction_targets=('attachment_style', 'emotional_intelligence', 'coping_mechanisms', 'independence_level'),
        follow_up_hints=(
            "Why do you think you do that?",
            "Who do you usually turn to?",
        ),
    ),
    Question(
        id='ch3_q4', chapter=3, number=18,
        text="What's your communication style - are you an open book, more reserved, or does it depend?",
        extraction_targets=('communication_preference', 'extraversion', 'openness', 'vulnerability'),
        follow_up_hints=(
            "When do you open up most?",
            "Is that something you're comfortable with?",
        ),
    ),
    Question(
        id='ch3_q5', chapter=3, number=19,
        text="Tell me about a past relationship that taught you something important.",
        extraction_targets=('relationship_patterns', 'attachment_style', 'self_awareness', 'growth_mindset', 'red_flags', 'green_flags'),
        follow_up_hints=(
            "What did you learn about yourself?",
            "How has that shaped what you're looking for now?",
        ),
    ),
    Question(
        id='ch3_q6', chapter=3, number=20,
        text="How do you show someone you care about them?",
        extraction_targets=('love_languages', 'affection_style', 'emotional_expression'),
        follow_up_hints=(
            "What about how you like to receive care?",
            "Are those the same or different?",
        ),
    ),
    Question(
        id='ch3_q7', chapter=3, number=21,
        text="What's a dealbreaker for you in any relationship - romantic or otherwise?",
        extraction_targets=('values', 'boundaries', 'red_flags', 'self_awareness'),
        follow_up_hints=(
            "Has that always been a dealbreaker, or did you learn that?",
            "What makes that so important to you?",
        ),
    ),
    # Chapter 4 (questions 22-28)
    Question(
        id='ch4_q1', chapter=4, number=22,
        text="How do you usually make big decisions?",
        extraction_targets=('decision_style', 'conscientiousness', 'neuroticism', 'cognitive_indicators'),
        follow_up_hints=(
            "Do you trust your gut, or do you need all the data?",
            "How long does it usually take you?",
        ),
    ),
    Question(
        id='ch4_q2', chapter=4, number=23,
        text="Are you more of a planner or do you go with the flow?",
        extraction_targets=('conscientiousness', 'planning_style', 'openness', 'neuroticism'),
        follow_up_hints=(
            "How do you feel when plans change unexpectedly?",
            "What's your ideal balance?",
        ),
    ),
    Question(
        id='ch4_q3', chapter=4, number=24,
        text="What's something you're naturally curious about or love learning?",
        extraction_targets=('openness', 'interests', 'intellectual_compatibility', 'growth_mindset'),
        follow_up_hints=(
            "When did you first get interested in that?",
            "How do you usually explore new topics?",
        ),
    ),
    Question(
        id='ch4_q4', chapter=4, number=25,
        text="Do you consider yourself more logical or emotional?",
        extraction_targets=('cognitive_style', 'emotional_intelligence', 'decision_style'),
        follow_up_hints=(
            "Does that show up in how you solve problems?",
            "Has that changed over time?",
        ),
    ),
    Question(
        id='ch4_q5', chapter=4, number=26,
        text="How do you handle stress or pressure?",
        extraction_targets=('neuroticism', 'coping_mechanisms', 'resilience', 'emotional_regulation'),
        follow_up_hints=(
            "What helps you decompress?",
            "Have you always coped this way?",
        ),
    ),
    Question(
        id='ch4_q6', chapter=4, number=27,
        text="Are you someone who needs a lot of alone time to recharge, or do you get energy from being around people?",
        extraction_targets=('extraversion', 'social_preference', 'self_awareness'),
        follow_up_hints=(
            "What happens if you don't get enough of that?",
            "Has that always been true for you?",
        ),
    ),
    Question(
        id='ch4_q7', chapter=4, number=28,
        text="What's something most people don't understand about how you think or process things?",
        extraction_targets=('self_awareness', 'cognitive_style', 'uniqueness', 'communication_needs'),
        follow_up_hints=(
            "How do you explain that to others?",
            "When did you realize that about yourself?",
        ),
    ),
    # Chapter 5 (questions 29-35)
    Question(
        id='ch5_q1', chapter=5, number=29,
        text="What do you value most in life?",
        extraction_targets=('core_values', 'values_hierarchy', 'priorities'),
        follow_up_hints=(
            "Why is that so important to you?",
            "How do you make sure you're honoring that?",
        ),
    ),
    Question(
        id='ch5_q2', chapter=5, number=30,
        text="What makes you feel most fulfilled or purposeful?",
        extraction_targets=('life_vision', 'values', 'meaning', 'self_awareness'),
        follow_up_hints=(
            "When was the last time you felt that way?",
            "What gets in the way of feeling that more often?",
        ),
    ),
    Question(
        id='ch5_q3', chapter=5, number=31,
        text="If money and time weren't an issue, what would you spend your life doing?",
        extraction_targets=('values', 'interests', 'life_vision', 'priorities'),
        follow_up_hints=(
            "What's stopping you from doing some version of that now?",
            "How does that align with where you are today?",
        ),
    ),
    Question(
        id='ch5_q4', chapter=5, number=32,
        text="What's something you're deeply passionate about?",
        extraction_targets=('interests', 'values', 'emotional_intensity', 'openness'),
        follow_up_hints=(
            "What is it about that that moves you?",
            "How does that show up in your daily life?",
        ),
    ),
    Question(
        id='ch5_q5', chapter=5, number=33,
        text="How important is physical affection and intimacy to you in a relationship?",
        extraction_targets=('love_languages', 'affection_style', 'intimacy_needs', 'attachment_style'),
        follow_up_hints=(
            "What does that look like for you?",
            "How do you communicate those needs?",
        ),
    ),
    Question(
        id='ch5_q6', chapter=5, number=34,
        text="What does emotional intimacy mean to you?",
        extraction_targets=('emotional_intelligence', 'vulnerability', 'relationship_needs', 'attachment_style'),
        follow_up_hints=(
            "How do you create that with someone?",
            "What helps you feel safe opening up?",
        ),
    ),
    Question(
        id='ch5_q7', chapter=5, number=35,
        text="What's something that always makes you feel grateful or brings you joy?",
        extraction_targets=('values', 'positive_psychology', 'emotional_patterns', 'appreciation'),
        follow_up_hints=(
            "When did you last experience that?",
            "What is it about that that touches you?",
        ),
    ),
    # Chapter 6 (questions 36-42)
    Question(
        id='ch6_q1', chapter=6, number=36,
        text="Where do you see yourself in 5 years?",
        extraction_targets=('life_vision', 'career_trajectory', 'planning_orientation', 'conscientiousness'),
        follow_up_hints=(
            "What steps are you taking to get there?",
            "How set are you on that vision?",
        ),
    ),
    Question(
        id='ch6_q2', chapter=6, number=37,
        text="Do you want kids? If so, what kind of parent do you think you'd be?",
        extraction_targets=('family_goals', 'wants_children', 'values', 'parenting_style'),
        follow_up_hints=(
            "What shaped that decision for you?",
            "How important is it that a partner feels the same way?",
        ),
    ),
    Question(
        id='ch6_q3', chapter=6, number=38,
        text="How do you think about money and financial security?",
        extraction_targets=('financial_philosophy', 'risk_tolerance', 'conscientiousness', 'values'),
        follow_up_hints=(
            "Are you a saver or a spender?",
            "What role does money play in your sense of security?",
        ),
    ),
    Question(
        id='ch6_q4', chapter=6, number=39,
        text="What does your ideal living situation look like - city, suburbs, country, somewhere else?",
        extraction_targets=('lifestyle_preferences', 'geographic_flexibility', 'values', 'future_plans'),
        follow_up_hints=(
            "What draws you to that?",
            "Is that where you are now, or a future goal?",
        ),
    ),
    Question(
        id='ch6_q5', chapter=6, number=40,
        text="What's something you want to accomplish before you die?",
        extraction_targets=('life_vision', 'values', 'ambition', 'priorities'),
        follow_up_hints=(
            "What would it mean to you to do that?",
            "What's the first step toward making that happen?",
        ),
    ),
    Question(
        id='ch6_q6', chapter=6, number=41,
        text="How do you balance personal ambition with relationship priorities?",
        extraction_targets=('values', 'relationship_priorities', 'independence_level', 'conscientiousness'),
        follow_up_hints=(
            "Has that always been easy for you?",
            "What happens when those conflict?",
        ),
    ),
    Question(
        id='ch6_q7', chapter=6, number=42,
        text="What's your dream relationship dynamic - equals, complementary, something else?",
        extraction_targets=('relationship_vision', 'values', 'partnership_style', 'gender_roles'),
        follow_up_hints=(
            "What does that look like day-to-day?",
            "What's most important to you in that dynamic?",
        ),
    ),
    # Chapter 7 (questions 43-49)
    Question(
        id='ch7_q1', chapter=7, number=43,
        text="Are you a morning person or a night owl?",
        extraction_targets=('chronotype', 'lifestyle_indicators', 'daily_rhythms'),
        follow_up_hints=(
            "When do you feel most productive?",
            "How does that affect your daily routine?",
        ),
    ),
    Question(
        id='ch7_q2', chapter=7, number=44,
        text="What's your relationship with food - adventurous eater, creature of habit, health-focused?",
        extraction_targets=('openness', 'lifestyle_preferences', 'health_consciousness'),
        follow_up_hints=(
            "Do you enjoy cooking?",
            "What's your go-to comfort food?",
        ),
    ),
    Question(
        id='ch7_q3', chapter=7, number=45,
        text="How do you feel about travel? Essential, nice but not necessary, or not your thing?",
        extraction_targets=('openness', 'interests', 'lifestyle_preferences', 'financial_priorities'),
        follow_up_hints=(
            "What's your favorite place you've been?",
            "Where's on your bucket list?",
        ),
    ),
    Question(
        id='ch7_q4', chapter=7, number=46,
        text="What's your ideal Friday night?",
        extraction_targets=('social_preference', 'lifestyle_indicators', 'extraversion', 'interests'),
        follow_up_hints=(
            "How often do you actually get to do that?",
            "Has that changed as you've gotten older?",
        ),
    ),
    Question(
        id='ch7_q5', chapter=7, number=47,
        text="Are you religious or spiritual, and does that play a role in your life?",
        extraction_targets=('spirituality', 'values', 'lifestyle_indicators', 'compatibility_factors'),
        follow_up_hints=(
            "How important is it that a partner shares those beliefs?",
            "How does that show up in your daily life?",
        ),
    ),
    Question(
        id='ch7_q6', chapter=7, number=48,
        text="What's your phone/social media usage like - constantly connected, mindful user, or minimal?",
        extraction_targets=('lifestyle_indicators', 'conscientiousness', 'modern_relationship_dynamics'),
        follow_up_hints=(
            "How do you feel about that?",
            "Do you ever try to change it?",
        ),
    ),
    Question(
        id='ch7_q7', chapter=7, number=49,
        text="Last question - what's something about you that I should know but probably wouldn't think to ask?",
        extraction_targets=('self_awareness', 'uniqueness', 'openness', 'what_matters_most'),
        follow_up_hints=(
            "That's fascinating - tell me more!",
            "How does that affect your daily life or relationships?",
        ),
    ),
)

TOTAL_QUESTIONS = len(QUESTION_BANK)  # 49


class LinearCatalog(QuestionCatalog):
    """Fixed-order interview bounded by the bank size."""

    mode = "interview"

    def __init__(self, questions: Tuple[Question, ...] = QUESTION_BANK,
                 chapters: Tuple[ChapterInfo, ...] = CHAPTERS):
        self._questions = tuple(sorted(questions, key=lambda q: q.number))
        self._by_id: Dict[str, Question] = {q.id: q for q in self._questions}
        self._by_number: Dict[int, Question] = {q.number: q for q in self._questions}
        self._chapters: Dict[int, ChapterInfo] = {c.number: c for c in chapters}

    @property
    def total_questions(self) -> int:
        return len(self._questions)

    def first_question_id(self) -> str:
        return self._questions[0].id

    def get_question(self, question_id: str) -> Question:
        question = self._by_id.get(question_id)
        if question is None:
            raise UnknownQuestionError(question_id)
        return question

    def get_question_by_number(self, number: int) -> Optional[Question]:
        return self._by_number.get(number)

    def questions_in_chapter(self, chapter: int) -> List[Question]:
        return [q for q in self._questions if q.chapter == chapter]

    def next_question(self, current_question_id: str, answer_id: Optional[str] = None) -> Optional[str]:
        current = self.get_question(current_question_id)
        following = self._by_number.get(current.number + 1)
        return following.id if following else None

    def chapter_of(self, question_id: str) -> ChapterInfo:
        return self._chapters[self.get_question(question_id).chapter]

    def chapters(self) -> List[ChapterInfo]:
        return [self._chapters[n] for n in sorted(self._chapters)]
