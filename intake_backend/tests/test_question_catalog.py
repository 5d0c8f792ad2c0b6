import pytest

from intake_backend.services.conversation_messages import (
    chapter_transition_message,
    completion_message,
    opening_message,
)
from intake_backend.services.errors import UnknownQuestionError
from intake_backend.services.question_catalog import (
    CHAPTERS,
    QUESTION_BANK,
    TOTAL_QUESTIONS,
    LinearCatalog,
)


@pytest.fixture
def catalog():
    return LinearCatalog()


class TestQuestionBank:
    def test_seven_chapters_of_seven(self, catalog):
        assert TOTAL_QUESTIONS == 49
        assert catalog.total_questions == 49
        for chapter in CHAPTERS:
            assert len(catalog.questions_in_chapter(chapter.number)) == 7

    def test_numbers_are_contiguous(self):
        assert sorted(q.number for q in QUESTION_BANK) == list(range(1, 50))

    def test_ids_are_unique(self):
        assert len({q.id for q in QUESTION_BANK}) == len(QUESTION_BANK)

    def test_every_question_has_targets_and_hints(self):
        for question in QUESTION_BANK:
            assert question.text
            assert question.extraction_targets, question.id
            assert question.follow_up_hints, question.id


class TestLinearCatalog:
    def test_first_question(self, catalog):
        assert catalog.first_question_id() == "ch1_q1"
        assert catalog.get_question("ch1_q1").number == 1

    def test_next_question_crosses_chapters(self, catalog):
        assert catalog.next_question("ch1_q1") == "ch1_q2"
        assert catalog.next_question("ch1_q7") == "ch2_q1"
        assert catalog.get_question("ch2_q1").number == 8

    def test_last_question_has_no_successor(self, catalog):
        assert catalog.next_question("ch7_q7") is None
        assert catalog.get_question_by_number(49).id == "ch7_q7"
        assert catalog.get_question_by_number(50) is None

    def test_unknown_question_raises(self, catalog):
        with pytest.raises(UnknownQuestionError):
            catalog.get_question("ch9_q1")

    def test_chapter_of(self, catalog):
        assert catalog.chapter_of("ch1_q3").title == "Your World"
        assert catalog.chapter_of("ch7_q1").title == "The Details"
        assert [c.number for c in catalog.chapters()] == [1, 2, 3, 4, 5, 6, 7]


class TestMessages:
    def test_opening_lists_chapters(self):
        message = opening_message(CHAPTERS, "Sam")

        assert message.startswith("Hey Sam! 👋")
        assert "We've got 7 chapters to explore together" in message
        assert "**Your Heart**" in message
        assert message.endswith("Ready to start? Let's begin with Chapter 1: Your World.")

    def test_opening_without_name(self):
        assert opening_message(CHAPTERS).startswith("Hey there! 👋")

    def test_chapter_transition(self):
        message = chapter_transition_message(CHAPTERS[1])
        assert message == (
            "Great insights so far! Let's move into the next chapter.\n\n"
            "📖 **Chapter 2: Your Story**\n\n"
            "Ready to continue?"
        )

    def test_completion(self):
        assert completion_message("Sam").startswith("Thank you so much for sharing all of that with me, Sam! 🎉")
        assert completion_message().startswith("Thank you so much for sharing all of that with me! 🎉")
