"""User-facing interviewer messages: opening, chapter transitions, completion."""

from typing import Iterable, Optional

from intake_backend.services.prompt_manager import get_prompt_manager
from intake_backend.services.question_catalog import ChapterInfo


def opening_message(chapters: Iterable[ChapterInfo], user_name: Optional[str] = None) -> str:
    chapters = list(chapters)
    greeting = f"Hey {user_name}" if user_name else "Hey there"
    chapter_lines = "\n".join(
        f"{chapter.emoji} **{chapter.title}** - {chapter.description}" for chapter in chapters
    )
    first = chapters[0]
    return (
        f"{greeting}! 👋\n\n"
        "I'm here to help you build a profile that goes way beyond the surface. Instead of "
        "filling out a long form, we're just going to have a conversation - think of it like "
        "we're getting coffee and getting to know each other.\n\n"
        "There are no right or wrong answers, and you can be as detailed or as brief as you want.\n\n"
        f"We've got {len(chapters)} chapters to explore together:\n\n"
        f"{chapter_lines}\n\n"
        f"Ready to start? Let's begin with Chapter {first.number}: {first.title}."
    )


def chapter_transition_message(chapter: ChapterInfo) -> str:
    return (
        "Great insights so far! Let's move into the next chapter.\n\n"
        f"{chapter.emoji} **Chapter {chapter.number}: {chapter.title}**\n\n"
        "Ready to continue?"
    )


def completion_message(user_name: Optional[str] = None) -> str:
    name = f", {user_name}" if user_name else ""
    return (
        f"Thank you so much for sharing all of that with me{name}! 🎉\n\n"
        "I feel like I've really gotten to know who you are - not just the basics, but what "
        "makes you tick and what you're looking for.\n\n"
        "Your profile is now complete, and we'll use everything you've shared to find people "
        "who truly align with you."
    )


def interviewer_system_prompt(question_text: str, chapter: ChapterInfo, question_number: int,
                              total_questions: int, user_name: Optional[str] = None) -> str:
    return get_prompt_manager().render_prompt(
        "interviewer_system",
        {
            "user_name": user_name or "the user",
            "chapter_title": chapter.title,
            "question_number": question_number,
            "total_questions": total_questions,
            "question": question_text,
        },
    )
