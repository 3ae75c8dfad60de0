from __future__ import annotations

import json
import re
from typing import Sequence

from mednotes_api.domain.entities import NoteRecord, QuizQuestion
from mednotes_api.domain.exceptions import ExternalAIError

from .providers import Message

_FENCE_RE = re.compile(r"```(?:json)?")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

SYSTEM_PROMPT = "You are a helpful assistant."


def build_quiz_messages(notes: Sequence[NoteRecord], num_questions: int) -> list[Message]:
    listing = "\n".join(f"[noteId: {n.id}] {json.dumps(n.content)}" for n in notes)
    prompt = (
        "You are a medical educator. Given the following collection of medical notes, "
        f"generate {num_questions} multiple-choice questions (MCQs) that test knowledge from these notes. "
        "Each MCQ should:\n"
        "- Be based on the content of one or more notes, but do NOT reference the note or its ID in the question text.\n"
        "- Have a question, four answer choices (one correct, three plausible distractors), and the correct answer.\n"
        "- Include a noteId field for the note that most directly inspired the question.\n\n"
        'Return only a JSON array of objects with keys "noteId", "question", "choices", "correct".\n\n'
        f"Here are the notes:\n{listing}"
    )
    return [Message(role="system", content=SYSTEM_PROMPT), Message(role="user", content=prompt)]


def parse_quiz(text: str, note_ids: Sequence[str]) -> list[QuizQuestion]:
    """
    Extract questions from a model reply.

    Tolerates code fences and prose around the array. Questions with the wrong
    number of choices, or whose answer is not among them, are dropped; a
    question citing an unknown note keeps the first note's id.
    """
    cleaned = _FENCE_RE.sub("", text).strip()
    match = _ARRAY_RE.search(cleaned)
    try:
        data = json.loads(match.group(0) if match else cleaned)
    except json.JSONDecodeError as e:
        raise ExternalAIError("quiz_parse_failed") from e
    if not isinstance(data, list):
        raise ExternalAIError("quiz_parse_failed")

    known = set(note_ids)
    fallback = note_ids[0] if note_ids else ""
    out: list[QuizQuestion] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        question = item.get("question")
        choices = item.get("choices")
        correct = item.get("correct")
        if not isinstance(question, str) or not question.strip():
            continue
        if not isinstance(choices, list) or len(choices) != 4 or not all(isinstance(c, str) for c in choices):
            continue
        if correct not in choices:
            continue
        note_id = str(item.get("noteId") or "")
        out.append(
            QuizQuestion(
                note_id=note_id if note_id in known else fallback,
                question=question.strip(),
                choices=tuple(choices),
                correct=correct,
            )
        )
    if not out:
        raise ExternalAIError("quiz_empty")
    return out
