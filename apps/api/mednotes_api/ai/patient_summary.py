from __future__ import annotations

from .providers import Message

PATIENT_TAG = "@patient"


def eligible_for_patient_summary(tags: tuple[str, ...] | list[str]) -> bool:
    return PATIENT_TAG in tags


def build_patient_summary_messages(content: str, feedback: str | None) -> list[Message]:
    extra = f" Additional instructions: {feedback.strip()}" if feedback and feedback.strip() else ""
    prompt = (
        "Rewrite the following medical note for a patient. Make it concise, remove medical jargon, "
        f"and strip formatting.{extra}\n\nNote:\n{content}"
    )
    return [Message(role="system", content="You are a helpful assistant."), Message(role="user", content=prompt)]
