"""Conversation export and citation formatting."""

import json

from kbclient.models.schemas import KnowledgeSeed, Message, Role, Session

UNKNOWN_SOURCE = "Unknown source"
_EXCERPT_CHARS = 100


def conversation(session: Session) -> list[Message]:
    """Messages of a session plus its current answer, without empty entries."""
    messages = [*session.messages, Message(role=Role.ASSISTANT, content=session.response)]
    return [m for m in messages if m.content.strip()]


def export_text(session: Session) -> str:
    return "\n".join(f"{m.role.value.upper()}:\n{m.content}\n" for m in conversation(session))


def export_json(session: Session) -> str:
    return json.dumps(
        [{"role": m.role.value, "content": m.content} for m in conversation(session)],
        ensure_ascii=False,
        indent=2,
    )


def format_citation(seed: KnowledgeSeed, index: int) -> str:
    """One-line citation, numbered from 1.

    Args:
        seed: The cited passage.
        index: Zero-based position of the seed in the citation list.
    """
    excerpt = seed.content[:_EXCERPT_CHARS]
    if len(seed.content) > _EXCERPT_CHARS:
        excerpt += "..."
    return f'[{index + 1}] {seed.source_title or UNKNOWN_SOURCE}. "{excerpt}"'
