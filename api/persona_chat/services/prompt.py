"""
Prompt assembly for the persona chat.

Builds the single system message (RAG or general-knowledge variant) and
appends the filtered conversation history and the current question.
"""

from dataclasses import dataclass

from persona_chat.models.chat import MAX_MESSAGE_CHARS, ChatMessage
from persona_chat.services.vector_index import ContextMatch

RAG_SYSTEM_TEMPLATE = """\
You are {name}, {description}.

## Rules
1. Answer using the context below, speaking in the first person as {name}.
2. If the context does not contain the answer, say "I don't know" rather than guessing.
3. Keep answers concise: two or three sentences unless asked for detail.
4. Focus on the most relevant information from the context.

## Context

{context}
"""

GENERAL_SYSTEM_TEMPLATE = """\
You are {name}, {description}.

No documents matched this question, so answer from your general knowledge, \
speaking in the first person as {name}. Keep answers concise. If the question \
is about personal details you cannot know, say "I don't know".
"""


@dataclass(frozen=True)
class PersonaConfig:
    """Identity the model speaks as."""

    name: str
    description: str


def _truncate(text: str, limit: int = MAX_MESSAGE_CHARS) -> str:
    return text[:limit]


class PromptAssembler:
    """Turns retrieved context and conversation history into chat messages."""

    def __init__(self, persona: PersonaConfig, history_window: int = 6) -> None:
        self._persona = persona
        self._history_window = history_window

    def build(
        self,
        matches: list[ContextMatch],
        history: list[ChatMessage],
        query: str,
    ) -> list[dict[str, str]]:
        """
        Assemble the message list for the completion call.

        Args:
            matches: Retrieved context, best first. Empty selects the
                general-knowledge system prompt.
            history: Prior conversation turns, oldest first. Only the RAG
                prompt is cut to the history window; the general-knowledge
                prompt carries the whole conversation.
            query: The current user question.

        Returns:
            ``[system, *history, user]`` as role/content dicts.
        """
        if matches:
            system = RAG_SYSTEM_TEMPLATE.format(
                name=self._persona.name,
                description=self._persona.description,
                context=self.format_context(matches),
            )
        else:
            system = GENERAL_SYSTEM_TEMPLATE.format(
                name=self._persona.name,
                description=self._persona.description,
            )

        messages = [{"role": "system", "content": _truncate(system)}]
        for msg in self._filter_history(history, windowed=bool(matches)):
            messages.append({"role": msg.role, "content": _truncate(msg.content)})
        messages.append({"role": "user", "content": _truncate(query.strip())})
        return messages

    @staticmethod
    def format_context(matches: list[ContextMatch]) -> str:
        """Group chunks under a heading per document type or source, numbered globally."""
        groups: dict[str, list[str]] = {}
        for i, match in enumerate(matches, start=1):
            heading = match.metadata.get("documentType") or match.source
            text = " ".join(match.text.split())
            groups.setdefault(heading, []).append(f"[{i}] {text}")

        sections = [
            f"### {heading}\n\n" + "\n\n".join(entries)
            for heading, entries in groups.items()
        ]
        return "\n\n".join(sections)

    def _filter_history(
        self, history: list[ChatMessage], windowed: bool = True
    ) -> list[ChatMessage]:
        kept = [m for m in history if m.role != "system" and m.content.strip()]
        if not windowed:
            return kept
        if self._history_window <= 0:
            return []
        return kept[-self._history_window :]
