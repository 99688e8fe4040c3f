"""Prompt assembly for the single-prompt generate endpoint.

The generate endpoint takes one flat prompt string, so prior turns are
rendered as ``"<RoleLabel>: <content>"`` lines and wrapped with the
instructions from ``ollachat.prompts``.
"""

from collections.abc import Sequence

from ..config import ASSISTANT_ECHO_PREFIX
from ..prompts import get_history_preamble, get_prompt_handoff
from .models import ChatMessage

ROLE_LABELS = {
    "user": "Human",
    "assistant": "Assistant",
    "system": "System",
}

HUMAN_LABEL = ROLE_LABELS["user"]


def format_history(messages: Sequence[ChatMessage]) -> str:
    """Render prior messages one per line with their role label."""
    lines = []
    for message in messages:
        label = ROLE_LABELS.get(message.role, message.role.capitalize())
        lines.append(f"{label}: {message.content}")
    return "\n".join(lines)


def build_prompt(prompt: str, prior_messages: Sequence[ChatMessage]) -> str:
    """Assemble the full prompt for one turn.

    Without history the prompt is just the human turn. With history:

        <preamble>

        Human: ...
        Assistant: ...

        <handoff>
        Human: <prompt>
    """
    human_turn = f"{HUMAN_LABEL}: {prompt}"
    if not prior_messages:
        return human_turn

    return (
        f"{get_history_preamble()}\n\n"
        f"{format_history(prior_messages)}\n\n"
        f"{get_prompt_handoff()}\n"
        f"{human_turn}"
    )


def strip_role_echo(fragment: str) -> str:
    """Trim the first fragment and drop a leading "Assistant:" echo.

    Matching is case-insensitive; only applied to the first fragment of a
    stream, later fragments are passed through verbatim.
    """
    cleaned = fragment.strip()
    if cleaned.lower().startswith(ASSISTANT_ECHO_PREFIX):
        cleaned = cleaned[len(ASSISTANT_ECHO_PREFIX):].strip()
    return cleaned
