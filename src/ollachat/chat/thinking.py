"""Splitting of assistant text into reasoning and answer.

Reasoning models wrap their intermediate reasoning in ``<think>...</think>``.
The split is a pure function of the message text so it can be recomputed on
every render, including while the message is still streaming.
"""

from typing import NamedTuple

from ..config import THINK_END, THINK_START


class ThinkingSplit(NamedTuple):
    reasoning: str
    answer: str
    has_thinking: bool  # a start sentinel was found
    is_complete: bool  # False while the end sentinel has not arrived yet


def extract_thinking(text: str, start: str = THINK_START, end: str = THINK_END) -> ThinkingSplit:
    """Split ``text`` at the first reasoning segment.

    - No start sentinel: no reasoning, the answer is ``text`` unchanged.
    - Start without end (mid-stream): everything after the start sentinel is
      reasoning so far, no answer yet.
    - Start and end: reasoning is the text between them and the answer the
      text after the end sentinel, both trimmed.

    Examples:
        >>> extract_thinking("<think>A</think>B")
        ThinkingSplit(reasoning='A', answer='B', has_thinking=True, is_complete=True)
        >>> extract_thinking("<think>partial").answer
        ''
    """
    start_index = text.find(start)
    if start_index == -1:
        return ThinkingSplit("", text, False, True)

    body_start = start_index + len(start)
    end_index = text.find(end, body_start)
    if end_index == -1:
        return ThinkingSplit(text[body_start:].strip(), "", True, False)

    return ThinkingSplit(
        text[body_start:end_index].strip(),
        text[end_index + len(end):].strip(),
        True,
        True,
    )
