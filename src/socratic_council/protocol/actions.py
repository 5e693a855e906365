"""
Inline action markers.

Participants quote and react to earlier messages with ``@quote(MSG_ID)`` and
``@react(MSG_ID, REACTION)`` markers inside their content. Quote markers stay
in the text (their position matters for rendering); reaction markers are
stripped.
"""

import re
from typing import List, NamedTuple, Tuple

QUOTE_PATTERN = re.compile(r"@quote\(([^)]+)\)")
REACT_PATTERN = re.compile(r"@react\(([^,]+),\s*([^)]+)\)")

REACTION_CATALOG = ("thumbs_up", "heart", "laugh", "sparkle")


class ExtractedReaction(NamedTuple):
    target_id: str
    reaction: str


def normalize_text(raw: str) -> str:
    text = raw.replace("\r\n", "\n")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_actions(raw: str) -> Tuple[str, List[str], List[ExtractedReaction]]:
    """
    Pull quote targets and reactions out of message content.

    Args:
        raw: Content as produced by the participant

    Returns:
        Tuple of (cleaned content, quoted message ids, reactions)
    """
    quote_targets: List[str] = []
    reactions: List[ExtractedReaction] = []

    def _quote(match: "re.Match[str]") -> str:
        target_id = match.group(1).strip()
        if target_id not in quote_targets:
            quote_targets.append(target_id)
        return f"@quote({target_id})"

    def _react(match: "re.Match[str]") -> str:
        reaction = match.group(2).strip()
        if reaction in REACTION_CATALOG:
            reactions.append(ExtractedReaction(match.group(1).strip(), reaction))
        return ""

    cleaned = QUOTE_PATTERN.sub(_quote, raw)
    cleaned = REACT_PATTERN.sub(_react, cleaned)
    return normalize_text(cleaned), quote_targets, reactions
