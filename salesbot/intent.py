# salesbot/intent.py
"""
Intent Classifier
-----------------
Rule-based yes/no detection for replies to scripted questions.
A reply matches a phrase when it equals it or starts with it followed by a space.
"""

from __future__ import annotations

from typing import Iterable

# -----------------------------
# Lexicons
# -----------------------------
YES = frozenset({
    "да", "ага", "ок", "хорошо", "конечно", "давай", "интересно",
    "yes", "yeah", "ok", "sure", "of course", "let's do it", "interesting",
})
NO = frozenset({
    "нет", "неа", "не", "не интересно",
    "no", "nah", "not interested",
})

YES_LABEL = "yes"
NO_LABEL = "no"
UNKNOWN_LABEL = "unknown"


# -----------------------------
# Utils
# -----------------------------
def _norm(text: str) -> str:
    return str(text or "").strip().lower()


def _matches(text: str, phrases: Iterable[str]) -> bool:
    return any(text == p or text.startswith(p + " ") for p in phrases)


# -----------------------------
# Main classifier
# -----------------------------
def classify_yes_no(body: str) -> str:
    """Return 'yes', 'no' or 'unknown' for a free-form reply."""
    text = _norm(body)
    if _matches(text, YES):
        return YES_LABEL
    if _matches(text, NO):
        return NO_LABEL
    return UNKNOWN_LABEL


__all__ = ["classify_yes_no", "YES", "NO", "YES_LABEL", "NO_LABEL", "UNKNOWN_LABEL"]
