"""Cleanup of extracted document text before it is embedded in a prompt"""
import re
from typing import Optional

MAX_PROMPT_CHARS = 30000
TRUNCATION_MARKER = "\n\n...[TRUNCATED]"

# Anything outside tab, newline, printable ASCII and Latin-1 becomes a space
_NON_PRINTABLE = re.compile(r"[^\t\n\x20-\x7E\xA0-\xFF]")
_BLANK_RUN = re.compile(r"\n{3,}")


def normalize_text(raw: Optional[str], max_chars: int = MAX_PROMPT_CHARS) -> str:
    """Normalize text for LLM prompts.

    - unify line endings
    - replace control and non-Latin-1 characters with spaces
    - strip trailing whitespace on every line
    - collapse runs of blank lines to a single blank line
    - truncate to ``max_chars`` with a visible marker
    """
    if not raw:
        return ""

    text = str(raw).replace("\r\n", "\n").replace("\r", "\n")
    text = _NON_PRINTABLE.sub(" ", text)
    text = "\n".join(line.rstrip() for line in text.split("\n"))
    text = _BLANK_RUN.sub("\n\n", text)
    text = text.strip("\n")

    if len(text) > max_chars:
        text = text[:max_chars] + TRUNCATION_MARKER
    return text
