"""Question text normalization and hashing.

Raw question text is normalized once, where it enters the system: extraction
results, imported CSV rows and similarity queries. From then on the stored
text is canonical; rows, batch events, prompts and generator keys all carry
it unchanged, so ``hash_question`` only trims whitespace before hashing.
"""

import hashlib

LEADING_PUNCTUATION = "?!."
HASH_LENGTH = 12


def normalize_question(text: str) -> str:
    """Trim whitespace and strip a single leading ``?``, ``!`` or ``.``.

    Not idempotent for text with several leading punctuation characters, so
    apply it to raw input only.
    """
    cleaned = (text or "").strip()
    if cleaned and cleaned[0] in LEADING_PUNCTUATION:
        cleaned = cleaned[1:].strip()
    return cleaned


def canonical_question(text: str) -> str:
    """Whitespace-trimmed form of already-normalized question text."""
    return (text or "").strip()


def hash_question(text: str) -> str:
    """Deterministic content hash of canonical question text."""
    return hashlib.sha256(canonical_question(text).encode("utf-8")).hexdigest()[:HASH_LENGTH]


def dedupe_questions(questions: list[str]) -> list[str]:
    """Drop blanks and repeats, keeping first-seen order."""
    seen: set[str] = set()
    unique = []
    for raw in questions:
        question = canonical_question(raw)
        if question and question not in seen:
            seen.add(question)
            unique.append(question)
    return unique


def split_batches(items: list[str], size: int) -> list[list[str]]:
    """Split items into consecutive chunks of at most ``size``, preserving order."""
    if size < 1:
        raise ValueError("batch size must be >= 1")
    return [items[i : i + size] for i in range(0, len(items), size)]
