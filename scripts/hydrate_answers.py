"""Seed the answer store and vector index from historical Q&A CSVs.

Each CSV needs ``Question`` and ``Answer`` columns; rows where either is
empty are skipped. Questions are embedded and upserted into the index keyed
by question hash, and the pairs are stored as seed answers (no owning
questionnaire, no events). Re-running updates existing seed rows in place.

Usage:
    uv run python scripts/hydrate_answers.py <csv> [<csv> ...] [--dry-run]

Examples:
    uv run python scripts/hydrate_answers.py csvs/rfi-questions.csv csvs/security-questions.csv
"""

from __future__ import annotations

import argparse
import asyncio
import csv
import sys
from pathlib import Path

# Ensure app is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


def read_question_csvs(paths: list[str]) -> dict[str, str]:
    """Question -> answer pairs from every CSV, later files winning on duplicates."""
    from app.core.questions import normalize_question

    pairs: dict[str, str] = {}
    for path in paths:
        with open(path, newline="", encoding="utf-8-sig") as f:
            for row in csv.DictReader(f):
                question = normalize_question(row.get("Question") or "")
                answer = (row.get("Answer") or "").strip()
                if question and answer:
                    pairs[question] = answer
    return pairs


async def hydrate(paths: list[str], dry_run: bool) -> None:
    from app.core.embeddings import embed_texts_batched
    from app.core.events import EventBus
    from app.core.questions import hash_question
    from app.db.answer_index import AnswerVectorIndex
    from app.db.answers import AnswerRepository
    from app.db.kv_store import KeyValueStore

    pairs = read_question_csvs(paths)
    print(f"Read {len(pairs)} question/answer pairs from {len(paths)} files")
    if dry_run or not pairs:
        print("Nothing written")
        return

    questions = list(pairs)
    print("Embedding questions...")
    embeddings = await embed_texts_batched(questions)

    datapoints = [
        {"id": hash_question(question), "question": question, "embedding": embedding}
        for question, embedding in zip(questions, embeddings)
    ]
    written = await AnswerVectorIndex().upsert_datapoints(datapoints)
    print(f"  Upserted {written} index datapoints")

    repo = AnswerRepository(KeyValueStore(), EventBus())
    saved = await repo.batch_create(pairs, emit_events=False)
    print(f"  Saved {len(saved)} seed answers")
    print("Answers hydrated")


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed answers from Q&A CSVs")
    parser.add_argument("csvs", nargs="+", help="CSV files with Question and Answer columns")
    parser.add_argument("--dry-run", action="store_true", help="Only parse and count the rows")
    args = parser.parse_args()
    asyncio.run(hydrate(args.csvs, args.dry_run))


if __name__ == "__main__":
    main()
