"""Delete a questionnaire and the answers it owns.

Usage:
    uv run python scripts/clear_questionnaire.py <questionnaire_id> [--force] [--keep-answers]
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure app is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))


async def clear(questionnaire_id: str, force: bool, keep_answers: bool) -> None:
    from app.core.errors import EngineError
    from app.services.engine import build_engine

    engine = build_engine()
    try:
        removed = await engine.questionnaires.delete(
            questionnaire_id, remove_answers=not keep_answers, force=force
        )
    except EngineError as e:
        print(f"ERROR: {e}")
        sys.exit(1)

    print(f"Deleted questionnaire {questionnaire_id} ({removed} answers removed)")


def main() -> None:
    parser = argparse.ArgumentParser(description="Delete a questionnaire")
    parser.add_argument("questionnaire_id")
    parser.add_argument("--force", action="store_true", help="Delete even while processing")
    parser.add_argument("--keep-answers", action="store_true", help="Leave owned answers in place")
    args = parser.parse_args()
    asyncio.run(clear(args.questionnaire_id, args.force, args.keep_answers))


if __name__ == "__main__":
    main()
