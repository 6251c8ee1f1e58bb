"""Convert a Question/Answer CSV into a tuning-set JSONL record.

The output holds a single JSON object: a ``systemInstruction`` plus
alternating user (question) / model (answer) turns.

Usage:
    uv run python scripts/convert_csv_to_jsonl.py training.csv training.jsonl
"""

import argparse
import csv
import json

SYSTEM_INSTRUCTION = (
    "You are an assistant aiding in the answering of incoming questionnaires for the company "
    "{company}. Answer as concisely as possible, using 'Yes' or 'No' when applicable."
)


def build_tuning_record(rows: list[dict[str, str]], company: str) -> dict:
    contents = []
    for row in rows:
        question = (row.get("Question") or "").strip()
        answer = (row.get("Answer") or "").strip()
        if not question or not answer:
            continue
        contents.append({"role": "user", "parts": [{"text": question}]})
        contents.append({"role": "model", "parts": [{"text": answer}]})

    return {
        "systemInstruction": {
            "role": "model",
            "parts": [{"text": SYSTEM_INSTRUCTION.format(company=company)}],
        },
        "contents": contents,
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Convert a Q&A CSV to tuning JSONL")
    parser.add_argument("source", help="CSV with Question and Answer columns")
    parser.add_argument("target", help="Output .jsonl path")
    parser.add_argument("--company", default="Scope3")
    args = parser.parse_args()

    with open(args.source, newline="", encoding="utf-8-sig") as f:
        rows = list(csv.DictReader(f))

    record = build_tuning_record(rows, args.company)
    if not record["contents"]:
        print("No question/answer rows found, nothing written")
        return

    with open(args.target, "w", encoding="utf-8") as f:
        f.write(json.dumps(record))
    print(f"Wrote {len(record['contents']) // 2} examples to {args.target}")


if __name__ == "__main__":
    main()
