#!/usr/bin/env python3
"""Verify the engine's Supabase tables, printing the SQL to create any that are missing."""
import sys
sys.path.insert(0, '.')

from app.core.config import get_settings
from app.db.supabase_client import get_supabase

SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS vector;

CREATE TABLE IF NOT EXISTS kv_items (
    key TEXT PRIMARY KEY,
    value JSONB NOT NULL,
    label1 TEXT,
    label2 TEXT,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
CREATE INDEX IF NOT EXISTS kv_items_label1_idx ON kv_items (label1 text_pattern_ops);
CREATE INDEX IF NOT EXISTS kv_items_label2_idx ON kv_items (label2 text_pattern_ops);

CREATE TABLE IF NOT EXISTS answer_embeddings (
    id TEXT PRIMARY KEY,
    question TEXT NOT NULL,
    embedding VECTOR({dim}) NOT NULL
);

CREATE OR REPLACE FUNCTION match_answer_embeddings(
    query_embedding VECTOR({dim}),
    match_count INT DEFAULT 3
)
RETURNS TABLE (id TEXT, question TEXT, similarity FLOAT)
LANGUAGE sql STABLE
AS $$
    SELECT e.id, e.question, 1 - (e.embedding <=> query_embedding) AS similarity
    FROM answer_embeddings e
    ORDER BY e.embedding <=> query_embedding
    LIMIT match_count;
$$;

CREATE TABLE IF NOT EXISTS llm_usage_log (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    workflow TEXT NOT NULL,
    chain TEXT,
    model TEXT NOT NULL,
    provider TEXT NOT NULL,
    tokens_input INT NOT NULL DEFAULT 0,
    tokens_output INT NOT NULL DEFAULT 0,
    estimated_cost_usd NUMERIC(12, 6) NOT NULL DEFAULT 0,
    duration_ms INT NOT NULL DEFAULT 0,
    job_id TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now()
);
"""

TABLES = ("kv_items", "answer_embeddings", "llm_usage_log")


def run_migration():
    supabase = get_supabase()
    schema_sql = SCHEMA_SQL.replace("{dim}", str(get_settings().EMBEDDING_DIM))

    try:
        print("🚀 Verifying RFI engine schema")

        for table in TABLES:
            print(f"🔍 Checking table {table}...")
            supabase.table(table).select('*').limit(1).execute()

        print("🔍 Checking match_answer_embeddings...")
        supabase.rpc(
            'match_answer_embeddings',
            {'query_embedding': [0.0] * get_settings().EMBEDDING_DIM, 'match_count': 1},
        ).execute()
        print("✅ Schema is in place!")

    except Exception as e:
        print(f"❌ Schema check failed: {e}")
        print("💡 Try running this SQL manually in your Supabase SQL editor:")
        print(schema_sql)
        sys.exit(1)

if __name__ == "__main__":
    if "--print-sql" in sys.argv:
        print(SCHEMA_SQL.replace("{dim}", str(get_settings().EMBEDDING_DIM)))
    else:
        run_migration()
