"""
Initialize the Postgres database `quizmind` and create the quiz history table.
- Reads connection settings from env: POSTGRES_HOST/PORT/USER/PASSWORD/DB
- Connects to maintenance DB `postgres` to create `quizmind` if missing
- Creates `quiz_history` and its (user_id, created_at) index; existing rows are kept

Run:
  python quizmind-db/init_postgres.py
"""
from __future__ import annotations
import os
import sys
import psycopg2
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT

PG_HOST = os.getenv("POSTGRES_HOST", "localhost")
PG_USER = os.getenv("POSTGRES_USER", "postgres")
PG_PASSWORD = os.getenv("POSTGRES_PASSWORD", "")
PG_DB_NAME = os.getenv("POSTGRES_DB", "quizmind")
PG_PORT = int(os.getenv("POSTGRES_PORT", "5432"))


def connect(dbname: str):
    return psycopg2.connect(
        host=PG_HOST,
        port=PG_PORT,
        user=PG_USER,
        password=PG_PASSWORD,
        database=dbname,
    )


def ensure_database_exists():
    conn = connect("postgres")
    conn.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
    cur = conn.cursor()
    try:
        cur.execute("SELECT 1 FROM pg_database WHERE datname=%s", (PG_DB_NAME,))
        if cur.fetchone() is None:
            print(f"Creating database '{PG_DB_NAME}' ...")
            cur.execute(f"CREATE DATABASE {PG_DB_NAME};")
        else:
            print(f"Database '{PG_DB_NAME}' already exists.")
    finally:
        cur.close()
        conn.close()


def create_tables():
    conn = connect(PG_DB_NAME)
    cur = conn.cursor()
    try:
        # QUIZ HISTORY (append-only, one row per finished quiz)
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS quiz_history (
                id SERIAL PRIMARY KEY,
                user_id TEXT NOT NULL,
                topic TEXT NOT NULL,
                difficulty TEXT NOT NULL,
                mode TEXT NOT NULL,
                score INTEGER NOT NULL,
                total_questions INTEGER NOT NULL,
                time_taken INTEGER NOT NULL DEFAULT 0,
                questions JSONB NOT NULL DEFAULT '[]'::jsonb,
                results JSONB NOT NULL DEFAULT '{}'::jsonb,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )
        cur.execute(
            """
            CREATE INDEX IF NOT EXISTS quiz_history_user_created
            ON quiz_history (user_id, created_at DESC);
            """
        )
        conn.commit()
        print("Postgres database initialized successfully. Tables: quiz_history")
    except Exception as e:
        conn.rollback()
        print("Initialization failed:", e)
        sys.exit(1)
    finally:
        cur.close()
        conn.close()


if __name__ == "__main__":
    ensure_database_exists()
    create_tables()
