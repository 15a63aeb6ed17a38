"""
Defines the DuckDB schema for recallkit as a SQL string constant.

Timestamps are stored as naive UTC TIMESTAMP values; db_utils converts them
to and from timezone-aware datetimes. review_states rows are removed together
with their card by the storage layer, inside the same transaction.
"""

DB_SCHEMA_SQL = """
    CREATE SEQUENCE IF NOT EXISTS card_seq;
    CREATE SEQUENCE IF NOT EXISTS review_state_seq;
    CREATE SEQUENCE IF NOT EXISTS session_seq;

    CREATE TABLE IF NOT EXISTS cards (
        card_id INTEGER PRIMARY KEY DEFAULT nextval('card_seq'),
        question VARCHAR NOT NULL,
        answer VARCHAR NOT NULL,
        source_file VARCHAR NOT NULL DEFAULT '',
        source_line INTEGER NOT NULL DEFAULT 0,
        source_context VARCHAR NOT NULL DEFAULT '',
        prompt_kind VARCHAR NOT NULL DEFAULT 'factual',
        tags VARCHAR[],
        created_at TIMESTAMP NOT NULL,
        updated_at TIMESTAMP NOT NULL,
        UNIQUE (question, answer)
    );

    CREATE TABLE IF NOT EXISTS review_states (
        state_id INTEGER PRIMARY KEY DEFAULT nextval('review_state_seq'),
        card_id INTEGER NOT NULL UNIQUE,
        card_key VARCHAR NOT NULL,
        scheduler_state VARCHAR NOT NULL,
        last_review TIMESTAMP,
        review_count INTEGER NOT NULL DEFAULT 0,
        due TIMESTAMP NOT NULL
    );

    CREATE TABLE IF NOT EXISTS sessions (
        session_id INTEGER PRIMARY KEY DEFAULT nextval('session_seq'),
        start_time TIMESTAMP NOT NULL,
        end_time TIMESTAMP,
        cards_reviewed INTEGER NOT NULL DEFAULT 0,
        new_cards INTEGER NOT NULL DEFAULT 0,
        reviewed_cards INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS daily_stats (
        date DATE PRIMARY KEY,
        cards_reviewed INTEGER NOT NULL DEFAULT 0,
        session_minutes INTEGER NOT NULL DEFAULT 0,
        session_count INTEGER NOT NULL DEFAULT 0,
        new_cards INTEGER NOT NULL DEFAULT 0,
        reviewed_cards INTEGER NOT NULL DEFAULT 0
    );

    CREATE TABLE IF NOT EXISTS learning_streak (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        current_streak INTEGER NOT NULL DEFAULT 0,
        longest_streak INTEGER NOT NULL DEFAULT 0,
        last_study_date VARCHAR
    );

    CREATE INDEX IF NOT EXISTS idx_cards_source ON cards (source_file, source_line);
    CREATE INDEX IF NOT EXISTS idx_review_states_due ON review_states (due);
    CREATE INDEX IF NOT EXISTS idx_sessions_start_time ON sessions (start_time);
"""
