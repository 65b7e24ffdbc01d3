"""
datastore/schema.py — Engine State Schema

DDL for the tables the engine itself owns. They live in the *state*
database, separate from the application database the model can query, so
the SQL tools can never read key secrets or rewrite the audit trail.

Tables:
  - credentials        : provider keys with per-minute/per-day quotas and health
  - emotional_state    : one row per emotion per conversation scope
  - interaction_events : every signal the model fed into the affect engine
  - action_logs        : audit trail of mutating SQL and SQL failures
  - chat_messages      : inbound messages and delivered replies
"""

STATE_SCHEMA = """
CREATE TABLE IF NOT EXISTS credentials (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    label                 TEXT NOT NULL UNIQUE,
    secret                TEXT NOT NULL,
    is_active             INTEGER NOT NULL DEFAULT 1,
    requests_this_minute  INTEGER NOT NULL DEFAULT 0,
    requests_today        INTEGER NOT NULL DEFAULT 0,
    rpm_limit             INTEGER NOT NULL,
    rpd_limit             INTEGER NOT NULL,
    minute_window_start   REAL NOT NULL DEFAULT 0,
    day_window_start      REAL NOT NULL DEFAULT 0,
    failure_count         INTEGER NOT NULL DEFAULT 0,
    hard_failure_streak   INTEGER NOT NULL DEFAULT 0,
    is_blocked            INTEGER NOT NULL DEFAULT 0,
    blocked_until         REAL,
    last_used_at          REAL,
    last_failure_at       REAL,
    created_at            REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS emotional_state (
    scope         TEXT NOT NULL,
    emotion_name  TEXT NOT NULL,
    value         REAL NOT NULL CHECK (value >= 0.0 AND value <= 1.0),
    last_updated  REAL NOT NULL,
    PRIMARY KEY (scope, emotion_name)
);

CREATE TABLE IF NOT EXISTS interaction_events (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    scope            TEXT NOT NULL,
    actor            TEXT,
    context          TEXT,
    valence          REAL NOT NULL,
    intensity        REAL NOT NULL,
    target_emotions  TEXT NOT NULL,    -- JSON list
    applied          INTEGER NOT NULL,
    created_at       REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS action_logs (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    actor        TEXT,
    chat_id      TEXT,
    action_type  TEXT NOT NULL,
    statement    TEXT NOT NULL,
    params       TEXT NOT NULL,        -- JSON list
    result       TEXT,                 -- JSON: row_count, last_insert_id
    reason       TEXT,
    error        TEXT,
    created_at   REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS chat_messages (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_id       TEXT NOT NULL,
    sender        TEXT NOT NULL,       -- 'user' | 'bot'
    user_id       TEXT,
    message_text  TEXT NOT NULL,
    delay_ms      INTEGER,
    sticker       TEXT,
    intent        TEXT,
    created_at    REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_interaction_events_scope ON interaction_events(scope, created_at);
CREATE INDEX IF NOT EXISTS idx_action_logs_created ON action_logs(created_at);
CREATE INDEX IF NOT EXISTS idx_chat_messages_chat ON chat_messages(chat_id, created_at);
"""
