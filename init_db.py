import logging
import sqlite3
import sys
from datetime import datetime

import pytz

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

DEFAULT_CATEGORIES = [
    ("Work Stress", "Deadlines, workload and pressure at work", "💼"),
    ("Relationships", "Family, friends and partners", "💞"),
    ("Self-Esteem", "Confidence and self-worth", "🌱"),
    ("Anxiety", "Worry, nervousness and overthinking", "🌊"),
    ("Health & Wellness", "Physical health, sleep and energy", "🧘"),
    ("Finances", "Money worries and financial goals", "💰"),
    ("Personal Growth", "Habits, goals and learning", "🚀"),
]

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    password TEXT NOT NULL,
    full_name TEXT,
    avatar_url TEXT,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

CREATE TABLE IF NOT EXISTS problem_categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    description TEXT,
    icon TEXT
);

CREATE TABLE IF NOT EXISTS problems (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    category_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    severity INTEGER NOT NULL DEFAULT 5 CHECK (severity BETWEEN 1 AND 10),
    is_public INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (category_id) REFERENCES problem_categories(id)
);

CREATE TABLE IF NOT EXISTS affirmations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    problem_id INTEGER NOT NULL,
    content TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('positive', 'solution', 'motivational')),
    is_favorite INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMP NOT NULL,
    FOREIGN KEY (problem_id) REFERENCES problems(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    problem_id INTEGER NOT NULL,
    affirmations_practiced TEXT NOT NULL DEFAULT '[]',
    duration_minutes INTEGER NOT NULL DEFAULT 0,
    mood_before INTEGER,
    mood_after INTEGER,
    notes TEXT,
    completed_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL,
    FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY (problem_id) REFERENCES problems(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_problems_user ON problems(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_affirmations_problem ON affirmations(problem_id);
CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id, completed_at);
"""


def current_timestamp(now=None):
    """UTC timestamp string in the format every table stores."""
    now = now or datetime.now(pytz.utc)
    return now.astimezone(pytz.utc).strftime(TIMESTAMP_FORMAT)


def connect(path):
    conn = sqlite3.connect(path, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def init_db(path):
    conn = connect(path)
    try:
        conn.executescript(SCHEMA)
        # seed once; an existing category table is left alone
        (count,) = conn.execute("SELECT COUNT(*) FROM problem_categories").fetchone()
        if count == 0:
            conn.executemany(
                "INSERT INTO problem_categories (name, description, icon) VALUES (?, ?, ?)",
                DEFAULT_CATEGORIES,
            )
            logger.info("Seeded %d problem categories", len(DEFAULT_CATEGORIES))
        conn.commit()
    finally:
        conn.close()


if __name__ == "__main__":
    from config import DEFAULT_DATABASE, configure_logging

    configure_logging()
    db_path = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_DATABASE
    init_db(db_path)
    print(f"Database and tables created successfully in {db_path}.")
