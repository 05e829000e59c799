"""Shared fixtures: a throwaway SQLite log store."""

import sqlite3

import pytest

SCHEMA = """
CREATE TABLE orders (
    id TEXT PRIMARY KEY,
    vtiger_id TEXT,
    article_code TEXT,
    current_stage TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT,
    is_rush INTEGER NOT NULL DEFAULT 0,
    is_external INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE production_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id TEXT NOT NULL,
    created_at TEXT NOT NULL,
    previous_stage TEXT,
    new_stage TEXT,
    staff_name TEXT,
    action TEXT,
    redo_reason TEXT,
    duration_seconds INTEGER
);
"""


@pytest.fixture
def db_path(tmp_path):
    """Empty log store with the orders/production_logs schema."""
    path = tmp_path / "workshop.db"
    conn = sqlite3.connect(str(path))
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()
    return path


@pytest.fixture
def seeded_db(db_path):
    """
    Log store with one job in progress and two completed jobs.

    - WIP-1: Goldsmithing done after 1h, still in Setting
    - DONE-1: Goldsmithing 1h, Setting 30m, corrupt Polishing row, completed
    - DONE-2: Goldsmithing 2h with a QC rejection redo, completed
    """
    conn = sqlite3.connect(str(db_path))
    conn.executemany(
        """
        INSERT INTO orders (id, vtiger_id, article_code, current_stage,
                            created_at, updated_at, is_rush, is_external)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            ("WIP-1", "SO-100", "RING-01", "Setting",
             "2025-11-09T10:00:00Z", "2025-11-09T11:00:00Z", 0, 0),
            ("DONE-1", "SO-101", "PEND-02", "Completed",
             "2025-11-09T10:00:00Z", "2025-11-09T14:00:00Z", 1, 0),
            ("DONE-2", "SO-102", "BRAC-03", "Completed",
             "2025-11-08T09:00:00Z", "2025-11-08T15:00:00Z", 0, 1),
        ],
    )
    conn.executemany(
        """
        INSERT INTO production_logs (order_id, created_at, previous_stage, new_stage,
                                     staff_name, action, redo_reason, duration_seconds)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            ("WIP-1", "2025-11-09T10:00:00Z", None, "Goldsmithing",
             "Goldsmith 1", "STARTED", None, 0),
            ("WIP-1", "2025-11-09T11:00:00Z", "Goldsmithing", "Setting",
             "Goldsmith 1", "COMPLETED", None, 3600),
            ("DONE-1", "2025-11-09T11:00:00Z", "Goldsmithing", "Setting",
             "Goldsmith 2", "COMPLETED", None, 3600),
            ("DONE-1", "2025-11-09T12:00:00Z", "Setting", "Polishing",
             "Setter 1", "COMPLETED", None, 1800),
            ("DONE-1", "2025-11-09T13:00:00Z", "Polishing", "Completed",
             "Setter 2", "COMPLETED", None, 200000000),
            ("DONE-1", "not-a-timestamp", "Polishing", "Completed",
             "Setter 2", "COMPLETED", None, 60),
            ("DONE-2", "2025-11-08T11:00:00Z", "Goldsmithing", "QC",
             "Goldsmith 1", "COMPLETED", None, 3600),
            ("DONE-2", "2025-11-08T12:00:00Z", "QC", "Goldsmithing",
             "QC Manager", "REJECTED", "Loose Stone", 600),
            ("DONE-2", "2025-11-08T14:00:00Z", "Goldsmithing", "Completed",
             "Goldsmith 1", "COMPLETED", None, 3600),
        ],
    )
    conn.commit()
    conn.close()
    return db_path
