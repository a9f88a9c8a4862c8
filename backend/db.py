"""sqlite3 storage for saved scripts and the run history."""

import json
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

# PYPLAY_DB_PATH points tests and deployments at their own database file
DB_PATH = Path(
    os.environ.get('PYPLAY_DB_PATH') or Path(__file__).parent / 'pyplay.db'
)

_RUN_COLUMNS = (
    'run_id, script_id, output, output_lines, iterations, calls, '
    'duration_ms, created_at'
)


def get_conn():
    """Open a connection whose rows behave like dicts."""
    conn = sqlite3.connect(str(DB_PATH))
    conn.row_factory = sqlite3.Row
    return conn


@contextmanager
def _cursor() -> Iterator[sqlite3.Cursor]:
    # one short-lived connection per operation, committed on success
    conn = get_conn()
    try:
        yield conn.cursor()
        conn.commit()
    finally:
        conn.close()


def init_db():
    """Create the database file and its tables if they are missing.

    Idempotent; the API calls it on startup and tests call it on fresh
    temporary files.
    """
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    with _cursor() as cur:
        cur.execute('''
        CREATE TABLE IF NOT EXISTS Scripts (
          script_id INTEGER PRIMARY KEY,
          title TEXT NOT NULL,
          code_text TEXT NOT NULL,
          created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        ''')
        cur.execute('''
        CREATE TABLE IF NOT EXISTS Runs (
          run_id INTEGER PRIMARY KEY,
          script_id INTEGER NULL,
          output TEXT,
          output_lines INTEGER,
          iterations INTEGER,
          calls INTEGER,
          duration_ms INTEGER,
          created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
        ''')


def save_script(title: str, code_text: str) -> int:
    """Store a program and return its new script_id."""
    with _cursor() as cur:
        cur.execute(
            'INSERT INTO Scripts (title, code_text) VALUES (?, ?)',
            (title, code_text),
        )
        return cur.lastrowid


def list_scripts() -> List[Dict[str, Any]]:
    """Saved scripts without their source, newest first."""
    with _cursor() as cur:
        cur.execute(
            'SELECT script_id, title, created_at FROM Scripts '
            'ORDER BY created_at DESC, script_id DESC'
        )
        return [dict(r) for r in cur.fetchall()]


def get_script(script_id: int) -> Optional[Dict[str, Any]]:
    with _cursor() as cur:
        cur.execute(
            'SELECT script_id, title, code_text, created_at FROM Scripts '
            'WHERE script_id = ?',
            (script_id,),
        )
        row = cur.fetchone()
    return dict(row) if row else None


def save_run(
    script_id: Optional[int],
    output: Optional[List[str]],
    iterations: Optional[int],
    calls: Optional[int],
    duration_ms: Optional[int],
) -> int:
    """Record one finished run and return its run_id.

    The output lines are stored as a JSON array. The API treats a failure
    here as a warning, never as a failed run.
    """
    lines = list(output or [])
    with _cursor() as cur:
        cur.execute(
            'INSERT INTO Runs (script_id, output, output_lines, iterations, '
            'calls, duration_ms) VALUES (?, ?, ?, ?, ?, ?)',
            (script_id, json.dumps(lines), len(lines), iterations, calls, duration_ms),
        )
        return cur.lastrowid


def _decode_run(row: sqlite3.Row) -> Dict[str, Any]:
    run = dict(row)
    try:
        run['output'] = json.loads(run.get('output') or '[]')
    except ValueError:
        # a damaged row still lists, with no output
        run['output'] = []
    return run


def list_runs(script_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """Run history, newest first, optionally for a single script."""
    query = 'SELECT ' + _RUN_COLUMNS + ' FROM Runs'
    params: tuple = ()
    if script_id:
        query += ' WHERE script_id = ?'
        params = (script_id,)
    query += ' ORDER BY created_at DESC, run_id DESC'
    with _cursor() as cur:
        cur.execute(query, params)
        rows = cur.fetchall()
    return [_decode_run(r) for r in rows]
