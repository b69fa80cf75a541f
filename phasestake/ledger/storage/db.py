import sqlite3
import threading
import json
from typing import Any, Dict, List, Optional

class StorageDB:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.cursor = self.conn.cursor()
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._lock:
            # State table: Key-Value store for ledger state
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            ''')
            # Journal: one row per committed ledger operation
            self.cursor.execute('''
                CREATE TABLE IF NOT EXISTS journal (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    height INTEGER,
                    op TEXT,
                    participant TEXT,
                    data TEXT
                )
            ''')
            self.cursor.execute('CREATE INDEX IF NOT EXISTS journal_participant ON journal (participant)')
            self.conn.commit()

    # --- State Methods ---
    def get_state(self, key: str) -> Optional[str]:
        with self._lock:
            self.cursor.execute('SELECT value FROM state WHERE key = ?', (key,))
            row = self.cursor.fetchone()
            return row[0] if row else None

    def set_state(self, key: str, value: str):
        with self._lock:
            self.cursor.execute('INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)', (key, value))
            self.conn.commit()

    def get_state_by_prefix(self, prefix: str) -> Dict[str, str]:
        with self._lock:
            self.cursor.execute('SELECT key, value FROM state WHERE key LIKE ? ORDER BY key', (f"{prefix}%",))
            return {row[0]: row[1] for row in self.cursor.fetchall()}

    def commit_batch(self, items: Dict[str, str], journal_entry: Optional[Dict[str, Any]] = None):
        """
        Writes all items (and optionally one journal row) in a single transaction.
        Either everything lands or nothing does.
        """
        with self._lock:
            try:
                self.cursor.executemany(
                    'INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)',
                    list(items.items())
                )
                if journal_entry is not None:
                    self.cursor.execute(
                        'INSERT INTO journal (height, op, participant, data) VALUES (?, ?, ?, ?)',
                        (
                            journal_entry["height"],
                            journal_entry["op"],
                            journal_entry.get("participant"),
                            json.dumps(journal_entry.get("data", {})),
                        )
                    )
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise

    def replace_state(self, items: Dict[str, str], prefixes: List[str]):
        """Deletes every key under `prefixes` and writes `items`, atomically (snapshot restore)."""
        with self._lock:
            try:
                for prefix in prefixes:
                    self.cursor.execute('DELETE FROM state WHERE key LIKE ?', (f"{prefix}%",))
                self.cursor.executemany(
                    'INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)',
                    list(items.items())
                )
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise

    # --- Journal Methods ---
    def get_journal(self, limit: int = 100, participant: Optional[str] = None) -> List[Dict[str, Any]]:
        """Returns the most recent journal rows, newest first."""
        with self._lock:
            if participant:
                self.cursor.execute(
                    'SELECT seq, height, op, participant, data FROM journal WHERE participant = ? ORDER BY seq DESC LIMIT ?',
                    (participant, limit)
                )
            else:
                self.cursor.execute(
                    'SELECT seq, height, op, participant, data FROM journal ORDER BY seq DESC LIMIT ?',
                    (limit,)
                )
            rows = self.cursor.fetchall()

        return [
            {
                "seq": row[0],
                "height": row[1],
                "op": row[2],
                "participant": row[3],
                "data": json.loads(row[4]) if row[4] else {},
            }
            for row in rows
        ]

    def close(self):
        with self._lock:
            self.conn.close()
