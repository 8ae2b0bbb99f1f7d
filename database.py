import logging
import sqlite3
import threading
from typing import Iterable

from models import EventStatus, RegistrationOutcome

logger = logging.getLogger(__name__)

EVENT_COLUMNS = (
    "title", "description", "category", "price", "location", "status",
    "capacity", "start_date", "end_date",
)


def _casefold(value):
    return value.casefold() if isinstance(value, str) else value


class Database:
    def __init__(self, db_name="events.db"):
        """
        Open the SQLite database and make sure the schema exists.
        A single connection is shared between request threads; every
        operation holds the handle's lock for its whole read/write.
        """
        self.db_name = db_name
        self._lock = threading.RLock()
        self.conn = sqlite3.connect(db_name, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        # SQLite's lower() only folds ASCII
        self.conn.create_function("casefold", 1, _casefold, deterministic=True)
        self.conn.execute("PRAGMA foreign_keys = ON")
        self.create_tables()
        logger.info(f"Database opened at {db_name}")

    def create_tables(self):
        """Create database tables with appropriate indexes."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    password TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'participant' CHECK(role IN ('participant', 'admin')),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL,
                    category TEXT NOT NULL CHECK(category IN ('conference', 'workshop', 'seminar', 'other')),
                    price REAL NOT NULL,
                    location TEXT,
                    owner_id TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'draft'
                        CHECK(status IN ('draft', 'published', 'completed', 'cancelled')),
                    capacity INTEGER NOT NULL DEFAULT 100 CHECK(capacity > 0),
                    start_date TEXT NOT NULL,
                    end_date TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (owner_id) REFERENCES users(id),
                    CHECK(end_date >= start_date)
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS event_participants (
                    event_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    joined_at TEXT NOT NULL,
                    FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE CASCADE,
                    FOREIGN KEY (user_id) REFERENCES users(id),
                    PRIMARY KEY (event_id, user_id)
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_events_owner ON events(owner_id)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_participants_user ON event_participants(user_id)')
            self.conn.commit()

    # -------------------------------
    # Users
    # -------------------------------
    def add_user(self, user):
        """Add a user to the database. Returns False if the email is taken."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute('''
                INSERT OR IGNORE INTO users (id, first_name, last_name, email, password, role, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ''', (user.id, user.first_name, user.last_name, user.email, user.password, user.role,
                  user.created_at.isoformat(), user.updated_at.isoformat()))
            self.conn.commit()
            return cursor.rowcount > 0

    def get_user(self, user_id):
        """Retrieve a user by ID."""
        with self._lock:
            row = self.conn.execute('SELECT * FROM users WHERE id = ?', (user_id,)).fetchone()
            return dict(row) if row else None

    def get_user_by_email(self, email):
        """Retrieve a user by email."""
        with self._lock:
            row = self.conn.execute('SELECT * FROM users WHERE email = ?', (email,)).fetchone()
            return dict(row) if row else None

    def get_users(self, user_ids: Iterable[str]):
        """Retrieve several users at once, keyed by ID."""
        user_ids = list(user_ids)
        if not user_ids:
            return {}
        placeholders = ", ".join("?" for _ in user_ids)
        with self._lock:
            rows = self.conn.execute(f'SELECT * FROM users WHERE id IN ({placeholders})', user_ids).fetchall()
            return {row["id"]: dict(row) for row in rows}

    def update_user(self, user_id, updated_at, first_name=None, last_name=None):
        """Update a user's name fields; absent values are left alone."""
        updates = {}
        if first_name: updates["first_name"] = first_name
        if last_name: updates["last_name"] = last_name
        if not updates:
            return False
        updates["updated_at"] = updated_at
        set_clause = ", ".join(f"{k} = ?" for k in updates.keys())
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(f'UPDATE users SET {set_clause} WHERE id = ?', list(updates.values()) + [user_id])
            self.conn.commit()
            return cursor.rowcount > 0

    # -------------------------------
    # Events
    # -------------------------------
    def add_event(self, event):
        """Add an event to the database."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute('''
                INSERT INTO events (id, title, description, category, price, location, owner_id, status,
                                    capacity, start_date, end_date, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', (event.id, event.title, event.description, event.category, event.price, event.location,
                  event.owner_id, event.status, event.capacity, event.start_date.isoformat(),
                  event.end_date.isoformat(), event.created_at.isoformat(), event.updated_at.isoformat()))
            self.conn.commit()
            return cursor.rowcount > 0

    def get_event(self, event_id):
        """Retrieve an event by ID, with its roster in registration order."""
        with self._lock:
            row = self.conn.execute('SELECT * FROM events WHERE id = ?', (event_id,)).fetchone()
            if not row:
                return None
            return self._with_participants([dict(row)])[0]

    def _with_participants(self, events):
        if not events:
            return events
        ids = [e["id"] for e in events]
        placeholders = ", ".join("?" for _ in ids)
        rows = self.conn.execute(f'''
            SELECT event_id, user_id, joined_at FROM event_participants
            WHERE event_id IN ({placeholders}) ORDER BY rowid
        ''', ids).fetchall()
        by_event = {event_id: [] for event_id in ids}
        for r in rows:
            by_event[r["event_id"]].append({"user_id": r["user_id"], "joined_at": r["joined_at"]})
        for e in events:
            e["participants"] = by_event[e["id"]]
        return events

    def list_events(self, category=None, status=None, search=None, offset=0, limit=10):
        """Retrieve a page of events, newest first, plus the total number of matches."""
        clauses, params = [], []
        if category:
            clauses.append("category = ?")
            params.append(category)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if search:
            clauses.append("(instr(casefold(title), ?) > 0 OR instr(casefold(description), ?) > 0)")
            params.extend([search.casefold(), search.casefold()])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._lock:
            total = self.conn.execute(f'SELECT COUNT(*) FROM events {where}', params).fetchone()[0]
            rows = self.conn.execute(f'''
                SELECT * FROM events {where}
                ORDER BY created_at DESC, rowid DESC LIMIT ? OFFSET ?
            ''', params + [limit, offset]).fetchall()
            return self._with_participants([dict(r) for r in rows]), total

    def list_events_by_owner(self, owner_id):
        """Retrieve all events created by a user, newest first."""
        with self._lock:
            rows = self.conn.execute('''
                SELECT * FROM events WHERE owner_id = ? ORDER BY created_at DESC, rowid DESC
            ''', (owner_id,)).fetchall()
            return self._with_participants([dict(r) for r in rows])

    def list_events_by_participant(self, user_id):
        """Retrieve all events a user is registered for, soonest first."""
        with self._lock:
            rows = self.conn.execute('''
                SELECT e.* FROM events e
                JOIN event_participants ep ON e.id = ep.event_id
                WHERE ep.user_id = ? ORDER BY e.start_date ASC
            ''', (user_id,)).fetchall()
            return self._with_participants([dict(r) for r in rows])

    def update_event(self, event_id, fields: dict, updated_at):
        """Update an event's details.

        A capacity change only applies if the current roster still fits in it.
        Returns True if the row was updated.
        """
        updates = {k: v for k, v in fields.items() if k in EVENT_COLUMNS}
        if not updates:
            return False
        updates["updated_at"] = updated_at
        set_clause = ", ".join(f"{k} = ?" for k in updates.keys())
        sql = f'UPDATE events SET {set_clause} WHERE id = ?'
        params = list(updates.values()) + [event_id]
        if "capacity" in updates:
            sql += ' AND (SELECT COUNT(*) FROM event_participants WHERE event_id = ?) <= ?'
            params += [event_id, updates["capacity"]]
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute(sql, params)
            self.conn.commit()
            return cursor.rowcount > 0

    def delete_event(self, event_id):
        """Delete an event and its roster."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute('DELETE FROM event_participants WHERE event_id = ?', (event_id,))
            cursor.execute('DELETE FROM events WHERE id = ?', (event_id,))
            self.conn.commit()
            return cursor.rowcount > 0

    # -------------------------------
    # Roster
    # -------------------------------
    def register_participant(self, event_id, user_id, joined_at) -> RegistrationOutcome:
        """Append a user to an event's roster in a single conditional insert.

        The row is only written when the event is published, the user is not
        already on the roster and there is a free spot. When nothing is
        written, the reason is read back under the same lock.
        """
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute('''
                INSERT INTO event_participants (event_id, user_id, joined_at)
                SELECT e.id, ?, ? FROM events e
                WHERE e.id = ?
                  AND e.status = ?
                  AND NOT EXISTS (SELECT 1 FROM event_participants WHERE event_id = e.id AND user_id = ?)
                  AND (SELECT COUNT(*) FROM event_participants WHERE event_id = e.id) < e.capacity
            ''', (user_id, joined_at, event_id, EventStatus.PUBLISHED.value, user_id))
            self.conn.commit()
            if cursor.rowcount == 1:
                return RegistrationOutcome.REGISTERED

            row = cursor.execute('SELECT status, capacity FROM events WHERE id = ?', (event_id,)).fetchone()
            if row is None:
                return RegistrationOutcome.NOT_FOUND
            if row["status"] != EventStatus.PUBLISHED.value:
                return RegistrationOutcome.NOT_PUBLISHED
            exists = cursor.execute('''
                SELECT 1 FROM event_participants WHERE event_id = ? AND user_id = ?
            ''', (event_id, user_id)).fetchone()
            if exists:
                return RegistrationOutcome.ALREADY_REGISTERED
            return RegistrationOutcome.FULL

    def remove_participant(self, event_id, user_id):
        """Remove a user from an event's roster."""
        with self._lock:
            cursor = self.conn.cursor()
            cursor.execute('DELETE FROM event_participants WHERE event_id = ? AND user_id = ?', (event_id, user_id))
            self.conn.commit()
            return cursor.rowcount > 0

    def close(self):
        """Close the database connection."""
        with self._lock:
            self.conn.close()
        logger.info(f"Database at {self.db_name} closed")
