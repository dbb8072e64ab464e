import sqlite3
import json
import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable

from .config import DB_PATH, DB_BUSY_RETRIES
from .models import FeatureFeedback, FeatureType
from .utils import retry_with_backoff, is_sqlite_busy, utc_now_iso

logger = logging.getLogger(__name__)


class ConnectionPool:
    """
    Thread-keyed SQLite connection pool.

    SQLite connections must not be shared across threads, so each thread
    (including asyncio.to_thread workers) gets its own connection. Connections
    owned by threads that have exited are closed lazily.
    """

    def __init__(self, db_path, max_size: int = 32, cleanup_interval: float = 60.0):
        self._db_path = db_path
        self._max_size = max_size
        self._cleanup_interval = cleanup_interval

        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._transaction_depth: dict[int, int] = {}
        self._last_cleanup = time.monotonic()

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def _cleanup_dead_threads(self, force: bool = False) -> None:
        now = time.monotonic()
        if not force and now - self._last_cleanup < self._cleanup_interval:
            return
        self._last_cleanup = now

        alive = {t.ident for t in threading.enumerate()}
        for thread_id in set(self._connections) - alive:
            conn = self._connections.pop(thread_id)
            self._transaction_depth.pop(thread_id, None)
            try:
                conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error closing connection for thread {thread_id}: {e}")

    def get_connection(self) -> sqlite3.Connection:
        thread_id = threading.get_ident()
        with self._lock:
            self._cleanup_dead_threads()
            conn = self._connections.get(thread_id)
            if conn is None:
                if len(self._connections) >= self._max_size:
                    self._cleanup_dead_threads(force=True)
                    if len(self._connections) >= self._max_size:
                        raise RuntimeError(
                            f"Connection pool exhausted ({self._max_size} connections)"
                        )
                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Created connection for thread {thread_id} (pool size: {len(self._connections)})")
            return conn

    def enter_transaction(self) -> bool:
        """Increment nesting depth; True when this is the outermost level."""
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 0)
            self._transaction_depth[thread_id] = depth + 1
            return depth == 0

    def exit_transaction(self) -> None:
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = max(0, self._transaction_depth.get(thread_id, 1) - 1)

    def close_all(self) -> None:
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")
            self._connections.clear()
            self._transaction_depth.clear()

    def stats(self) -> dict:
        with self._lock:
            return {'active_connections': len(self._connections), 'max_size': self._max_size}


_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def _get_pool() -> ConnectionPool:
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                _pool = ConnectionPool(DB_PATH)
    return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Get a database connection with transaction handling.

    Only the outermost context commits (or rolls back on error); nested
    contexts on the same thread join the outer transaction.
    """
    pool = _get_pool()
    conn = pool.get_connection()
    is_outermost = pool.enter_transaction()

    try:
        yield conn
        if is_outermost and not read_only:
            conn.commit()
    except Exception:
        if is_outermost:
            conn.rollback()
        raise
    finally:
        pool.exit_transaction()


def close_pool() -> None:
    """Close the connection pool. Call on application shutdown."""
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def init_db() -> None:
    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS feature_feedback (
                user_id TEXT NOT NULL,
                feature_type TEXT NOT NULL,
                feature_id INTEGER NOT NULL,
                name TEXT,
                positive_count INTEGER NOT NULL DEFAULT 0,
                negative_count INTEGER NOT NULL DEFAULT 0,
                inferred_preference REAL NOT NULL DEFAULT 0.5,
                updated_at TEXT,
                PRIMARY KEY (user_id, feature_type, feature_id)
            );

            CREATE TABLE IF NOT EXISTS pairwise_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                winner_id INTEGER NOT NULL,
                loser_id INTEGER NOT NULL,
                winner_consensus TEXT,
                loser_consensus TEXT,
                shared_reason_tags TEXT,  -- JSON list
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS blocked_suggestions (
                user_id TEXT NOT NULL,
                item_id INTEGER NOT NULL,
                created_at TEXT,
                PRIMARY KEY (user_id, item_id)
            );

            CREATE TABLE IF NOT EXISTS quiz_responses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                question_type TEXT NOT NULL,
                feature_id INTEGER,
                answer TEXT,
                payload TEXT,  -- JSON
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS ab_tests (
                id TEXT PRIMARY KEY,
                test_name TEXT,
                status TEXT NOT NULL DEFAULT 'draft',
                start_date TEXT,
                end_date TEXT,
                config TEXT NOT NULL,  -- JSON
                created_at TEXT
            );

            CREATE TABLE IF NOT EXISTS ab_assignments (
                test_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                variant_name TEXT NOT NULL,
                assigned_at TEXT,
                PRIMARY KEY (test_id, user_id)
            );

            CREATE TABLE IF NOT EXISTS ab_metrics (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                test_id TEXT NOT NULL,
                user_id TEXT NOT NULL,
                variant_name TEXT NOT NULL,
                metric_name TEXT NOT NULL,
                value REAL NOT NULL,
                recorded_at TEXT
            );

            CREATE TABLE IF NOT EXISTS exploration_stats (
                user_id TEXT PRIMARY KEY,
                exploration_rate REAL NOT NULL,
                exploratory_films_rated INTEGER NOT NULL DEFAULT 0,
                exploratory_avg_rating REAL NOT NULL DEFAULT 0.0,
                updated_at TEXT
            );

            CREATE TABLE IF NOT EXISTS genre_transitions (
                user_id TEXT NOT NULL,
                from_genre_id INTEGER NOT NULL,
                from_genre_name TEXT NOT NULL,
                to_genre_id INTEGER NOT NULL,
                to_genre_name TEXT NOT NULL,
                rating_count INTEGER NOT NULL DEFAULT 0,
                success_count INTEGER NOT NULL DEFAULT 0,
                avg_rating REAL NOT NULL DEFAULT 0.0,
                success_rate REAL NOT NULL DEFAULT 0.0 CHECK (success_rate BETWEEN 0.0 AND 1.0),
                updated_at TEXT,
                PRIMARY KEY (user_id, from_genre_id, to_genre_id)
            );

            CREATE INDEX IF NOT EXISTS idx_feature_feedback_user ON feature_feedback(user_id, feature_type);
            CREATE INDEX IF NOT EXISTS idx_pairwise_user ON pairwise_events(user_id);
            CREATE INDEX IF NOT EXISTS idx_quiz_user ON quiz_responses(user_id);
            CREATE INDEX IF NOT EXISTS idx_ab_metrics_test ON ab_metrics(test_id, metric_name);
            CREATE INDEX IF NOT EXISTS idx_genre_transitions_success ON genre_transitions(user_id, success_rate DESC);
        """)


def load_json(val):
    """Safely load a JSON column, returning [] for empty or malformed values."""
    if not val:
        return []
    if isinstance(val, (list, dict)):
        return val
    try:
        return json.loads(val)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse JSON '{str(val)[:50]}...': {e}")
        return []


# ---------------------------------------------------------------------------
# Feature feedback store
# ---------------------------------------------------------------------------

_UPSERT_FEEDBACK_SQL = """
    INSERT INTO feature_feedback
        (user_id, feature_type, feature_id, name, positive_count, negative_count, inferred_preference, updated_at)
    VALUES (?, ?, ?, ?, ?, ?, (? + 1.0) / (? + ? + 2.0), ?)
    ON CONFLICT(user_id, feature_type, feature_id) DO UPDATE SET
        positive_count = feature_feedback.positive_count + excluded.positive_count,
        negative_count = feature_feedback.negative_count + excluded.negative_count,
        inferred_preference =
            (feature_feedback.positive_count + excluded.positive_count + 1.0) /
            (feature_feedback.positive_count + excluded.positive_count
             + feature_feedback.negative_count + excluded.negative_count + 2.0),
        name = COALESCE(NULLIF(excluded.name, ''), feature_feedback.name),
        updated_at = excluded.updated_at
"""


def _row_to_feedback(row) -> FeatureFeedback:
    return FeatureFeedback(
        user_id=row["user_id"],
        feature_type=FeatureType(row["feature_type"]),
        feature_id=row["feature_id"],
        name=row["name"] or "",
        positive_count=row["positive_count"],
        negative_count=row["negative_count"],
    )


def get_feature_feedback(user_id: str, feature_type, feature_id: int) -> FeatureFeedback | None:
    feature_type = FeatureType.parse(feature_type)
    with get_db(read_only=True) as conn:
        row = conn.execute("""
            SELECT * FROM feature_feedback
            WHERE user_id = ? AND feature_type = ? AND feature_id = ?
        """, (user_id, feature_type.value, feature_id)).fetchone()
    return _row_to_feedback(row) if row else None


def load_feature_feedback(user_id: str, feature_type=None) -> list[FeatureFeedback]:
    query = "SELECT * FROM feature_feedback WHERE user_id = ?"
    params: list = [user_id]
    if feature_type is not None:
        query += " AND feature_type = ?"
        params.append(FeatureType.parse(feature_type).value)
    with get_db(read_only=True) as conn:
        rows = conn.execute(query, params).fetchall()
    return [_row_to_feedback(r) for r in rows]


@retry_with_backoff(max_retries=DB_BUSY_RETRIES, exceptions=(sqlite3.OperationalError,), retry_if=is_sqlite_busy)
def increment_feature_feedback(
    user_id: str,
    updates: list[tuple],
) -> int:
    """
    Atomically add (positive, negative) deltas to feature counters.

    ``updates`` yields ``(feature_type, feature_id, name, positive, negative)``.
    Each row is a single UPSERT that adds to the stored counts, so concurrent
    writers never lose increments. All rows commit in one transaction.

    Returns:
        Number of rows written
    """
    now = utc_now_iso()
    rows = []
    for feature_type, feature_id, name, positive, negative in updates:
        if positive < 0 or negative < 0:
            raise ValueError(f"Feedback deltas must be non-negative, got ({positive}, {negative})")
        if positive == 0 and negative == 0:
            continue
        feature_type = FeatureType.parse(feature_type)
        rows.append((
            user_id, feature_type.value, int(feature_id), name or "",
            positive, negative, positive, positive, negative, now,
        ))

    if not rows:
        return 0

    with get_db() as conn:
        conn.executemany(_UPSERT_FEEDBACK_SQL, rows)
    return len(rows)


# ---------------------------------------------------------------------------
# Raw feedback logs
# ---------------------------------------------------------------------------

def log_pairwise_event(
    user_id: str,
    winner_id: int,
    loser_id: int,
    winner_consensus: str | None = None,
    loser_consensus: str | None = None,
    shared_reason_tags: list[str] | None = None,
) -> None:
    with get_db() as conn:
        conn.execute("""
            INSERT INTO pairwise_events
                (user_id, winner_id, loser_id, winner_consensus, loser_consensus, shared_reason_tags, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (
            user_id, winner_id, loser_id, winner_consensus, loser_consensus,
            json.dumps(shared_reason_tags or []), utc_now_iso(),
        ))


def load_pairwise_events(user_id: str) -> list[dict]:
    with get_db(read_only=True) as conn:
        rows = conn.execute(
            "SELECT * FROM pairwise_events WHERE user_id = ? ORDER BY id", (user_id,)
        ).fetchall()
    events = []
    for row in rows:
        event = dict(row)
        event["shared_reason_tags"] = load_json(event["shared_reason_tags"])
        events.append(event)
    return events


def block_suggestion(user_id: str, item_id: int) -> None:
    with get_db() as conn:
        conn.execute(
            "INSERT OR IGNORE INTO blocked_suggestions (user_id, item_id, created_at) VALUES (?, ?, ?)",
            (user_id, item_id, utc_now_iso()),
        )


def unblock_suggestion(user_id: str, item_id: int) -> None:
    with get_db() as conn:
        conn.execute("DELETE FROM blocked_suggestions WHERE user_id = ? AND item_id = ?", (user_id, item_id))


def load_blocked_suggestions(user_id: str) -> set[int]:
    with get_db(read_only=True) as conn:
        rows = conn.execute("SELECT item_id FROM blocked_suggestions WHERE user_id = ?", (user_id,)).fetchall()
    return {r["item_id"] for r in rows}


def save_quiz_response(
    user_id: str,
    question_type: str,
    feature_id: int | None,
    answer,
    payload: dict | None = None,
) -> None:
    with get_db() as conn:
        conn.execute("""
            INSERT INTO quiz_responses (user_id, question_type, feature_id, answer, payload, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (user_id, question_type, feature_id, str(answer), json.dumps(payload or {}), utc_now_iso()))


def get_quiz_stats(user_id: str) -> dict:
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT question_type, COUNT(*) AS n, MAX(created_at) AS last_at
            FROM quiz_responses WHERE user_id = ?
            GROUP BY question_type
        """, (user_id,)).fetchall()
    by_type = {r["question_type"]: r["n"] for r in rows}
    last = max((r["last_at"] for r in rows if r["last_at"]), default=None)
    return {'total_answered': sum(by_type.values()), 'by_type': by_type, 'last_quiz_date': last}


# ---------------------------------------------------------------------------
# Experiment store
# ---------------------------------------------------------------------------

def save_ab_test(test: dict) -> None:
    """Insert or replace an experiment config (a dict as produced by ExperimentConfig.to_dict)."""
    with get_db() as conn:
        conn.execute("""
            INSERT INTO ab_tests (id, test_name, status, start_date, end_date, config, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                test_name = excluded.test_name,
                status = excluded.status,
                start_date = excluded.start_date,
                end_date = excluded.end_date,
                config = excluded.config
        """, (
            test["id"], test.get("test_name"), test.get("status", "draft"),
            test.get("start_date"), test.get("end_date"), json.dumps(test), utc_now_iso(),
        ))


def load_ab_test(test_id: str) -> dict | None:
    with get_db(read_only=True) as conn:
        row = conn.execute("SELECT config FROM ab_tests WHERE id = ?", (test_id,)).fetchone()
    return load_json(row["config"]) if row else None


def load_running_ab_tests(now_iso: str | None = None) -> list[dict]:
    """Configs with status 'running' whose date window contains ``now_iso``."""
    now_iso = now_iso or utc_now_iso()
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT config FROM ab_tests
            WHERE status = 'running'
              AND (start_date IS NULL OR start_date <= ?)
              AND (end_date IS NULL OR end_date >= ?)
            ORDER BY id
        """, (now_iso, now_iso)).fetchall()
    return [load_json(r["config"]) for r in rows]


def get_assignment(test_id: str, user_id: str) -> str | None:
    with get_db(read_only=True) as conn:
        row = conn.execute(
            "SELECT variant_name FROM ab_assignments WHERE test_id = ? AND user_id = ?",
            (test_id, user_id),
        ).fetchone()
    return row["variant_name"] if row else None


@retry_with_backoff(max_retries=DB_BUSY_RETRIES, exceptions=(sqlite3.OperationalError,), retry_if=is_sqlite_busy)
def get_or_create_assignment(test_id: str, user_id: str, choose_variant: Callable[[], str]) -> str:
    """
    Return the sticky variant for (test, user), creating it on first call.

    Read, then ``INSERT OR IGNORE``, then read back: if a concurrent request
    inserted first, its assignment is the one honored.
    """
    existing = get_assignment(test_id, user_id)
    if existing is not None:
        return existing

    variant = choose_variant()
    with get_db() as conn:
        conn.execute("""
            INSERT OR IGNORE INTO ab_assignments (test_id, user_id, variant_name, assigned_at)
            VALUES (?, ?, ?, ?)
        """, (test_id, user_id, variant, utc_now_iso()))

    persisted = get_assignment(test_id, user_id)
    if persisted != variant:
        logger.debug(f"Assignment race for {user_id} in {test_id}: keeping {persisted}")
    return persisted


def load_assignments(test_id: str) -> dict[str, str]:
    with get_db(read_only=True) as conn:
        rows = conn.execute(
            "SELECT user_id, variant_name FROM ab_assignments WHERE test_id = ?", (test_id,)
        ).fetchall()
    return {r["user_id"]: r["variant_name"] for r in rows}


@retry_with_backoff(max_retries=DB_BUSY_RETRIES, exceptions=(sqlite3.OperationalError,), retry_if=is_sqlite_busy)
def append_metric(test_id: str, user_id: str, variant_name: str, metric_name: str, value: float) -> None:
    with get_db() as conn:
        conn.execute("""
            INSERT INTO ab_metrics (test_id, user_id, variant_name, metric_name, value, recorded_at)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (test_id, user_id, variant_name, metric_name, float(value), utc_now_iso()))


def load_metrics(test_id: str, metric_names: list[str] | None = None) -> list[dict]:
    query = "SELECT user_id, variant_name, metric_name, value FROM ab_metrics WHERE test_id = ?"
    params: list = [test_id]
    if metric_names:
        query += f" AND metric_name IN ({','.join('?' * len(metric_names))})"
        params.extend(metric_names)
    with get_db(read_only=True) as conn:
        rows = conn.execute(query + " ORDER BY id", params).fetchall()
    return [dict(r) for r in rows]


# ---------------------------------------------------------------------------
# Exploration stats
# ---------------------------------------------------------------------------

def load_exploration_stats(user_id: str) -> dict | None:
    with get_db(read_only=True) as conn:
        row = conn.execute("SELECT * FROM exploration_stats WHERE user_id = ?", (user_id,)).fetchone()
    return dict(row) if row else None


def save_exploration_stats(user_id: str, rate: float, films_rated: int, avg_rating: float) -> None:
    with get_db() as conn:
        conn.execute("""
            INSERT INTO exploration_stats (user_id, exploration_rate, exploratory_films_rated, exploratory_avg_rating, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                exploration_rate = excluded.exploration_rate,
                exploratory_films_rated = excluded.exploratory_films_rated,
                exploratory_avg_rating = excluded.exploratory_avg_rating,
                updated_at = excluded.updated_at
        """, (user_id, rate, films_rated, avg_rating, utc_now_iso()))


# ---------------------------------------------------------------------------
# Genre transitions
# ---------------------------------------------------------------------------

_UPSERT_TRANSITION_SQL = """
    INSERT INTO genre_transitions
        (user_id, from_genre_id, from_genre_name, to_genre_id, to_genre_name,
         rating_count, success_count, avg_rating, success_rate, updated_at)
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, CAST(? AS REAL) / ?, ?)
    ON CONFLICT(user_id, from_genre_id, to_genre_id) DO UPDATE SET
        rating_count = genre_transitions.rating_count + excluded.rating_count,
        success_count = genre_transitions.success_count + excluded.success_count,
        avg_rating =
            (genre_transitions.avg_rating * genre_transitions.rating_count
             + excluded.avg_rating * excluded.rating_count) /
            (genre_transitions.rating_count + excluded.rating_count),
        success_rate =
            CAST(genre_transitions.success_count + excluded.success_count AS REAL) /
            (genre_transitions.rating_count + excluded.rating_count),
        from_genre_name = excluded.from_genre_name,
        to_genre_name = excluded.to_genre_name,
        updated_at = excluded.updated_at
"""


@retry_with_backoff(max_retries=DB_BUSY_RETRIES, exceptions=(sqlite3.OperationalError,), retry_if=is_sqlite_busy)
def record_genre_transitions(user_id: str, transitions: list[dict]) -> int:
    """
    Add observed transition counts to the stored totals.

    Each dict carries from/to genre ids and names, ``rating_count``,
    ``success_count`` and ``avg_rating`` for the new observations only.
    """
    now = utc_now_iso()
    rows = [
        (
            user_id, t['from_genre_id'], t['from_genre_name'], t['to_genre_id'], t['to_genre_name'],
            t['rating_count'], t['success_count'], t['avg_rating'],
            t['success_count'], t['rating_count'], now,
        )
        for t in transitions
        if t['rating_count'] > 0
    ]
    if not rows:
        return 0
    with get_db() as conn:
        conn.executemany(_UPSERT_TRANSITION_SQL, rows)
    return len(rows)


def load_genre_transitions(user_id: str, min_count: int = 0, min_success_rate: float = 0.0) -> list[dict]:
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT * FROM genre_transitions
            WHERE user_id = ? AND rating_count >= ? AND success_rate >= ?
            ORDER BY success_rate DESC, rating_count DESC, from_genre_id, to_genre_id
        """, (user_id, min_count, min_success_rate)).fetchall()
    return [dict(r) for r in rows]
