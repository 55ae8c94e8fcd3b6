"""
Continuum SQLite Store -- record storage inside the knowledge-store database.

Memory records live in the collaborator-owned ``entities`` table (one row per
record, observations as a JSON array). The engine adds four tables of its own
for metadata, cognitive patterns, emotional states and sessions, and creates
them only once the collaborator tables exist.

Usage:
    store = RecordStore.open(db_path, session_id="s1")
    key = store.put(MemoryFamily.EPISODIC, None, [Observation("Shipped v1")], {"event": "Shipped v1"})
    records = store.list_by_family(MemoryFamily.EPISODIC, limit=10, order_by=OrderBy.IMPORTANCE)
"""

import json
import logging
import re
import sqlite3
import threading
import time as _time
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from continuum import config
from continuum.crypto import decrypt, encrypt, secure_connect
from continuum.errors import NotFoundError, StorageUnavailable, ValidationError
from continuum.scoring import clamp_importance
from continuum.types import ConsolidationStatus, MemoryFamily, OrderBy, Readiness, RECORD_FAMILIES

logger = logging.getLogger("continuum.sqlite_store")

SCHEMA_VERSION = 1
DEFAULT_IMPORTANCE = 0.5

COLLABORATOR_TABLES = ("entities", "relationships", "documents", "chunks")
ENGINE_TABLES = ("sessions", "memory_metadata", "cognitive_patterns", "emotional_states")

# ---------------------------------------------------------------------------
# SQLite retry -- the storage file is shared with the collaborator process,
# so writes can hit "database is locked" even with WAL + busy_timeout.
# ---------------------------------------------------------------------------
_DB_RETRY_ATTEMPTS = 3
_DB_RETRY_BASE_DELAY = 1.0  # seconds


def _retry_on_locked(fn, *args, **kwargs):
    """Call fn with retry on 'database is locked' OperationalError."""
    for attempt in range(_DB_RETRY_ATTEMPTS):
        try:
            return fn(*args, **kwargs)
        except sqlite3.OperationalError as e:
            if "database is locked" in str(e) and attempt < _DB_RETRY_ATTEMPTS - 1:
                delay = _DB_RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning("database is locked (attempt %d/%d), retrying in %.1fs",
                               attempt + 1, _DB_RETRY_ATTEMPTS, delay)
                _time.sleep(delay)
            else:
                raise


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return _as_utc(datetime.fromisoformat(value))
    except ValueError:
        return None


_WHITESPACE_RE = re.compile(r"\s+")


def normalize_name(name: str) -> str:
    """Lower-case a concept/pattern name and join words with underscores."""
    return _WHITESPACE_RE.sub("_", name.strip().lower())


def derive_key(family: MemoryFamily, name: Optional[str] = None) -> str:
    """Key for a new record. Only semantic keys depend on the content."""
    if family is MemoryFamily.SEMANTIC:
        if not name or not name.strip():
            raise ValidationError("Semantic records need a concept name")
        return f"semantic_{normalize_name(name)}"
    return f"{family.value}_{uuid.uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------


def missing_tables(conn: sqlite3.Connection, required: Sequence[str] = COLLABORATOR_TABLES) -> List[str]:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    present = {r[0] for r in rows}
    return [t for t in required if t not in present]


def _missing_tables(db_path: Path) -> List[str]:
    """Return the collaborator tables still missing (all of them if no file)."""
    if not db_path.exists():
        return list(COLLABORATOR_TABLES)
    conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True, timeout=5)
    try:
        return missing_tables(conn)
    except sqlite3.DatabaseError as e:
        logger.debug("Readiness check failed: %s", e)
        return list(COLLABORATOR_TABLES)
    finally:
        conn.close()


def wait_for_ready(db_path, timeout: Optional[float] = None, poll_interval: Optional[float] = None,
                   clock=_time.monotonic, sleep=_time.sleep) -> Readiness:
    """Poll until the collaborator tables exist or ``timeout`` seconds pass."""
    db_path = Path(db_path)
    timeout = config.ready_timeout() if timeout is None else timeout
    poll_interval = config.ready_poll_interval() if poll_interval is None else poll_interval
    deadline = clock() + max(0.0, timeout)
    while True:
        missing = _missing_tables(db_path)
        if not missing:
            return Readiness.READY
        remaining = deadline - clock()
        if remaining <= 0:
            logger.warning("Storage not ready after %.1fs, missing tables: %s", timeout, ", ".join(missing))
            return Readiness.TIMED_OUT
        logger.debug("Waiting for collaborator tables: %s", ", ".join(missing))
        sleep(min(poll_interval, remaining))


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

_OBSERVATION_KEYS = ("content", "timestamp", "source", "confidence", "cognitiveMode")


class Observation:
    """One timestamped piece of text attached to a record."""

    __slots__ = ("text", "timestamp", "source", "confidence", "cognitive_mode", "fields")

    def __init__(
        self,
        text: str,
        timestamp: Optional[str] = None,
        source: Optional[str] = None,
        confidence: Optional[float] = None,
        cognitive_mode: Optional[str] = None,
        fields: Optional[Dict[str, Any]] = None,
    ):
        self.text = text
        self.timestamp = timestamp or _now_iso()
        self.source = source
        self.confidence = confidence
        self.cognitive_mode = cognitive_mode
        self.fields = dict(fields or {})

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"content": self.text, "timestamp": self.timestamp}
        if self.source is not None:
            data["source"] = self.source
        if self.confidence is not None:
            data["confidence"] = self.confidence
        if self.cognitive_mode is not None:
            data["cognitiveMode"] = self.cognitive_mode
        for k, v in self.fields.items():
            data.setdefault(k, v)
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Observation":
        if not isinstance(data, dict):
            return cls(text=str(data))
        return cls(
            text=str(data.get("content", "")),
            timestamp=data.get("timestamp"),
            source=data.get("source"),
            confidence=data.get("confidence"),
            cognitive_mode=data.get("cognitiveMode"),
            fields={k: v for k, v in data.items() if k not in _OBSERVATION_KEYS},
        )


class MemoryRecord:
    """A stored record joined with its metadata row (if any)."""

    __slots__ = (
        "key",
        "family",
        "observations",
        "importance",
        "access_count",
        "last_accessed",
        "created_at",
        "consolidation_status",
        "session_id",
        "has_metadata",
    )

    def __init__(
        self,
        key: str,
        family: MemoryFamily,
        observations: List[Observation],
        importance: float = DEFAULT_IMPORTANCE,
        access_count: int = 0,
        last_accessed: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
        consolidation_status: str = ConsolidationStatus.ACTIVE.value,
        session_id: Optional[str] = None,
        has_metadata: bool = True,
    ):
        self.key = key
        self.family = family
        self.observations = observations
        self.importance = importance
        self.access_count = access_count
        self.last_accessed = last_accessed
        self.created_at = created_at
        self.consolidation_status = consolidation_status
        self.session_id = session_id
        self.has_metadata = has_metadata

    @property
    def content(self) -> str:
        """Authoritative content: the first observation's text."""
        return self.observations[0].text if self.observations else ""

    @property
    def fields(self) -> Dict[str, Any]:
        return self.observations[0].fields if self.observations else {}

    def touch(self) -> None:
        if self.has_metadata:
            self.access_count += 1
            self.last_accessed = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        first = self.observations[0] if self.observations else None
        meta = dict(first.fields) if first else {}
        if first is not None:
            for attr, name in (("source", "source"), ("confidence", "confidence"), ("cognitive_mode", "cognitiveMode")):
                value = getattr(first, attr)
                if value is not None:
                    meta[name] = value
        return {
            "key": self.key,
            "type": self.family.value,
            "content": self.content,
            "importance": self.importance,
            "access_count": self.access_count,
            "last_accessed": self.last_accessed.isoformat() if self.last_accessed else None,
            "created": self.created_at.isoformat() if self.created_at else None,
            "session_id": self.session_id,
            "observations": len(self.observations),
            "metadata": meta,
        }

    def __repr__(self) -> str:
        return f"MemoryRecord({self.key!r}, importance={self.importance})"


class EmotionalState:
    __slots__ = ("state_id", "session_id", "timestamp", "valence", "arousal", "label", "context")

    def __init__(self, state_id, session_id, timestamp, valence, arousal, label=None, context=None):
        self.state_id = state_id
        self.session_id = session_id
        self.timestamp = timestamp
        self.valence = valence
        self.arousal = arousal
        self.label = label
        self.context = context

    @property
    def importance(self) -> float:
        return max(abs(self.valence), self.arousal)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.state_id,
            "type": MemoryFamily.EMOTIONAL.value,
            "content": self.context or self.label or "",
            "importance": self.importance,
            "created": self.timestamp.isoformat() if self.timestamp else None,
            "session_id": self.session_id,
            "metadata": {"valence": self.valence, "arousal": self.arousal, "emotion": self.label},
        }


_ORDER_SQL = {
    OrderBy.IMPORTANCE: "COALESCE(m.importance_score, 0.5) DESC",
    OrderBy.CREATED: "m.created_at DESC",
    OrderBy.ACCESS: "COALESCE(m.access_count, 0) DESC",
}

_RECORD_COLUMNS = """e.name, e.entityType, e.observations, m.importance_score, m.access_count,
                     m.last_accessed, m.created_at, m.consolidation_status, m.session_id,
                     m.entity_name"""


# ---------------------------------------------------------------------------
# RecordStore
# ---------------------------------------------------------------------------


class RecordStore:
    """The only component that touches the storage file."""

    def __init__(self, db_path=None, session_id: Optional[str] = None):
        self.db_path = Path(db_path) if db_path else config.db_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        self.session_id = config.session_id(session_id)
        self._lock = threading.Lock()
        self._conn = self._connect()

        missing = missing_tables(self._conn)
        if missing:
            self._conn.close()
            raise StorageUnavailable(
                "Database not initialized",
                details={"db_path": str(self.db_path), "missing_tables": missing},
            )
        self._init_schema()
        self.upsert_session(self.session_id)
        logger.info("Record store ready at %s (session %s)", self.db_path, self.session_id)

    @classmethod
    def open(cls, db_path=None, session_id: Optional[str] = None,
             timeout: Optional[float] = None, poll_interval: Optional[float] = None) -> "RecordStore":
        """Wait for the collaborator schema, then initialize."""
        path = Path(db_path) if db_path else config.db_path()
        if wait_for_ready(path, timeout=timeout, poll_interval=poll_interval) is Readiness.TIMED_OUT:
            raise StorageUnavailable(
                "Database not initialized",
                details={"db_path": str(path), "missing_tables": _missing_tables(path)},
            )
        return cls(path, session_id=session_id)

    def _connect(self) -> sqlite3.Connection:
        conn = secure_connect(self.db_path, timeout=30, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA busy_timeout=30000")
        return conn

    def _init_schema(self) -> None:
        """Create the engine tables if they don't exist."""
        c = self._conn
        c.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                session_id TEXT PRIMARY KEY,
                started_at TEXT NOT NULL,
                last_active TEXT NOT NULL,
                bootstrap_data TEXT,
                metadata TEXT
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS memory_metadata (
                entity_name TEXT PRIMARY KEY,
                memory_type TEXT NOT NULL,
                created_at TEXT NOT NULL,
                last_accessed TEXT,
                access_count INTEGER DEFAULT 0,
                importance_score REAL DEFAULT 0.5,
                consolidation_status TEXT DEFAULT 'active',
                session_id TEXT
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS cognitive_patterns (
                pattern_id TEXT PRIMARY KEY,
                pattern_name TEXT NOT NULL,
                pattern_elements TEXT,
                activation_count INTEGER DEFAULT 1,
                last_activated TEXT,
                effectiveness_score REAL DEFAULT 0.5,
                triggers TEXT
            )
        """)
        c.execute("""
            CREATE TABLE IF NOT EXISTS emotional_states (
                state_id TEXT PRIMARY KEY,
                session_id TEXT,
                timestamp TEXT NOT NULL,
                valence REAL NOT NULL,
                arousal REAL NOT NULL,
                primary_emotion TEXT,
                context TEXT
            )
        """)
        c.execute("CREATE INDEX IF NOT EXISTS idx_metadata_importance ON memory_metadata(importance_score)")
        c.execute("CREATE INDEX IF NOT EXISTS idx_metadata_type ON memory_metadata(memory_type)")
        c.execute("CREATE INDEX IF NOT EXISTS idx_emotional_timestamp ON emotional_states(timestamp)")

        version = c.execute("PRAGMA user_version").fetchone()[0]
        if version < SCHEMA_VERSION:
            c.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        self._commit()

    # ------------------------------------------------------------------
    # Resilient commit / execute
    # ------------------------------------------------------------------

    def _commit(self) -> None:
        _retry_on_locked(self._conn.commit)

    def _run_sql(self, sql, params=None):
        if params is not None:
            return _retry_on_locked(self._conn.execute, sql, params)
        return _retry_on_locked(self._conn.execute, sql)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _upsert_metadata(self, key: str, family: MemoryFamily, importance: Optional[float],
                         session_id: Optional[str]) -> None:
        # Existing rows keep their importance unless a new value is supplied.
        self._run_sql(
            """INSERT INTO memory_metadata
                   (entity_name, memory_type, created_at, importance_score, consolidation_status, session_id)
               VALUES (?, ?, ?, ?, 'active', ?)
               ON CONFLICT(entity_name) DO UPDATE SET
                   importance_score = COALESCE(?, memory_metadata.importance_score)""",
            (
                key,
                family.value,
                _now_iso(),
                DEFAULT_IMPORTANCE if importance is None else importance,
                session_id or self.session_id,
                importance,
            ),
        )

    def insert(self, family: MemoryFamily, observations: Sequence[Observation],
               importance: Optional[float] = None, session_id: Optional[str] = None,
               key: Optional[str] = None) -> str:
        """Create a new episodic or procedural record. Never merges."""
        family = MemoryFamily.parse(family)
        if family not in (MemoryFamily.EPISODIC, MemoryFamily.PROCEDURAL):
            raise ValidationError(f"insert() does not accept {family.value} records")
        if not observations:
            raise ValidationError("A record needs at least one observation")
        if importance is not None:
            importance = clamp_importance(importance)
        key = key or derive_key(family)
        payload = json.dumps([o.to_dict() for o in observations])
        with self._lock:
            try:
                self._run_sql(
                    "INSERT INTO entities (id, name, entityType, observations) VALUES (?, ?, ?, ?)",
                    (key, key, family.entity_type, payload),
                )
            except sqlite3.IntegrityError:
                self._conn.rollback()
                raise ValidationError(f"Record key already exists: {key}") from None
            self._upsert_metadata(key, family, importance, session_id)
            self._commit()
        logger.debug("Stored %s record %s", family.value, key)
        return key

    def insert_or_append(self, concept: str, observations: Sequence[Observation],
                         importance: Optional[float] = None, session_id: Optional[str] = None) -> str:
        """Create the semantic record for ``concept`` or append to the existing one."""
        if not observations:
            raise ValidationError("A record needs at least one observation")
        if importance is not None:
            importance = clamp_importance(importance)
        key = derive_key(MemoryFamily.SEMANTIC, concept)
        new_obs = [o.to_dict() for o in observations]
        with self._lock:
            row = self._run_sql(
                "SELECT observations FROM entities WHERE name = ? AND entityType = ?",
                (key, MemoryFamily.SEMANTIC.entity_type),
            ).fetchone()
            if row is None:
                self._run_sql(
                    "INSERT INTO entities (id, name, entityType, observations) VALUES (?, ?, ?, ?)",
                    (key, key, MemoryFamily.SEMANTIC.entity_type, json.dumps(new_obs)),
                )
                logger.debug("Stored semantic record %s", key)
            else:
                existing = _load_observations(row[0])
                self._run_sql(
                    "UPDATE entities SET observations = ? WHERE name = ?",
                    (json.dumps(existing + new_obs), key),
                )
                logger.debug("Appended %d observation(s) to %s", len(new_obs), key)
            self._upsert_metadata(key, MemoryFamily.SEMANTIC, importance, session_id)
            self._commit()
        return key

    def put(self, family, key: Optional[str], observations: Sequence[Observation],
            fields: Optional[Dict[str, Any]] = None, importance: Optional[float] = None,
            session_id: Optional[str] = None) -> str:
        """Store a record; semantic writes merge on their derived key.

        ``fields`` are the family's structured attributes and are carried on
        the first observation. For semantic records ``key`` (or
        ``fields["concept"]``) names the concept.
        """
        family = MemoryFamily.parse(family)
        observations = list(observations)
        if fields and observations:
            first = observations[0]
            merged = dict(fields)
            merged.update(first.fields)
            first.fields = merged
        if family is MemoryFamily.SEMANTIC:
            concept = (fields or {}).get("concept") or key
            if concept and concept.startswith("semantic_"):
                concept = concept[len("semantic_"):]
            return self.insert_or_append(concept, observations, importance=importance, session_id=session_id)
        return self.insert(family, observations, importance=importance, session_id=session_id, key=key)

    def set_importance(self, key: str, importance: float) -> bool:
        """Write an importance score without touching access counters."""
        importance = clamp_importance(importance)
        with self._lock:
            row = self._run_sql("SELECT entityType FROM entities WHERE name = ?", (key,)).fetchone()
            if row is None:
                raise NotFoundError(f"Memory not found: {key}")
            family = _family_from_entity_type(row[0]) or MemoryFamily.EPISODIC
            cur = self._run_sql(
                "UPDATE memory_metadata SET importance_score = ? WHERE entity_name = ?",
                (importance, key),
            )
            if cur.rowcount == 0:
                self._run_sql(
                    """INSERT INTO memory_metadata
                           (entity_name, memory_type, created_at, importance_score, session_id)
                       VALUES (?, ?, ?, ?, ?)""",
                    (key, family.value, _now_iso(), importance, self.session_id),
                )
            self._commit()
        return True

    def exists(self, key: str) -> bool:
        row = self._run_sql("SELECT 1 FROM entities WHERE name = ?", (key,)).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Reads (every read bumps access_count / last_accessed)
    # ------------------------------------------------------------------

    def _touch(self, keys: Iterable[str]) -> None:
        keys = list(keys)
        if not keys:
            return
        placeholders = ",".join("?" * len(keys))
        self._run_sql(
            f"UPDATE memory_metadata SET access_count = access_count + 1, last_accessed = ? "
            f"WHERE entity_name IN ({placeholders})",
            [_now_iso(), *keys],
        )
        self._commit()

    def _read(self, sql: str, params: Sequence[Any]) -> List[MemoryRecord]:
        with self._lock:
            rows = self._run_sql(sql, params).fetchall()
            records = [r for r in (_row_to_record(row) for row in rows) if r is not None]
            self._touch(r.key for r in records)
        for r in records:
            r.touch()
        return records

    def get(self, key: str) -> Optional[MemoryRecord]:
        records = self._read(
            f"SELECT {_RECORD_COLUMNS} FROM entities e "
            "LEFT JOIN memory_metadata m ON m.entity_name = e.name WHERE e.name = ?",
            (key,),
        )
        return records[0] if records else None

    def query(self, family, limit: int = 10, order_by: OrderBy = OrderBy.IMPORTANCE,
              since: Optional[datetime] = None, until: Optional[datetime] = None,
              session_id: Optional[str] = None) -> List[MemoryRecord]:
        """List records of one family with optional time and session filters."""
        family = MemoryFamily.parse(family)
        if family not in RECORD_FAMILIES:
            raise ValidationError(f"Unsupported memory type: {family.value}")
        order_by = OrderBy(order_by)
        clauses = ["e.entityType = ?"]
        params: List[Any] = [family.entity_type]
        if since is not None:
            clauses.append("m.created_at >= ?")
            params.append(_as_utc(since).isoformat())
        if until is not None:
            clauses.append("m.created_at <= ?")
            params.append(_as_utc(until).isoformat())
        if session_id:
            clauses.append("m.session_id = ?")
            params.append(session_id)
        params.append(max(0, int(limit)))
        sql = (
            f"SELECT {_RECORD_COLUMNS} FROM entities e "
            "LEFT JOIN memory_metadata m ON m.entity_name = e.name "
            f"WHERE {' AND '.join(clauses)} "
            f"ORDER BY {_ORDER_SQL[order_by]}, e.rowid DESC LIMIT ?"
        )
        return self._read(sql, params)

    def list_by_family(self, family, limit: int = 10, order_by: OrderBy = OrderBy.IMPORTANCE) -> List[MemoryRecord]:
        return self.query(family, limit=limit, order_by=order_by)

    # ------------------------------------------------------------------
    # Emotional states (append-only)
    # ------------------------------------------------------------------

    def add_emotional_state(self, valence: float, arousal: float, label: Optional[str] = None,
                            context: Optional[str] = None, session_id: Optional[str] = None) -> str:
        state_id = f"emotion_{uuid.uuid4().hex[:12]}"
        valence = max(-1.0, min(1.0, float(valence)))
        arousal = max(0.0, min(1.0, float(arousal)))
        with self._lock:
            self._run_sql(
                """INSERT INTO emotional_states
                       (state_id, session_id, timestamp, valence, arousal, primary_emotion, context)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (state_id, session_id or self.session_id, _now_iso(), valence, arousal, label, context),
            )
            self._commit()
        return state_id

    def list_emotional_states(self, since_hours: Optional[float] = None, session_id: Optional[str] = None,
                              limit: Optional[int] = None) -> List[EmotionalState]:
        clauses, params = [], []
        if since_hours is not None:
            clauses.append("timestamp >= ?")
            params.append((datetime.now(timezone.utc) - timedelta(hours=since_hours)).isoformat())
        if session_id:
            clauses.append("session_id = ?")
            params.append(session_id)
        sql = "SELECT state_id, session_id, timestamp, valence, arousal, primary_emotion, context FROM emotional_states"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY timestamp DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        with self._lock:
            rows = self._run_sql(sql, params).fetchall()
        return [
            EmotionalState(r[0], r[1], _parse_ts(r[2]), r[3], r[4], r[5], r[6])
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Cognitive patterns
    # ------------------------------------------------------------------

    def record_pattern(self, name: str, triggers: Optional[List[str]] = None,
                       elements: Optional[List[str]] = None) -> str:
        """Count an activation of ``name``; a new pattern starts at 1."""
        if not name or not name.strip():
            raise ValidationError("Pattern name cannot be empty")
        pattern_id = f"pattern_{normalize_name(name)}"
        now = _now_iso()
        triggers_json = json.dumps(list(triggers or []))
        with self._lock:
            cur = self._run_sql(
                """UPDATE cognitive_patterns
                   SET activation_count = activation_count + 1, last_activated = ?, triggers = ?
                   WHERE pattern_id = ?""",
                (now, triggers_json, pattern_id),
            )
            if cur.rowcount == 0:
                self._run_sql(
                    """INSERT INTO cognitive_patterns
                           (pattern_id, pattern_name, pattern_elements, activation_count, last_activated, triggers)
                       VALUES (?, ?, ?, 1, ?, ?)""",
                    (pattern_id, name.strip(), json.dumps(list(elements or [name.strip()])), now, triggers_json),
                )
            self._commit()
        return pattern_id

    def list_patterns(self, limit: int = 10) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._run_sql(
                """SELECT pattern_id, pattern_name, activation_count, last_activated,
                          effectiveness_score, triggers
                   FROM cognitive_patterns
                   ORDER BY activation_count DESC, last_activated DESC LIMIT ?""",
                (int(limit),),
            ).fetchall()
        return [
            {
                "pattern_id": r[0],
                "name": r[1],
                "activation_count": r[2],
                "last_activated": r[3],
                "effectiveness": r[4],
                "triggers": json.loads(r[5]) if r[5] else [],
            }
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def upsert_session(self, session_id: str) -> None:
        now = _now_iso()
        with self._lock:
            self._run_sql(
                """INSERT INTO sessions (session_id, started_at, last_active) VALUES (?, ?, ?)
                   ON CONFLICT(session_id) DO UPDATE SET last_active = excluded.last_active""",
                (session_id, now, now),
            )
            self._commit()

    def save_bootstrap(self, session_id: str, snapshot: Dict[str, Any]) -> None:
        now = _now_iso()
        data = encrypt(json.dumps(snapshot))
        with self._lock:
            self._run_sql(
                """INSERT INTO sessions (session_id, started_at, last_active, bootstrap_data) VALUES (?, ?, ?, ?)
                   ON CONFLICT(session_id) DO UPDATE SET
                       last_active = excluded.last_active, bootstrap_data = excluded.bootstrap_data""",
                (session_id, now, now, data),
            )
            self._commit()

    def load_bootstrap(self, session_id: str) -> Optional[Dict[str, Any]]:
        row = self._run_sql(
            "SELECT bootstrap_data FROM sessions WHERE session_id = ?", (session_id,)
        ).fetchone()
        if not row or not row[0]:
            return None
        return json.loads(decrypt(row[0]))

    # ------------------------------------------------------------------
    # Stats / lifecycle
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, int]:
        with self._lock:
            counts = {
                family.value: self._run_sql(
                    "SELECT COUNT(*) FROM entities WHERE entityType = ?", (family.entity_type,)
                ).fetchone()[0]
                for family in RECORD_FAMILIES
            }
            counts["emotional_states"] = self._run_sql("SELECT COUNT(*) FROM emotional_states").fetchone()[0]
            counts["patterns"] = self._run_sql("SELECT COUNT(*) FROM cognitive_patterns").fetchone()[0]
            counts["sessions"] = self._run_sql("SELECT COUNT(*) FROM sessions").fetchone()[0]
        return counts

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as e:
            logger.debug("Database close failed: %s", e)


def _load_observations(raw: Optional[str]) -> List[Any]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        return [raw]
    return data if isinstance(data, list) else [data]


def _family_from_entity_type(entity_type: str) -> Optional[MemoryFamily]:
    for family in RECORD_FAMILIES:
        if family.entity_type == entity_type:
            return family
    return None


def _row_to_record(row: tuple) -> Optional[MemoryRecord]:
    family = _family_from_entity_type(row[1])
    if family is None:
        return None
    has_metadata = row[9] is not None
    return MemoryRecord(
        key=row[0],
        family=family,
        observations=[Observation.from_dict(o) for o in _load_observations(row[2])],
        importance=row[3] if row[3] is not None else DEFAULT_IMPORTANCE,
        access_count=row[4] or 0,
        last_accessed=_parse_ts(row[5]),
        created_at=_parse_ts(row[6]),
        consolidation_status=row[7] or ConsolidationStatus.ACTIVE.value,
        session_id=row[8],
        has_metadata=has_metadata,
    )
