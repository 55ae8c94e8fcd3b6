"""Continuum test configuration."""
import sqlite3
import sys
from pathlib import Path

import pytest

# Ensure the continuum package is importable from a source checkout
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


# Tables the knowledge-store collaborator creates in the shared file.
COLLABORATOR_DDL = """
CREATE TABLE IF NOT EXISTS entities (
    id TEXT PRIMARY KEY,
    name TEXT UNIQUE NOT NULL,
    entityType TEXT NOT NULL,
    observations TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS relationships (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    source_entity TEXT NOT NULL,
    target_entity TEXT NOT NULL,
    relationType TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    content TEXT NOT NULL,
    metadata TEXT
);
CREATE TABLE IF NOT EXISTS chunks (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL,
    chunk_index INTEGER NOT NULL,
    text TEXT NOT NULL
);
"""


def init_collaborator_schema(db_path: Path) -> None:
    conn = sqlite3.connect(str(db_path))
    try:
        conn.executescript(COLLABORATOR_DDL)
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def tmp_continuum_home(tmp_path, monkeypatch):
    """Create a temporary CONTINUUM_HOME with encryption disabled."""
    home = tmp_path / ".continuum"
    home.mkdir()
    monkeypatch.setenv("CONTINUUM_HOME", str(home))
    # Default: disable encryption in tests for deterministic output
    monkeypatch.setenv("CONTINUUM_ENCRYPT", "0")
    monkeypatch.setenv("CONTINUUM_SESSION_ID", "test-session")
    monkeypatch.setenv("CONTINUUM_READY_TIMEOUT", "0")
    monkeypatch.delenv("CONTINUUM_DB_PATH", raising=False)
    monkeypatch.delenv("DB_FILE_PATH", raising=False)
    yield home
    from continuum.crypto import reset_crypto_state
    reset_crypto_state()


@pytest.fixture
def db_path(tmp_continuum_home):
    """Storage file with the collaborator tables already created."""
    path = tmp_continuum_home / "continuum.db"
    init_collaborator_schema(path)
    return path


@pytest.fixture
def store(db_path):
    from continuum.sqlite_store import RecordStore

    s = RecordStore(db_path, session_id="test-session")
    yield s
    s.close()


@pytest.fixture
def engine(db_path):
    """Reset the bridge singleton so each test gets a fresh engine."""
    from continuum.bridge import reset_memory

    reset_memory()
    yield db_path
    reset_memory()
