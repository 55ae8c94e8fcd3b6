"""
Continuum configuration -- storage path, session id and endpoint descriptors.

Everything is resolved lazily from the environment so tests can override it
with monkeypatch. CLI flags take precedence over the environment.
"""

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from continuum.errors import ValidationError

logger = logging.getLogger("continuum.config")

DEFAULT_RELAY_URL = "ws://localhost:3001"

DEFAULT_ENDPOINTS = "ollama=http://localhost:11434/v1:llama3.2,lmstudio=http://localhost:1234/v1:local-model"


def continuum_home() -> Path:
    """Resolve CONTINUUM_HOME lazily."""
    return Path(os.environ.get("CONTINUUM_HOME", str(Path.home() / ".continuum")))


def db_path(override: Optional[str] = None) -> Path:
    """Path of the storage file shared with the knowledge-store collaborator."""
    raw = override or os.environ.get("CONTINUUM_DB_PATH") or os.environ.get("DB_FILE_PATH")
    if raw:
        return Path(raw).expanduser()
    return continuum_home() / "continuum.db"


def session_id(override: Optional[str] = None) -> str:
    return override or os.environ.get("CONTINUUM_SESSION_ID") or f"session_{int(time.time() * 1000)}"


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def ready_timeout() -> float:
    return _env_float("CONTINUUM_READY_TIMEOUT", 60.0)


def ready_poll_interval() -> float:
    return _env_float("CONTINUUM_READY_POLL", 2.0)


def relay_url() -> str:
    return os.environ.get("CONTINUUM_RELAY_URL", DEFAULT_RELAY_URL)


def relay_role(override: Optional[str] = None) -> str:
    return override or os.environ.get("CONTINUUM_ROLE", "past")


# ---------------------------------------------------------------------------
# Outbound endpoint descriptors
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EndpointConfig:
    """An OpenAI-compatible chat endpoint the outbound bridge may call."""

    name: str
    url: str
    default_model: Optional[str] = None


def _split_model(url: str):
    """Split ``url[:model]``. A model suffix only counts after a path segment."""
    if ":default-model:" in url:
        base, model = url.split(":default-model:", 1)
        return base, model or None
    scheme, sep, rest = url.partition("://")
    if not sep or "/" not in rest:
        return url, None
    head, _, last = rest.rpartition("/")
    if ":" not in last:
        return url, None
    segment, _, model = last.partition(":")
    return f"{scheme}://{head}/{segment}", model or None


def parse_endpoint(descriptor: str) -> EndpointConfig:
    name, sep, url = descriptor.strip().partition("=")
    name, url = name.strip(), url.strip()
    if not sep or not name or not url:
        raise ValidationError(f"Invalid endpoint descriptor {descriptor!r}. Expected name=url[:defaultModel]")
    if not (url.startswith("http://") or url.startswith("https://")):
        raise ValidationError(f"Endpoint {name!r} must use an http(s) URL, got {url!r}")
    base, model = _split_model(url)
    return EndpointConfig(name=name, url=base.rstrip("/"), default_model=model)


def parse_endpoints(value: str) -> Dict[str, EndpointConfig]:
    """Parse a comma-separated list of ``name=url[:defaultModel]`` descriptors."""
    endpoints: Dict[str, EndpointConfig] = {}
    for part in value.split(","):
        if not part.strip():
            continue
        cfg = parse_endpoint(part)
        endpoints[cfg.name] = cfg
    return endpoints


def load_endpoints(override: Optional[str] = None) -> Dict[str, EndpointConfig]:
    raw = override or os.environ.get("CONTINUUM_AI_ENDPOINTS") or os.environ.get("AI_ENDPOINTS")
    return parse_endpoints(raw or DEFAULT_ENDPOINTS)
