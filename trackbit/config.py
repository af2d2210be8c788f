"""
Runtime settings read from TRACKBIT_* environment variables.

Environment variables:
    TRACKBIT_DB_PATH           — SQLite database file (default: trackbit.db)
    TRACKBIT_CORS_ORIGINS      — Comma-separated allowed origins (default: http://localhost:5173)
    TRACKBIT_RATE_LIMIT        — Requests per window and client, 0 disables (default: 100)
    TRACKBIT_RATE_WINDOW       — Rate limit window in seconds (default: 60)
    TRACKBIT_SESSION_TTL_DAYS  — Session lifetime (default: 30)
    TRACKBIT_LOG_LEVEL         — Log level (default: info)
    TRACKBIT_PORT              — Server port (default: 8000)
    TRACKBIT_WORKERS           — Number of worker processes (default: 2)
"""

import os
from dataclasses import dataclass, field


@dataclass
class Settings:
    db_path: str = 'trackbit.db'
    cors_origins: list[str] = field(default_factory=lambda: ['http://localhost:5173'])
    rate_limit: int = 100
    rate_window: int = 60
    session_ttl_days: int = 30
    log_level: str = 'info'
    port: int = 8000
    workers: int = 2


def _int_env(environ, name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def load_settings(environ=None) -> Settings:
    """Build Settings from the environment (os.environ by default)."""
    env = os.environ if environ is None else environ
    origins = env.get('TRACKBIT_CORS_ORIGINS', 'http://localhost:5173')
    return Settings(
        db_path=env.get('TRACKBIT_DB_PATH', 'trackbit.db'),
        cors_origins=[o.strip() for o in origins.split(',') if o.strip()],
        rate_limit=_int_env(env, 'TRACKBIT_RATE_LIMIT', 100),
        rate_window=_int_env(env, 'TRACKBIT_RATE_WINDOW', 60),
        session_ttl_days=_int_env(env, 'TRACKBIT_SESSION_TTL_DAYS', 30),
        log_level=env.get('TRACKBIT_LOG_LEVEL', 'info').lower(),
        port=_int_env(env, 'TRACKBIT_PORT', 8000),
        workers=_int_env(env, 'TRACKBIT_WORKERS', 2),
    )
