# sqlguard/config/defaults.py

import logging
import os
from dataclasses import dataclass, field, fields

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, fallback: str = "false") -> bool:
    return (os.getenv(name, fallback) or fallback).strip().lower() in (
        "1", "true", "yes", "y", "on",
    )


def _env_int(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return fallback
    try:
        return int(raw)
    except ValueError:
        return fallback


@dataclass
class Default:
    """
    Process-wide settings, read once from the environment.

    * ``LOG_LEVEL``          – level of the ``sqlguard`` logger.
    * ``SQL_DIALECT``        – sqlglot dialect used to parse and render statements.
    * ``IDENTITY_COLUMN``    – column a row condition uses to identify the owner;
      qualified with the table alias when the rewriter injects it.
    * ``SESSION_TTL_SEC``    – lifetime of a session created by ``SessionManager``.
    * ``HIDE_DENIAL_DETAIL`` – when true, denials only name the object, not the scope.
    * ``DUCKDB_*``           – execution engine settings.
    """
    LOG_LEVEL: str = field(default_factory=lambda: os.getenv("SQLGUARD_LOG_LEVEL", "INFO"))
    SQL_DIALECT: str = field(default_factory=lambda: os.getenv("SQLGUARD_SQL_DIALECT", "duckdb"))
    IDENTITY_COLUMN: str = field(default_factory=lambda: os.getenv("SQLGUARD_IDENTITY_COLUMN", "user_id"))
    SESSION_TTL_SEC: int = field(default_factory=lambda: _env_int("SQLGUARD_SESSION_TTL_SEC", 24 * 60 * 60))
    HIDE_DENIAL_DETAIL: bool = field(default_factory=lambda: _env_bool("SQLGUARD_HIDE_DENIAL_DETAIL"))
    DUCKDB_DATABASE: str = field(default_factory=lambda: os.getenv("SQLGUARD_DUCKDB_DATABASE", ":memory:"))
    DUCKDB_MEMORY_LIMIT: str = field(default_factory=lambda: os.getenv("SQLGUARD_DUCKDB_MEMORY_LIMIT", "1GB"))
    DUCKDB_THREADS: int = field(default_factory=lambda: _env_int("SQLGUARD_DUCKDB_THREADS", 0))

    def update_default(self, **kwargs) -> None:
        """Override settings at runtime, e.g. ``default.update_default(SQL_DIALECT="sqlite")``."""
        known = {f.name for f in fields(self)}
        for key, value in kwargs.items():
            if key not in known:
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)
        if "LOG_LEVEL" in kwargs:
            logger.setLevel(self.LOG_LEVEL.upper())


def _build_logger(level: str) -> logging.Logger:
    log = logging.getLogger("sqlguard")
    if not log.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        log.addHandler(handler)
    try:
        log.setLevel(level.upper())
    except ValueError:
        log.setLevel(logging.INFO)
    return log


default = Default()
logger = _build_logger(default.LOG_LEVEL)
