"""
Configuration for the offline chain audit.
All values come from the environment (optionally a .env file).
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional


def _env_float(key: str, default: float) -> float:
    raw = os.environ.get(key)
    return float(raw) if raw is not None else default


def _env_bool(key: str, default: bool = False) -> bool:
    raw = os.environ.get(key, "").lower()
    if raw in ("1", "true", "yes"):
        return True
    if raw in ("0", "false", "no"):
        return False
    return default


@dataclass
class AuditConfig:
    """Where the API lives and how thorough the audit should be."""
    api_url: str = field(default_factory=lambda: os.environ.get("VITALAI_API_URL", "http://localhost:8000"))
    verify_documents: bool = field(default_factory=lambda: _env_bool("CHAIN_AUDIT_VERIFY", True))
    timeout: float = field(default_factory=lambda: _env_float("CHAIN_AUDIT_TIMEOUT", 10.0))
    log_level: str = field(default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO"))

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "AuditConfig":
        """Load config from environment, optionally loading from .env file."""
        if env_file is not None and env_file.exists():
            from dotenv import load_dotenv
            load_dotenv(env_file)
        return cls()
