"""
Engine Configuration Schema.

Database connection, pool sizing, logging level and amount tolerance for the
calculation audit engine.  Loaded from defaults, a dict, a YAML file or the
environment, then handed to ``bootstrap()`` which initializes the engine and
logging.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from decimal import Decimal
from pathlib import Path
from typing import Any, Self

import yaml

from calc_audit_kernel.logging_config import configure_logging, get_logger

logger = get_logger("config")

ENV_PREFIX = "CALC_AUDIT_"
DEFAULT_DATABASE_URL = "sqlite:///calc_audit.db"


@dataclass
class EngineConfig:
    """
    Configuration schema for the calculation audit engine.
    """

    database_url: str = DEFAULT_DATABASE_URL
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800
    log_level: str = "INFO"
    amount_tolerance: Decimal = Decimal("0.01")

    def __post_init__(self):
        if not self.database_url:
            raise ValueError("database_url is required")
        if self.pool_size < 1:
            raise ValueError("pool_size must be >= 1")
        if self.max_overflow < 0:
            raise ValueError("max_overflow cannot be negative")
        if not isinstance(self.amount_tolerance, Decimal):
            self.amount_tolerance = Decimal(str(self.amount_tolerance))
        if self.amount_tolerance < 0:
            raise ValueError("amount_tolerance cannot be negative")
        if logging.getLevelName(self.log_level.upper()) == f"Level {self.log_level.upper()}":
            raise ValueError(f"Unknown log_level: {self.log_level}")

    @property
    def log_level_number(self) -> int:
        return logging.getLevelName(self.log_level.upper())

    @classmethod
    def with_defaults(cls) -> Self:
        """Create config with standard defaults."""
        logger.info("engine_config_created_with_defaults")
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> Self:
        """Create config from dictionary.  Unknown keys are rejected."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown engine config keys: {unknown}")
        logger.info(
            "engine_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """
        Load config from a YAML file.

        The file may hold the settings at top level or under an ``engine``
        key.

        Raises:
            FileNotFoundError: if the file does not exist.
            yaml.YAMLError: if the file contains invalid YAML.
        """
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if "engine" in data and isinstance(data["engine"], dict):
            data = data["engine"]
        return cls.from_dict(data)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Self:
        """
        Load config from ``CALC_AUDIT_*`` environment variables.

        ``CALC_AUDIT_DATABASE_URL`` maps to ``database_url`` and so on;
        unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {}
        for f in fields(cls):
            raw = env.get(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is None:
                continue
            data[f.name] = _coerce(f.name, raw)
        return cls.from_dict(data)


def _coerce(name: str, raw: str) -> Any:
    defaults = EngineConfig.__dataclass_fields__[name].default
    if isinstance(defaults, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(defaults, int):
        return int(raw)
    if isinstance(defaults, Decimal):
        return Decimal(raw)
    return raw


def bootstrap(config: EngineConfig, create_schema: bool = False):
    """
    Initialize logging and the database engine from ``config``.

    Returns:
        The session factory to hand to CalculationStore.
    """
    from calc_audit_kernel.db.engine import (
        create_tables,
        get_session_factory,
        init_engine_from_url,
    )

    configure_logging(level=config.log_level_number)
    engine = init_engine_from_url(
        config.database_url,
        echo=config.echo,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
        pool_recycle=config.pool_recycle,
    )
    if create_schema:
        create_tables(engine)
    return get_session_factory()
