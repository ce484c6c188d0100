import logging
from pathlib import Path

from src.rules.models import Rules

logger = logging.getLogger(__name__)


def configure_logging(rules: Rules) -> None:
    """Configure root logging from the rules' logging section."""
    level = logging.getLevelName(rules.logging.level.upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {rules.logging.level}")
    logging.basicConfig(level=level, format=rules.logging.format, force=True)


def validate_storage_rules(rules: Rules, base_dir: Path) -> None:
    """
    Validate storage settings before startup.

    Raises:
        ValueError: Unsupported backend or missing migrations directory.
    """
    storage = rules.storage

    if storage.backend != "sqlite":
        raise ValueError(f"Unsupported storage backend: {storage.backend}")

    migrations = base_dir / storage.migrations_dir
    if not migrations.is_dir():
        raise ValueError(f"Migrations directory not found: {migrations}")

    logger.debug("Storage configuration validated (db=%s)", storage.db_path)
