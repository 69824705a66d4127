"""YAML ledger file loader and writer."""

import logging
import os
from pathlib import Path
from typing import Optional

import yaml

from . import constants
from .schema import LedgerFile
from .store import InMemoryStore

logger = logging.getLogger(__name__)


def find_ledger_file() -> Optional[Path]:
    """
    Locate the ledger file.

    Search order:
    1. BILLSCHEDULE_FILE environment variable
    2. ledger.yaml in current directory

    Returns:
        Path to the ledger file or None if not found
    """
    if env_file := os.getenv(constants.ENV_LEDGER_FILE):
        path = Path(env_file)
        if path.is_file():
            return path
        logger.warning("BILLSCHEDULE_FILE points to non-existent file: %s", env_file)

    cwd_file = Path.cwd() / constants.DEFAULT_LEDGER_FILE
    if cwd_file.is_file():
        return cwd_file

    return None


def load_ledger_file(filepath: Path) -> LedgerFile:
    """
    Load and validate a ledger file.

    Args:
        filepath: Path to the YAML ledger

    Returns:
        LedgerFile object; an empty file yields an empty ledger

    Raises:
        yaml.YAMLError: If YAML parsing fails
        pydantic.ValidationError: If schema validation fails
    """
    logger.info("Loading ledger from: %s", filepath)

    try:
        with filepath.open() as f:
            data = yaml.safe_load(f)

        if data is None:
            logger.warning("Empty ledger file: %s", filepath)
            return LedgerFile()

        # Sections that are present but entirely commented out load as None
        for key in ("settings", "products", "subjects", "charges", "payments", "links"):
            if key in data and data[key] is None:
                data[key] = []

        ledger = LedgerFile(**data)

        logger.info(
            "Loaded %d subjects, %d charges, %d payments",
            len(ledger.subjects),
            len(ledger.charges),
            len(ledger.payments),
        )
        return ledger

    except yaml.YAMLError as e:
        logger.error("YAML parsing error in %s: %s", filepath, e)
        raise
    except Exception as e:
        logger.error("Error loading ledger from %s: %s", filepath, e)
        raise


def save_ledger_file(ledger: LedgerFile, filepath: Path) -> None:
    """Write a ledger file, replacing any existing content."""
    data = ledger.model_dump(mode="json", exclude_none=True)
    with filepath.open("w") as f:
        yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
    logger.info("Saved ledger to: %s", filepath)


def open_store(filepath: Path) -> InMemoryStore:
    """Load a ledger file into a record store."""
    return InMemoryStore.from_ledger(load_ledger_file(filepath))


def save_store(store: InMemoryStore, filepath: Path) -> None:
    """Write every record of a store back to a ledger file."""
    save_ledger_file(store.to_ledger(), filepath)
