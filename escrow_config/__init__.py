"""
escrow_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides ``get_active_config()``, the only way the composition root
    obtains database, transaction and ledger settings.  Services never read
    files or environment variables themselves; they receive what they need
    through their constructors.

Resolution order:
    1. ``path`` argument, if given.
    2. ``ESCROW_CONFIG`` environment variable.
    3. The packaged ``defaults.yaml``.
    ``ESCROW_DATABASE_URL`` then overrides ``database.url``.

Audit relevance:
    Every successful call emits an ``escrow_config_loaded`` log entry with
    the source path and the SHA-256 checksum of the parsed document.
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from escrow_config.loader import load_yaml_file, parse_config
from escrow_config.schema import (
    DatabaseSettings,
    EscrowConfig,
    LedgerSettings,
    TransactionSettings,
)

__all__ = [
    "DatabaseSettings",
    "EscrowConfig",
    "LedgerSettings",
    "TransactionSettings",
    "get_active_config",
]

_logger = logging.getLogger("escrow_kernel.config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> EscrowConfig:
    """Load, validate and return the active configuration.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        KeyError / ValueError: If the document fails validation.
    """
    source = Path(path or os.environ.get("ESCROW_CONFIG") or _DEFAULT_CONFIG_PATH)
    config = parse_config(load_yaml_file(source))

    url_override = os.environ.get("ESCROW_DATABASE_URL")
    if url_override:
        config = dataclasses.replace(
            config,
            database=dataclasses.replace(config.database, url=url_override),
        )

    _logger.info(
        "escrow_config_loaded",
        extra={
            "source": str(source),
            "checksum": config.checksum,
            "url_overridden": bool(url_override),
        },
    )
    return config
