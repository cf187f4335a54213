"""
wallet_config -- single public entrypoint for wallet configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Services receive the returned ``WalletConfig``
    (or one of its sections) by injection; they never read files or
    environment variables themselves.

Architecture position:
    Configuration -- sits beside ``wallet_kernel``.  The kernel's services
    accept the frozen settings objects defined here.

Failure modes:
    - ``FileNotFoundError`` -- config_path does not exist.
    - ``yaml.YAMLError`` -- malformed YAML.
    - ``ValueError`` -- a value failed validation.

Audit relevance:
    Every call emits a ``WALLET_CONFIG_TRACE`` log entry with the config id,
    version and checksum so a ledger run can be tied to its settings.
"""

from __future__ import annotations

import logging
from pathlib import Path

from wallet_config.loader import load_yaml_file, parse_config
from wallet_config.schema import CommissionPolicy, PayoutSettings, WalletConfig, WalletSettings

_logger = logging.getLogger("wallet_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(config_path: Path | str | None = None) -> WalletConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to the bundled
            defaults.yaml.

    Returns:
        WalletConfig -- frozen, validated settings.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If validation fails.
    """
    path = Path(config_path) if config_path is not None else DEFAULT_CONFIG_PATH
    config = parse_config(load_yaml_file(path))

    _logger.info(
        "WALLET_CONFIG_TRACE",
        extra={
            "trace_type": "WALLET_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "WalletConfig",
    "WalletSettings",
    "CommissionPolicy",
    "PayoutSettings",
    "DEFAULT_CONFIG_PATH",
]
