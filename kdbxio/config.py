"""
Configuration — defaults merged with an optional TOML file.

Lookup order for the file: explicit path, $KDBXIO_CONFIG, ~/.kdbxio/config.toml.

    block_size = 8192        # hashed block payload ceiling
    little_endian = true     # KeePass byte order for seq/length fields
    encoding = "utf-8"       # text encoding of protected fields
    log_level = "WARNING"
"""

from __future__ import annotations

import codecs
import logging
import os
from pathlib import Path
from typing import Any

from kdbxio import DEFAULT_ENCODING, HASHED_BLOCK_MAX_LENGTH, HASHED_BLOCK_SIZE

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".kdbxio" / "config.toml"

DEFAULT_CONFIG: dict[str, Any] = {
    "block_size": HASHED_BLOCK_SIZE,
    "little_endian": False,
    "encoding": DEFAULT_ENCODING,
    "log_level": "WARNING",
}

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# Codec names (as normalised by codecs.lookup) that expat can read back
_READABLE_ENCODINGS = frozenset({"utf-8", "utf-16", "iso8859-1", "ascii"})


def _config_path(config_path: str | Path | None) -> Path:
    if config_path:
        return Path(config_path)
    env_path = os.environ.get("KDBXIO_CONFIG", "")
    return Path(env_path) if env_path else DEFAULT_CONFIG_PATH


def validate_config(config: dict[str, Any]) -> None:
    """Raise ValueError for values the framer or encoder would reject."""
    block_size = config["block_size"]
    if isinstance(block_size, bool) or not isinstance(block_size, int):
        raise ValueError(f"block_size must be an integer, got {block_size!r}")
    if not 0 < block_size <= HASHED_BLOCK_MAX_LENGTH:
        raise ValueError(f"block_size out of range: {block_size}")
    if not isinstance(config["little_endian"], bool):
        raise ValueError(f"little_endian must be true or false, got {config['little_endian']!r}")
    try:
        codec = codecs.lookup(config["encoding"])
    except (LookupError, TypeError) as e:
        raise ValueError(f"Unknown encoding: {config['encoding']!r}") from e
    if codec.name not in _READABLE_ENCODINGS:
        raise ValueError(
            f"Unsupported document encoding: {config['encoding']!r} "
            f"(supported: {', '.join(sorted(_READABLE_ENCODINGS))})"
        )
    if str(config["log_level"]).upper() not in _LOG_LEVELS:
        raise ValueError(f"Unknown log_level: {config['log_level']!r}")


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load config from a TOML file, falling back to defaults."""
    config = dict(DEFAULT_CONFIG)

    path = _config_path(config_path)
    if path.is_file():
        try:
            import tomllib
        except ImportError:
            try:
                import tomli as tomllib
            except ImportError:
                log.warning("tomllib/tomli not available, using default config")
                return config

        try:
            with open(path, "rb") as f:
                file_config = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            log.warning("Failed to load config from %s: %s", path, e)
            return config

        unknown = set(file_config) - set(DEFAULT_CONFIG)
        if unknown:
            log.warning("Ignoring unknown config keys in %s: %s", path, ", ".join(sorted(unknown)))
        config.update({k: v for k, v in file_config.items() if k in DEFAULT_CONFIG})
    elif config_path:
        log.warning("Config file not found: %s", path)

    validate_config(config)
    return config
