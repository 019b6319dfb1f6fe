"""Logging configuration for knock-relay.

All modules log under the "knockrelay" logger. Individual modules can be
made more or less verbose with the log_levels config mapping, e.g.
{"connection": "DEBUG"} to trace every dropped send without turning on
DEBUG for the classifiers.
"""

import logging
from pathlib import Path

from knockrelay.config import Config

ROOT_LOGGER = "knockrelay"

# Module-level logger cache
_logger: logging.Logger | None = None
_module_loggers: list[logging.Logger] = []


def _level(name: str, default: int = logging.INFO) -> int:
    return getattr(logging, str(name).upper(), default)


def setup_logging(config: Config) -> logging.Logger:
    """Set up logging based on configuration.

    Idempotent: later calls return the logger configured by the first.

    Args:
        config: Configuration object with log settings.

    Returns:
        Configured "knockrelay" logger.
    """
    global _logger

    if _logger is not None:
        return _logger

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(_level(config.log_level))
    logger.handlers.clear()

    # 2025-01-27 10:30:45 [INFO] message
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s")
    formatter.datefmt = "%Y-%m-%d %H:%M:%S"

    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Don't double-log through the root logger
    logger.propagate = False

    for module, level in config.log_levels.items():
        name = module if module.startswith(f"{ROOT_LOGGER}.") else f"{ROOT_LOGGER}.{module}"
        module_logger = logging.getLogger(name)
        module_logger.setLevel(_level(level, logger.level))
        _module_loggers.append(module_logger)

    _logger = logger
    return logger


def reset_logging() -> None:
    """Reset logging state. Used for testing."""
    global _logger
    for module_logger in _module_loggers:
        module_logger.setLevel(logging.NOTSET)
    _module_loggers.clear()
    if _logger is not None:
        for handler in _logger.handlers:
            handler.close()
        _logger.handlers.clear()
        _logger.propagate = True
        _logger = None


def short_token(token: str) -> str:
    """Truncate a token for log output.

    Only a prefix of a token is ever logged.
    """
    return f"{token[:8]}..."
