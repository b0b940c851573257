"""Unit tests for configuration and logging setup."""

import logging
from pathlib import Path

import pytest

from config import load_config
from core.logger import LIBRARY_LOGGER, ColoredFormatter, configure_logging, setup_logger

ENV_VARS = (
    "SQLITE_DATABASE_DIR",
    "SQLITE_MAX_CONNECTIONS",
    "SQLITE_BUSY_TIMEOUT",
    "SQLITE_JOURNAL_MODE",
    "SQLITE_IMPORT_BATCH_SIZE",
    "SQLITE_IMPORT_PROGRESS_INTERVAL",
    "SQLITE_MIGRATION_TIMEOUT",
    "LOG_LEVEL",
    "LOG_FILE",
    "LOG_COLORED",
)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Environment with none of the library variables set."""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch


def test_defaults(clean_env, tmp_path):
    """Test defaults when nothing is configured."""
    config = load_config(str(tmp_path / "missing.env"))
    assert config.database_dir == "data"
    assert config.max_connections == 10
    assert config.busy_timeout_ms == 5000
    assert config.journal_mode == "WAL"
    assert config.import_batch_size == 1000
    assert config.import_progress_interval == 100
    assert config.migration_timeout == 30
    assert config.log_level == "INFO"
    assert config.log_colored is True


def test_environment_overrides(clean_env):
    """Test values come from the environment."""
    clean_env.setenv("SQLITE_DATABASE_DIR", "/var/lib/app")
    clean_env.setenv("SQLITE_MAX_CONNECTIONS", "3")
    clean_env.setenv("SQLITE_JOURNAL_MODE", "DELETE")
    clean_env.setenv("LOG_COLORED", "no")

    config = load_config()
    assert config.database_dir == "/var/lib/app"
    assert config.max_connections == 3
    assert config.journal_mode == "DELETE"
    assert config.log_colored is False


def test_invalid_integer_falls_back(clean_env):
    """Test unparsable integers keep the default."""
    clean_env.setenv("SQLITE_MAX_CONNECTIONS", "lots")
    assert load_config().max_connections == 10


def test_env_file_is_read(clean_env, tmp_path):
    """Test a .env file seeds the environment."""
    env_file = tmp_path / "settings.env"
    env_file.write_text("SQLITE_BUSY_TIMEOUT=250\nSQLITE_IMPORT_BATCH_SIZE=50\n", encoding="utf-8")

    config = load_config(str(env_file))
    assert config.busy_timeout_ms == 250
    assert config.import_batch_size == 50


def test_database_path(config, tmp_path):
    """Test logical names map to files in the data directory."""
    assert Path(config.database_path("core")) == tmp_path / "core.sqlite"
    assert config.database_path(":memory:") == ":memory:"


def test_setup_logger_with_file(tmp_path):
    """Test console and file handlers are attached."""
    log_file = tmp_path / "logs" / "db.log"
    logger = setup_logger("database.test", level="debug", log_file=str(log_file), colored=False)
    try:
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 2
        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()
        assert "hello" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in logger.handlers:
            handler.close()
        logger.handlers.clear()


def test_configure_logging_uses_config(config):
    """Test the library logger follows the loaded configuration."""
    logger = configure_logging(config)
    try:
        assert logger.name == LIBRARY_LOGGER
        assert logger.level == logging.DEBUG
        assert not isinstance(logger.handlers[0].formatter, ColoredFormatter)
    finally:
        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)


def test_colored_formatter_leaves_record_untouched():
    """Test coloring does not leak into other handlers."""
    record = logging.LogRecord("database", logging.WARNING, __file__, 1, "careful", None, None)
    output = ColoredFormatter("%(levelname)s %(message)s").format(record)
    assert "\033[33m" in output
    assert record.levelname == "WARNING"
