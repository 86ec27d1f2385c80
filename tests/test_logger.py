"""Tests for the shared logging setup."""

import logging
import logging.handlers

from league.config import Config
from league.utils import logger as league_logger
from league.utils.logger import get_log_level, setup_logger


def test_loggers_share_rotating_handlers(tmp_path, monkeypatch):
    monkeypatch.setattr(Config, "LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setattr(Config, "DEBUG", False)
    monkeypatch.setattr(Config, "LOG_LEVEL", "INFO")
    monkeypatch.setattr(league_logger, "_handlers", None)

    lobbies = setup_logger("league.tests.lobbies")
    matches = setup_logger("league.tests.matches")
    try:
        assert setup_logger("league.tests.lobbies") is lobbies
        assert len(lobbies.handlers) == 3
        assert lobbies.handlers == matches.handlers
        assert not lobbies.propagate
        assert sum(
            isinstance(h, logging.handlers.TimedRotatingFileHandler) for h in lobbies.handlers
        ) == 2

        lobbies.info("Lobby 1 created")
        lobbies.debug("seat map refreshed")
        matches.error("Countdown for Lobby 1 crashed")
        for handler in lobbies.handlers:
            handler.flush()

        main_log = (tmp_path / "logs" / "league.log").read_text(encoding="utf-8")
        error_log = (tmp_path / "logs" / "league-errors.log").read_text(encoding="utf-8")
        assert "Lobby 1 created" in main_log
        assert "Countdown for Lobby 1 crashed" in main_log
        assert "seat map refreshed" not in main_log
        assert "Countdown for Lobby 1 crashed" in error_log
        assert "Lobby 1 created" not in error_log
    finally:
        for handler in lobbies.handlers:
            handler.close()
        lobbies.handlers.clear()
        matches.handlers.clear()


def test_log_level_from_config(monkeypatch):
    monkeypatch.setattr(Config, "DEBUG", False)
    monkeypatch.setattr(Config, "LOG_LEVEL", "warning")
    assert get_log_level() == logging.WARNING

    monkeypatch.setattr(Config, "LOG_LEVEL", "chatty")
    assert get_log_level() == logging.INFO

    monkeypatch.setattr(Config, "DEBUG", True)
    assert get_log_level() == logging.DEBUG


def test_feed_and_redis_loggers_use_league_handlers():
    from league.services import change_feed
    from league.utils import redis_utils

    for module_logger in (change_feed.logger, redis_utils.logger):
        assert module_logger.handlers
        assert not module_logger.propagate
    assert change_feed.logger.handlers == redis_utils.logger.handlers
