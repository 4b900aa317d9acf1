from loguru import logger

from main import configure_logging


def test_log_level_comes_from_env(monkeypatch):
    messages = []
    monkeypatch.setenv("LOG_LEVEL", "warning")
    try:
        configure_logging(messages.append)
        logger.info("order created")
        logger.warning("gateway slow")
    finally:
        monkeypatch.delenv("LOG_LEVEL")
        configure_logging()

    assert len(messages) == 1
    assert "| WARNING  |" in messages[0]
    assert ":test_log_level_comes_from_env:" in messages[0]
    assert messages[0].rstrip().endswith("gateway slow")
