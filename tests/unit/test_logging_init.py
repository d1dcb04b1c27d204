from __future__ import annotations

import logging
from io import StringIO

from campuspulse.logging.init import (
    LOGGER_NAME,
    SUMMARY_LEVEL,
    LabeledFormatter,
    get_logger,
    log_summary,
    setup_logging,
)


def test_setup_logging_creates_logger_with_labeled_formatter():
    logger = setup_logging()
    assert logger.name == LOGGER_NAME == "campuspulse"
    assert logger.level == logging.INFO
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0].formatter, LabeledFormatter)
    assert logger.propagate is False


def test_setup_logging_is_idempotent():
    first = setup_logging()
    second = setup_logging()
    assert first is second
    assert len(second.handlers) == 1
    assert get_logger() is first


def test_labeled_prefixes():
    out = StringIO()
    logger = logging.getLogger("campuspulse_test_labels")
    logger.setLevel(logging.DEBUG)
    for h in logger.handlers[:]:
        logger.removeHandler(h)
    handler = logging.StreamHandler(out)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)
    logger.propagate = False

    logger.debug("d")
    logger.info("i")
    logger.warning("w")
    logger.error("e")
    logger.log(SUMMARY_LEVEL, "s")

    assert out.getvalue().splitlines() == ["DEBUG d", "INFO i", "WARN w", "ERROR e", "SUMMARY s"]


def test_labeled_formatter_includes_traceback():
    out = StringIO()
    logger = logging.getLogger("campuspulse_test_exc")
    for h in logger.handlers[:]:
        logger.removeHandler(h)
    handler = logging.StreamHandler(out)
    handler.setFormatter(LabeledFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        logger.exception("failed")
    text = out.getvalue()
    assert text.startswith("ERROR failed")
    assert "RuntimeError: boom" in text


def test_log_summary_and_child_loggers(capsys):
    setup_logging()
    logging.getLogger("campuspulse.services.worker").info("from child")
    log_summary("dataset=x status=complete")
    out = capsys.readouterr().out
    assert "INFO from child" in out
    assert "SUMMARY dataset=x status=complete" in out
