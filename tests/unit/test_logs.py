"""Tests for logging setup."""

import logging

from rich.logging import RichHandler

from cc_index.logs import setup_logging


def test_setup_logging_is_repeatable():
    setup_logging("debug")
    setup_logging("warning")

    logger = logging.getLogger("cc_index")
    assert logger.level == logging.WARNING
    assert len(logger.handlers) == 1
    assert isinstance(logger.handlers[0], RichHandler)
    assert logging.getLogger("cc_index.indexer").getEffectiveLevel() == logging.WARNING
