import logging

import pytest

from trendwarden.common.utils.logging import set_log_level, setup_logger


def test_setup_logger_does_not_duplicate_handlers():
    a = setup_logger("tw-test-dup")
    b = setup_logger("tw-test-dup")
    assert a is b
    assert len(a.handlers) == 1
    assert a.propagate is False


def test_set_log_level_updates_known_loggers():
    logger = setup_logger("tw-test-level")
    try:
        set_log_level("DEBUG")
        assert logger.level == logging.DEBUG
        set_log_level(logging.WARNING)
        assert logger.level == logging.WARNING
        with pytest.raises(ValueError):
            set_log_level("LOUD")
    finally:
        set_log_level("INFO")
