# tests/test_logger.py

import logging

from flowmend.utils.logger import ROOT_LOGGER, get_logger, parse_level, session_logger, set_level


def test_session_logger_prefixes_short_key():
    adapter = session_logger(get_logger("repair"), "abcdef0123456789" * 4)
    msg, _ = adapter.process("attempt 1/3", {})
    assert msg == "[abcdef012345] attempt 1/3"


def test_parse_level():
    assert parse_level("debug") == logging.DEBUG
    assert parse_level(" Warning ") == logging.WARNING
    assert parse_level("chatty") == logging.INFO
    assert parse_level(None, logging.ERROR) == logging.ERROR


def test_set_level():
    root = logging.getLogger(ROOT_LOGGER)
    before = root.level
    try:
        set_level("error")
        assert root.level == logging.ERROR
        assert get_logger("cache").getEffectiveLevel() == logging.ERROR
    finally:
        root.setLevel(before)
