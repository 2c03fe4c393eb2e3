import logging

from logging_config import ContextualFormatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("services.ingestion", logging.WARNING, __file__, 1, "Skipping reading", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_appends_known_context() -> None:
    formatter = ContextualFormatter(fmt="%(message)s")

    line = formatter.format(_record(partition="temp_lt_0", value=-3.5, unrelated="x"))

    assert line == "Skipping reading | partition=temp_lt_0 value=-3.5"


def test_formatter_skips_none_and_leaves_plain_messages() -> None:
    formatter = ContextualFormatter(fmt="%(message)s", extra_keys=["session_id"])

    assert formatter.format(_record(session_id=None)) == "Skipping reading"
    assert formatter.format(_record(session_id="s-1")) == "Skipping reading | session_id=s-1"
