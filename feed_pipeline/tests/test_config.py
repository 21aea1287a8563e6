"""
Tests for log formatting and setup.
"""

import json
import logging

from feed_pipeline.config import JsonFormatter, KeyValueFormatter, _parse_bool, setup_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("feed_pipeline.jobs", logging.INFO, __file__, 10, "Job completed", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_key_value_appends_extra_fields(self):
        line = KeyValueFormatter("%(levelname)s %(message)s").format(_record(job_id="7", duration_ms=12))
        assert line == "INFO Job completed job_id=7 duration_ms=12"

    def test_key_value_without_extras(self):
        assert KeyValueFormatter("%(message)s").format(_record()) == "Job completed"

    def test_json_includes_extras(self):
        entry = json.loads(JsonFormatter().format(_record(queue="feed-ingest")))

        assert entry["level"] == "info"
        assert entry["logger"] == "feed_pipeline.jobs"
        assert entry["message"] == "Job completed"
        assert entry["queue"] == "feed-ingest"


class TestSetup:

    def test_setup_logging_installs_one_handler(self):
        logger = logging.getLogger("feed_pipeline")
        saved = (logger.handlers[:], logger.level, logger.propagate)
        try:
            setup_logging("debug", "json")
            setup_logging("debug", "json")

            assert len(logger.handlers) == 1
            assert isinstance(logger.handlers[0].formatter, JsonFormatter)
            assert logger.level == logging.DEBUG
        finally:
            logger.handlers, level, logger.propagate = saved
            logger.setLevel(level)

    def test_parse_bool(self):
        assert _parse_bool("Yes") is True
        assert _parse_bool("0") is False
        assert _parse_bool(None, default=True) is True
