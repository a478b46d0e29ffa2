"""
Tests for structured logging formatters and setup.
"""
import json
import logging
import sys

from geoproximity.logging_config import DevelopmentFormatter, StructuredJSONFormatter, setup_logging


def make_record(msg="search done", level=logging.INFO, **extra):
    record = logging.LogRecord("geoproximity.test", level, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredJSONFormatter:

    def test_basic_fields(self):
        entry = json.loads(StructuredJSONFormatter("geo-test").format(make_record()))

        assert entry["level"] == "INFO"
        assert entry["service"] == "geo-test"
        assert entry["logger"] == "geoproximity.test"
        assert entry["message"] == "search done"
        assert entry["timestamp"].endswith("Z")

    def test_context_fields_are_top_level(self):
        record = make_record(entity_id="abc", radius_m=20000.0, coordinates={"lat": 1.0, "lon": 2.0})

        entry = json.loads(StructuredJSONFormatter().format(record))

        assert entry["entity_id"] == "abc"
        assert entry["radius_m"] == 20000.0
        assert entry["coordinates"] == {"lat": 1.0, "lon": 2.0}
        assert "entity_id" not in entry.get("extra", {})

    def test_other_extras_are_nested(self):
        entry = json.loads(StructuredJSONFormatter().format(make_record(bucket=(1, 2), inconsistency="absent")))

        assert entry["extra"]["inconsistency"] == "absent"
        assert entry["extra"]["bucket"] == [1, 2]

    def test_exception_info(self):
        try:
            raise ValueError("bad value")
        except ValueError:
            record = make_record(level=logging.ERROR)
            record.exc_info = sys.exc_info()

        entry = json.loads(StructuredJSONFormatter().format(record))

        assert entry["exception"]["type"] == "ValueError"
        assert "bad value" in entry["exception"]["message"]


class TestSetup:

    def test_setup_logging_installs_single_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level="DEBUG", use_json=True)
            setup_logging(level="WARNING", use_json=False)

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, DevelopmentFormatter)
            assert root.level == logging.WARNING
            assert logging.getLogger("geoproximity.services.registrar").level == logging.WARNING
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
