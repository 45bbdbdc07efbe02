"""Tests for logging setup."""

import json
import logging

from stockwatch.logging_config import get_logger, setup_logging


def test_setup_writes_json_lines(tmp_path):
    root = setup_logging(tmp_path)
    try:
        get_logger("stockwatch.test", item_id="SKU1").warning("checked")
        for handler in root.handlers:
            handler.flush()

        lines = (tmp_path / "logs" / "app.log").read_text(encoding="utf-8").splitlines()
        record = json.loads(lines[-1])

        assert record["message"] == "checked"
        assert record["level"] == "WARNING"
        assert record["logger"] == "stockwatch.test"
        assert record["item_id"] == "SKU1"
        assert record["timestamp"].endswith("Z")
        assert (tmp_path / "logs" / "error.log").exists()
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)


def test_context_fields_merge_with_call_site_extra():
    logger = logging.getLogger("stockwatch.test.context")
    records = []
    handler = logging.Handler()
    handler.emit = records.append
    logger.addHandler(handler)
    try:
        get_logger("stockwatch.test.context", item_id="SKU1").warning(
            "checked", extra={"path": "markup", "item_id": "other"}
        )
    finally:
        logger.removeHandler(handler)

    assert records[0].path == "markup"
    assert records[0].item_id == "SKU1"
