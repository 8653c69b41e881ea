import json
import logging

from partner_backend.utils.logger import JSONFormatter, get_logger


def test_loggers_live_under_package_namespace():
    assert get_logger("audit").logger.name == "partner_backend.audit"
    assert get_logger("partner_backend.jobs.worker").logger.name == "partner_backend.jobs.worker"


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


def test_bound_context_is_attached_to_records():
    logger = get_logger("tests.bind").bind(task_key="tapfiliate:7", attempt=2)
    handler = ListHandler()
    logger.logger.addHandler(handler)
    logger.logger.setLevel(logging.INFO)
    try:
        logger.info("Task finished", status="done", skipped=None)
    finally:
        logger.logger.removeHandler(handler)

    record = handler.records[-1]
    assert record.context == {"task_key": "tapfiliate:7", "attempt": 2, "status": "done"}


def test_json_formatter_merges_context():
    record = logging.LogRecord("partner_backend.x", logging.INFO, __file__, 1, "hello", None, None)
    record.context = {"period": "2025-01", "buckets": 3}

    entry = json.loads(JSONFormatter().format(record))

    assert entry["message"] == "hello"
    assert entry["period"] == "2025-01"
    assert entry["buckets"] == 3
