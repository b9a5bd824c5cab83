import json
import logging

from app.utils.logger import JSONFormatter, get_logger
from app.utils.observability import REQUEST_ID_HEADER, ensure_request_id


def _record(**extra_data):
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, "Payment settled", None, None)
    record.extra_data = extra_data
    return record


def test_json_formatter_merges_extras_and_redacts_secrets():
    line = JSONFormatter().format(_record(job_id="x402_1", signature="0xdead", private_key="0xbeef"))
    entry = json.loads(line)
    assert entry["message"] == "Payment settled"
    assert entry["job_id"] == "x402_1"
    assert entry["signature"] == "***"
    assert entry["private_key"] == "***"


def test_get_logger_nests_under_app():
    assert get_logger("app.services.webhooks").logger.name == "app.services.webhooks"
    assert get_logger("audit").logger.name == "app.audit"


def test_request_id_is_echoed_when_safe():
    assert ensure_request_id({REQUEST_ID_HEADER: "req-123"}) == "req-123"
    generated = ensure_request_id({REQUEST_ID_HEADER: "bad id\nwith newline"})
    assert generated != "bad id\nwith newline"
    assert len(generated) == 32
    assert len(ensure_request_id({})) == 32
