import json
import logging
from decimal import Decimal
from pathlib import Path

from core.types import FailureReason, Phase, ScanFailure
from utils.error_handling import ConfigurationError, ErrorReporter, ScannerError
from utils.logger import colored_print, setup_logger
from utils.serialization import json_dumps


def test_structured_log_file_gets_one_json_object_per_record(tmp_path):
    target = tmp_path / "logs" / "scan.jsonl"
    logger = setup_logger(
        name="shopscan-test-structured",
        level=logging.DEBUG,
        log_file=None,
        console=False,
        structured_file=str(target),
    )
    try:
        logger.info("phase started", extra={"event_type": "phase", "event_data": {"phase": "catalog"}})
        logger.warning("plain record")
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)

    records = [json.loads(line) for line in target.read_text(encoding="utf-8").splitlines()]
    assert [record["level"] for record in records] == ["INFO", "WARNING"]
    assert records[0]["event_type"] == "phase"
    assert records[0]["event_data"] == {"phase": "catalog"}
    assert records[1]["event_type"] == "general"


def test_setup_logger_without_files_creates_nothing(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    logger = setup_logger(name="shopscan-test-console", log_file=None, console=True)
    try:
        assert len(logger.handlers) == 1
        assert list(tmp_path.iterdir()) == []
    finally:
        logger.handlers.clear()


def test_colored_print_writes_message(capsys):
    colored_print("NOTIFY", "Free item found")

    assert "Free item found" in capsys.readouterr().out


def test_error_reporter_keeps_recent_failures_per_category():
    reporter = ErrorReporter(keep_recent=2)
    for index in range(3):
        reporter.report("timeout", f"slow {index}", f"https://example.com/{index}")
    reporter.report("http_4xx", "HTTP 404")

    report = reporter.generate_report()

    assert reporter.total == 4
    assert report["error_types"] == {"timeout": 3, "http_4xx": 1}
    assert [entry["message"] for entry in report["recent_errors"]["timeout"]] == ["slow 1", "slow 2"]


def test_configuration_error_carries_context():
    error = ConfigurationError("bad probes", {"path": "probes.json"})

    assert isinstance(error, ScannerError)
    assert str(error) == "bad probes"
    assert error.context == {"path": "probes.json"}


def test_json_dumps_handles_scan_objects():
    payload = {
        "price": Decimal("4.99"),
        "phase": Phase.CATALOG,
        "handles": {"b", "a"},
        "path": Path("out/report.txt"),
        "failure": ScanFailure(FailureReason.NO_STOREFRONT, "example.com"),
    }

    decoded = json.loads(json_dumps(payload, sort_keys=True))

    assert decoded == {
        "failure": {"error": "no reachable storefront found", "success": False, "target": "example.com"},
        "handles": ["a", "b"],
        "path": "out/report.txt",
        "phase": "catalog",
        "price": 4.99,
    }
