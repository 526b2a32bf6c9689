from __future__ import annotations

import json
import logging

from rawprobe.logging_utils import (
    JsonFormatter,
    SensitiveDataFilter,
    configure_logging,
    open_transcript,
    redact_header_lines,
)
from rawprobe.metrics import metrics_payload, record_decode
from rawprobe.response import decode_response


def _record(message: str, args) -> logging.LogRecord:
    return logging.LogRecord("rawprobe.test", logging.INFO, __file__, 1, message, args, None)


def test_sensitive_headers_are_redacted():
    record = _record("Cookie=%(Cookie)s Host=%(Host)s", ({"Cookie": "session=1", "Host": "a"},))

    SensitiveDataFilter().filter(record)

    assert record.getMessage() == "Cookie=[redacted] Host=a"


def test_json_formatter_output():
    payload = json.loads(JsonFormatter().format(_record("hello %s", ("world",))))

    assert payload["message"] == "hello world"
    assert payload["logger"] == "rawprobe.test"
    assert payload["level"] == "INFO"


def test_configure_logging_writes_json_file(tmp_path):
    logfile = tmp_path / "logs" / "rawprobe.log"
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(logging.DEBUG, json_logs=True, logfile=logfile)
        logging.getLogger("rawprobe.test").info("probe %s", "sent")
        for handler in root.handlers:
            handler.flush()
    finally:
        for handler in root.handlers:
            if handler not in saved_handlers:
                handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    lines = logfile.read_text(encoding="utf-8").splitlines()
    assert json.loads(lines[-1])["message"] == "probe sent"


def test_transcript_is_disabled_without_path():
    assert open_transcript(None) is None
    assert open_transcript("") is None


def test_transcript_appends_and_does_not_propagate(tmp_path, caplog):
    path = tmp_path / "transcript.log"
    path.write_text("earlier run\n", encoding="utf-8")

    transcript = open_transcript(path)
    again = open_transcript(path)
    with caplog.at_level(logging.INFO):
        transcript.info("line %d", 1)

    assert again is transcript
    assert len(transcript.handlers) == 1
    assert path.read_text(encoding="utf-8") == "earlier run\nline 1\n"
    assert "line 1" not in caplog.text


def test_metrics_payload_counts_decodes():
    decode_response("")
    record_decode("ok")

    payload, content_type = metrics_payload()

    assert content_type.startswith("text/plain")
    text = payload.decode("utf-8")
    assert 'rawprobe_decode_total{result="empty"}' in text
    assert "rawprobe_exchanges_total" in text


def test_redact_header_lines_only_touches_sensitive_values():
    text = "GET / HTTP/1.1\r\nHost: a\r\ncookie:  sid=1\r\nAuthorization: Basic Zm9v\r\nX-Cookie-Note: keep\r\n"

    assert redact_header_lines(text) == (
        "GET / HTTP/1.1\r\nHost: a\r\ncookie: [redacted]\r\nAuthorization: [redacted]\r\nX-Cookie-Note: keep\r\n"
    )


def test_filter_redacts_positional_request_text():
    record = _record("Request text:\n%s", ("Host: a\r\nSet-Cookie: sid=1\r\n",))

    SensitiveDataFilter().filter(record)

    assert record.getMessage() == "Request text:\nHost: a\r\nSet-Cookie: [redacted]\r\n"


def test_transcript_redacts_sensitive_lines(tmp_path):
    path = tmp_path / "transcript.log"

    open_transcript(path).info("%s", "Host: a\r\nProxy-Authorization: Bearer t\r\n")

    assert path.read_text(encoding="utf-8") == "Host: a\r\nProxy-Authorization: [redacted]\r\n\n"


def test_transcript_redaction_can_be_switched_off(tmp_path):
    path = tmp_path / "transcript.log"

    open_transcript(path, redact=False).info("%s", "Cookie: sid=1")

    assert path.read_text(encoding="utf-8") == "Cookie: sid=1\n"
