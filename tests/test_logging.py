"""
Tests for the JSONL sink and credential redaction.
"""
import json
import logging

from scribebot.utils.logging import JsonlFormatter, SensitiveDataFilter, init_logging


def make_record(msg="hello", **extra):
    record = logging.LogRecord("scribebot.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_jsonl_keeps_field_order_and_drops_empty_fields():
    line = JsonlFormatter().format(make_record(subsys="pipeline", event="pipeline_done", run_id="abc"))
    obj = json.loads(line)

    assert list(obj) == ["ts", "level", "name", "subsys", "event", "run_id", "detail"]
    assert obj["detail"] == "hello"


def test_structured_detail_replaces_message():
    obj = json.loads(JsonlFormatter().format(make_record(detail={"url": "https://youtu.be/x"})))
    assert obj["detail"] == {"url": "https://youtu.be/x"}


def test_redaction_is_recursive_and_case_insensitive():
    detail = {"Authorization": "Bearer abc", "nested": {"SUPABASE_KEY": "secret"}, "table": "articles"}
    record = make_record(detail=detail)

    assert SensitiveDataFilter().filter(record) is True
    assert record.detail == {
        "Authorization": "[REDACTED]",
        "nested": {"SUPABASE_KEY": "[REDACTED]"},
        "table": "articles",
    }
    # Caller's dict is untouched
    assert detail["Authorization"] == "Bearer abc"


def test_init_logging_writes_jsonl(tmp_path, monkeypatch):
    path = tmp_path / "logs" / "run.jsonl"
    monkeypatch.setenv("LOG_JSONL_PATH", str(path))
    monkeypatch.setenv("LOG_LEVEL", "INFO")

    init_logging()
    try:
        logging.getLogger("scribebot.test").info(
            "stage done", extra={"subsys": "pipeline", "detail": {"token": "t0k3n"}}
        )
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert lines[-1]["subsys"] == "pipeline"
        assert lines[-1]["detail"] == {"token": "[REDACTED]"}
    finally:
        for handler in list(logging.getLogger().handlers):
            handler.close()
        logging.getLogger().handlers.clear()
