import json
import sys
import logging

from wendi_api.logging_config import ConversationLogger, JSONFormatter, get_logger


def _record(logger_name="wendi.test", **extra):
    record = logging.LogRecord(logger_name, logging.INFO, __file__, 1, "Inbound message handled", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(_record()))
        assert data["level"] == "INFO"
        assert data["logger"] == "wendi.test"
        assert data["message"] == "Inbound message handled"
        assert "context" not in data

    def test_context_is_included(self):
        data = json.loads(JSONFormatter().format(_record(context={"conversation_id": 7})))
        assert data["context"] == {"conversation_id": 7}

    def test_exception_type(self):
        try:
            raise ValueError("bad graph")
        except ValueError:
            record = logging.LogRecord("wendi.test", logging.ERROR, __file__, 1, "failed", None, None)
            record.exc_info = sys.exc_info()
        data = json.loads(JSONFormatter().format(record))
        assert data["exception_type"] == "ValueError"
        assert "bad graph" in data["exception"]


class TestConversationLogger:
    def test_merges_adapter_and_call_context(self):
        adapter = ConversationLogger(get_logger("test"), {"conversation_id": 7})
        msg, kwargs = adapter.process("hello", {"context": {"node_id": "B"}})
        assert msg == "hello"
        assert kwargs["extra"] == {"context": {"conversation_id": 7, "node_id": "B"}}

    def test_namespace(self):
        assert get_logger("dispatcher").name == "wendi.dispatcher"
