"""
工具模块测试 - 异常结构、负载检查、类型转换和日志格式
"""

import json
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID

import pytest

from dbweave.telemetry.logger import JsonFormatter, ROOT_LOGGER_NAME, setup_logging
from dbweave.utils.errors import (
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseError,
    QueryError,
    TransactionError,
    ValidationError,
)
from dbweave.utils.parameter_sanitizer import (
    MAX_COLLECTION_NAME_LENGTH,
    ensure_safe_payload,
    find_denied_operator,
    sanitize_collection_name,
)
from dbweave.utils.type_converter import convert_to_serializable, describe_value_type


class TestErrors:

    def test_hierarchy(self):
        for error_class in (DatabaseConnectionError, TransactionError, QueryError, ConfigurationError):
            assert issubclass(error_class, DatabaseError)
        assert issubclass(ValidationError, DatabaseError)

    def test_operation_category(self):
        assert DatabaseConnectionError("x").operation == "connection"
        assert TransactionError("x").operation == "transaction"
        assert QueryError("x").operation == "query"
        assert ConfigurationError("x").operation == "configuration"

    def test_str_includes_backend(self):
        assert str(QueryError("bad", database_type="redis")) == "[redis] bad"
        assert str(ConfigurationError("missing")) == "missing"

    def test_query_error_to_dict(self):
        error = QueryError("bad", database_type="postgresql", query="SELECT $1", parameters=(1,))
        data = error.to_dict()
        assert data["error_type"] == "QueryError"
        assert data["query"] == "SELECT $1"
        assert data["parameters"] == [1]
        assert data["database_type"] == "postgresql"

    def test_validation_and_configuration_fields(self):
        assert ValidationError("port", "bad port", value=0).to_dict()["field"] == "port"
        assert ConfigurationError("x", config_key="connections.a").to_dict()["config_key"] == "connections.a"


class TestSanitizer:

    def test_strips_unsafe_characters(self):
        assert sanitize_collection_name("us$ers.{}") == "users"
        assert sanitize_collection_name("order_items-2024") == "order_items-2024"

    @pytest.mark.parametrize("name", ["", "$$$", "system", "Admin", "local", "config", None, 42])
    def test_rejected_names(self, name):
        with pytest.raises(QueryError):
            sanitize_collection_name(name)

    def test_length_limit(self):
        assert sanitize_collection_name("a" * MAX_COLLECTION_NAME_LENGTH)
        with pytest.raises(QueryError):
            sanitize_collection_name("a" * (MAX_COLLECTION_NAME_LENGTH + 1))

    def test_denied_operators_found_anywhere(self):
        assert find_denied_operator({"$where": "1"}) == "$where"
        assert find_denied_operator({"a": [{"b": {"$Eval": 1}}]}) == "$eval"
        assert find_denied_operator({"a": "call $function here"}) == "$function"
        assert find_denied_operator({"status": "open", "n": {"$gt": 1}}) is None

    def test_cyclic_payload(self):
        payload = {"a": 1}
        payload["self"] = payload
        assert find_denied_operator(payload) is None

    def test_ensure_safe_payload(self):
        payload = {"name": "ada"}
        assert ensure_safe_payload(payload) is payload
        with pytest.raises(QueryError) as exc_info:
            ensure_safe_payload([{"$accumulator": {}}], database_type="mongodb")
        assert exc_info.value.details["operator"] == "$accumulator"


class TestTypeConverter:

    def test_special_types(self):
        value = {
            "price": Decimal("9.50"),
            "at": datetime(2024, 1, 2, 3, 4, 5),
            "day": date(2024, 1, 2),
            "wait": timedelta(minutes=1),
            "id": UUID("12345678-1234-5678-1234-567812345678"),
            "raw": b"\xff\x00",
            "text": b"hi",
            "tags": {"b"},
        }
        converted = convert_to_serializable(value)
        assert converted["price"] == 9.5
        assert converted["at"] == "2024-01-02T03:04:05"
        assert converted["day"] == "2024-01-02"
        assert converted["wait"] == 60.0
        assert converted["id"] == "12345678-1234-5678-1234-567812345678"
        assert converted["raw"] == "ff00"
        assert converted["text"] == "hi"
        assert converted["tags"] == ["b"]
        json.dumps(converted)

    def test_unknown_objects_become_strings(self):
        class ObjectId:
            def __str__(self):
                return "65a0c0ffee"

        assert convert_to_serializable(ObjectId()) == "65a0c0ffee"
        assert describe_value_type(ObjectId()) == "objectId"

    def test_describe_value_type(self):
        assert describe_value_type(None) == "null"
        assert describe_value_type(True) == "boolean"
        assert describe_value_type(3) == "int"
        assert describe_value_type(1.5) == "double"
        assert describe_value_type("x") == "string"
        assert describe_value_type(datetime.now()) == "date"
        assert describe_value_type({}) == "object"
        assert describe_value_type([]) == "array"


class TestLogging:

    def test_setup_logging_is_idempotent(self, tmp_path):
        log_file = tmp_path / "dbweave.log"
        setup_logging("DEBUG", log_file=str(log_file))
        logger = setup_logging("DEBUG", log_file=str(log_file))

        assert len(logger.handlers) == 2
        assert logger.level == logging.DEBUG
        logging.getLogger(f"{ROOT_LOGGER_NAME}.adapters").info("pool ready")
        for handler in logger.handlers:
            handler.flush()
        assert "pool ready" in log_file.read_text(encoding="utf-8")
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    def test_json_formatter_includes_extra_fields(self):
        record = logging.LogRecord("dbweave.test", logging.INFO, __file__, 1, "connected", None, None)
        record.connection_id = "main"
        data = json.loads(JsonFormatter().format(record))
        assert data["message"] == "connected"
        assert data["level"] == "INFO"
        assert data["connection_id"] == "main"
