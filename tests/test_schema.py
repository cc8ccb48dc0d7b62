"""Tests for header validation."""

import pytest

from cdr_workers.errors import ErrorCategory, SchemaError
from cdr_workers.parsers.schema import SchemaValidator, split_header

from conftest import INPUT_HEADER


def test_split_header_trims_columns():
    assert split_header(" a , b,c ") == ["a", "b", "c"]


class TestSchemaValidator:

    def test_expected_header(self):
        assert SchemaValidator().expected_header == INPUT_HEADER

    def test_accepts_exact_header(self):
        columns = SchemaValidator().validate(INPUT_HEADER, "calls")

        assert columns[0] == "caller_id"
        assert len(columns) == 8

    def test_accepts_padded_columns(self):
        padded = ", ".join(INPUT_HEADER.split(","))

        assert SchemaValidator().validate(padded) == INPUT_HEADER.split(",")

    @pytest.mark.parametrize("header", [
        "caller_id,recipient,call_date,end_time,duration,cost,reference",
        "recipient,caller_id,call_date,end_time,duration,cost,reference,currency",
        "Caller_ID,recipient,call_date,end_time,duration,cost,reference,currency",
        INPUT_HEADER + ",extra",
        "",
    ])
    def test_rejects_mismatch(self, header):
        with pytest.raises(SchemaError) as exc_info:
            SchemaValidator().validate(header, "calls")

        error = exc_info.value
        assert error.expected == INPUT_HEADER
        assert error.actual == header
        assert error.name_prefix == "calls"
        assert error.category is ErrorCategory.SCHEMA_ERROR
        assert "File prefix: calls" in error.message

    def test_custom_columns_and_delimiter(self):
        validator = SchemaValidator(("a", "b"), delimiter=";")

        assert validator.validate("a;b") == ["a", "b"]
        with pytest.raises(SchemaError):
            validator.validate("a,b")
