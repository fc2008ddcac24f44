"""Tests for type tags and value conversion."""

import pytest

from dynconf.domain.config import (
    ConfigurationRecordDto,
    ValueType,
    convert_value,
)
from dynconf.domain.errors import ValueConversionError
from fakes import make_record


class TestValueType:
    @pytest.mark.parametrize(
        "tag,expected",
        [
            ("int", ValueType.INT),
            ("Double", ValueType.DOUBLE),
            (" BOOL ", ValueType.BOOL),
            ("string", ValueType.STRING),
            ("unknown", ValueType.STRING),
            ("", ValueType.STRING),
            (None, ValueType.STRING),
        ],
    )
    def test_parse(self, tag, expected):
        assert ValueType.parse(tag) is expected

    def test_python_type(self):
        assert ValueType.DOUBLE.python_type is float
        assert ValueType.BOOL.python_type is bool


class TestConvertValue:
    @pytest.mark.parametrize(
        "value,tag,expected",
        [
            ("42", "int", 42),
            (" -7 ", "int", -7),
            ("3.14", "double", 3.14),
            ("1e3", "double", 1000.0),
            ("true", "bool", True),
            ("FALSE", "bool", False),
            ("x", "unknown", "x"),
            ("  padded  ", "string", "  padded  "),
        ],
    )
    def test_converts_by_tag(self, value, tag, expected):
        result = convert_value(value, tag)
        assert result == expected
        assert type(result) is type(expected)

    @pytest.mark.parametrize(
        "value,tag",
        [("abc", "int"), ("4.5", "int"), ("", "double"), ("yes", "bool"), ("1", "bool")],
    )
    def test_malformed_value_raises(self, value, tag):
        with pytest.raises(ValueConversionError) as exc_info:
            convert_value(value, tag, name="MaxItemCount")

        assert exc_info.value.name == "MaxItemCount"
        assert exc_info.value.type_tag == ValueType.parse(tag).value

    def test_string_never_fails(self):
        assert convert_value("", "string") == ""


class TestConfigurationRecord:
    def test_typed_value(self):
        record = make_record("IsBasketEnabled", "True", "bool")
        assert record.value_type is ValueType.BOOL
        assert record.typed_value() is True

    def test_dto_to_record_keeps_id(self):
        dto = ConfigurationRecordDto(
            application_name="SERVICE-A",
            name="SiteName",
            value="example.com",
            id=3,
        )
        record = dto.to_record()

        assert record.id == 3
        assert record.type == "string"
        assert record.updated_at is None
