from __future__ import annotations

import pytest

from webhook_service.domain.webhooks import FieldMapping
from webhook_service.services.field_mapper import (
    apply_mappings,
    extract,
    format_phone,
    stringify,
    transform,
)


def test_extract_nested_path():
    payload = {"customer": {"contact": {"email": "a@b.com"}}}
    assert extract(payload, "customer.contact.email") == "a@b.com"


@pytest.mark.parametrize(
    "payload,path",
    [
        ({}, "a.b.c"),
        ({"a": "text"}, "a.b"),
        ({"a": [{"b": 1}]}, "a.0.b"),
        (["x"], "0"),
        (None, "a"),
    ],
)
def test_extract_missing_returns_default(payload, path):
    assert extract(payload, path) is None
    assert extract(payload, path, default="fallback") == "fallback"


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, ""),
        (True, "true"),
        (False, "false"),
        (1500.0, "1500"),
        (1500.5, "1500.5"),
        (42, "42"),
        ({"a": 1}, '{"a":1}'),
        ([1, "b"], '[1,"b"]'),
    ],
)
def test_stringify(value, expected):
    assert stringify(value) == expected


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("11987654321", "+5511987654321"),
        ("5511987654321", "+5511987654321"),
        ("(11) 98765-4321", "+5511987654321"),
        ("123", "123"),
        ("1234567890123", "1234567890123"),
    ],
)
def test_format_phone(raw, expected):
    assert format_phone(raw) == expected


def test_transforms():
    assert transform("Ana", "uppercase") == "ANA"
    assert transform("ANA", "lowercase") == "ana"
    assert transform("  Ana  ", "trim") == "Ana"
    assert transform(11987654321, "format_phone") == "+5511987654321"
    assert transform("  Ana  ", None) == "  Ana  "
    assert transform("Ana", "reverse") == "Ana"
    assert transform(None, "uppercase") == ""


def test_apply_mappings_in_order_last_write_wins():
    payload = {"first": "Ana", "full": "Ana Silva", "contact": {"mail": " A@B.COM "}}
    mappings = [
        FieldMapping(source="first", target="contact_name"),
        FieldMapping(source="contact.mail", target="email", transform="lowercase"),
        FieldMapping(source="full", target="contact_name", transform="uppercase"),
    ]
    assert apply_mappings(payload, mappings) == {
        "contact_name": "ANA SILVA",
        "email": " a@b.com ",
    }


def test_apply_mappings_missing_source_maps_to_empty_string():
    mappings = [FieldMapping(source="phone", target="phone", transform="format_phone")]
    assert apply_mappings({}, mappings) == {"phone": ""}
