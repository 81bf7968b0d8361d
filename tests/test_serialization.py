"""Tests for safe_serialize / safe_stringify / redact."""

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from logbeacon.serialization import (
    CIRCULAR,
    REDACTED,
    UNSERIALIZABLE,
    redact,
    safe_serialize,
    safe_stringify,
    safe_text,
)


class TestSafeStringify:
    def test_handles_circular_references(self):
        obj = {"a": 1}
        obj["self"] = obj

        text = safe_stringify(obj)

        assert '"self":"[Circular]"' in text
        assert '"a":1' in text

    def test_shared_object_is_not_circular(self):
        shared = {"x": 1}
        text = safe_stringify({"left": shared, "right": shared})
        assert json.loads(text) == {"left": {"x": 1}, "right": {"x": 1}}

    def test_handles_big_integers(self):
        assert json.loads(safe_stringify({"val": 2**70})) == {"val": 2**70}

    def test_non_json_values(self):
        value = {
            "when": datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
            "id": UUID("12345678-1234-5678-1234-567812345678"),
            "amount": Decimal("1.50"),
            "raw": b"bytes",
            "tags": {"b", "a"},
            "nan": float("nan"),
        }

        result = json.loads(safe_stringify(value))

        assert result["when"] == "2024-01-02T03:04:05+00:00"
        assert result["id"] == "12345678-1234-5678-1234-567812345678"
        assert result["amount"] == "1.50"
        assert result["raw"] == "bytes"
        assert result["tags"] == ["a", "b"]
        assert result["nan"] == "nan"


class TestSafeSerialize:
    def test_exceptions_become_name_and_message(self):
        assert safe_serialize(ValueError("bad")) == {"name": "ValueError", "message": "bad"}

    def test_dataclasses_and_objects(self):
        @dataclass
        class Point:
            x: int
            y: int

        class Plain:
            def __init__(self):
                self.name = "plain"

        assert safe_serialize(Point(1, 2)) == {"x": 1, "y": 2}
        assert safe_serialize(Plain()) == {"name": "plain"}

    def test_cyclic_list(self):
        items = [1]
        items.append(items)
        assert safe_serialize(items) == [1, CIRCULAR]


class Exploding(Exception):
    def __str__(self):
        raise RuntimeError("boom")


class BadRepr:
    __slots__ = ()

    def __repr__(self):
        raise RuntimeError("no repr")


class BadKey:
    def __str__(self):
        raise RuntimeError("no str")


class TestUnserializableValues:
    def test_exception_with_raising_str(self):
        assert safe_serialize(Exploding()) == {"name": "Exploding", "message": UNSERIALIZABLE}

    def test_raising_repr_only_affects_its_value(self):
        result = safe_serialize({"bad": BadRepr(), "good": 1})
        assert result == {"bad": UNSERIALIZABLE, "good": 1}

    def test_raising_key(self):
        result = safe_serialize({BadKey(): "value", "ok": True})
        assert result[UNSERIALIZABLE] == "value"
        assert result["ok"] is True

    def test_set_of_unsortable_reprs(self):
        assert safe_serialize({BadRepr()}) == [UNSERIALIZABLE]

    def test_stringify_never_raises(self):
        text = safe_stringify({"error": Exploding(), "items": [BadRepr()]})
        assert json.loads(text) == {
            "error": {"name": "Exploding", "message": UNSERIALIZABLE},
            "items": [UNSERIALIZABLE],
        }

    def test_safe_text(self):
        assert safe_text(Exploding()) == UNSERIALIZABLE
        assert safe_text(42) == "42"


class TestRedact:
    def test_hides_sensitive_keys(self):
        obj = {
            "username": "john",
            "password": "secret123",
            "nested": {"token": "xyz-token", "public": "visible"},
        }

        redacted = redact(obj, ["password", "token"])

        assert redacted["username"] == "john"
        assert redacted["password"] == REDACTED
        assert redacted["nested"]["token"] == REDACTED
        assert redacted["nested"]["public"] == "visible"

    def test_does_not_mutate_input(self):
        obj = {"password": "secret"}
        redact(obj, ["password"])
        assert obj == {"password": "secret"}

    def test_unbounded_depth_and_lists(self):
        deep = {"token": "t"}
        for _ in range(50):
            deep = {"level": deep, "items": [{"password": "p", "keep": 1}]}

        redacted = redact(deep, ["password", "token"])

        node = redacted
        while "level" in node:
            assert node["items"][0] == {"password": REDACTED, "keep": 1}
            node = node["level"]
        assert node == {"token": REDACTED}

    def test_no_keys_returns_value(self):
        obj = {"password": "secret"}
        assert redact(obj, []) is obj
