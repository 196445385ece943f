# tests/test_core.py
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from continuity.core.canon import canonical_json, chain_preimage, compact_line, parse_line
from continuity.core.exceptions import MalformedRecordError
from continuity.core.types import (
    GENESIS,
    ActionRecord,
    Integrity,
    Severity,
    coerce_cost,
    coerce_severity,
    utc_now_ms,
)


@pytest.fixture
def sample_record():
    return ActionRecord(
        id="0f8b5f0e-8a39-4c1e-9a53-7c2f3c1d9e11",
        sequence=1,
        timestamp="2026-02-13T12:00:00.123Z",
        type="purchase",
        platform="stripe",
        description="Bought 1 API credit",
        session_id="test-session",
        cost=1.0,
        metadata={"sku": "credit-1"},
        integrity=Integrity(hash="ab" * 32, previous=GENESIS),
    )


def test_record_immutable(sample_record):
    with pytest.raises(AttributeError):
        sample_record.sequence = 99


def test_envelope_wire_shape(sample_record):
    env = sample_record.to_envelope()
    assert env["schema_version"] == "0.1.0"
    action = env["action"]
    assert list(action) == [
        "id", "sequence", "timestamp", "type", "severity", "platform",
        "description", "cost", "metadata", "proof", "session_id", "_integrity",
    ]
    assert action["severity"] == "medium"
    assert action["proof"] is None
    assert action["_integrity"] == {"hash": "ab" * 32, "previous": "genesis"}


def test_content_envelope_excludes_integrity(sample_record):
    assert "_integrity" not in sample_record.content_envelope()["action"]


def test_from_envelope_reads_wire_object(sample_record):
    parsed = ActionRecord.from_envelope(sample_record.to_envelope())
    assert parsed == sample_record


@pytest.mark.parametrize("mutate", [
    lambda env: env.pop("action"),
    lambda env: env["action"].pop("id"),
    lambda env: env["action"].update(sequence="7"),
    lambda env: env["action"].update(sequence=True),
    lambda env: env["action"].update(severity="apocalyptic"),
    lambda env: env["action"].update(metadata=[1, 2]),
    lambda env: env["action"].update(_integrity={"hash": 1}),
    lambda env: env["action"].update(proof=5),
    lambda env: env["action"].update(platform=None),
])
def test_from_envelope_rejects_malformed(sample_record, mutate):
    env = sample_record.to_envelope()
    mutate(env)
    with pytest.raises(MalformedRecordError):
        ActionRecord.from_envelope(env)


@pytest.mark.parametrize("raw, expected", [
    (12.5, 12.5),
    (3, 3.0),
    ("1.00", 1.0),
    (" 0 ", 0.0),
    (Decimal("3.25"), 3.25),
    (None, None),
    ("", None),
    ("null", None),
    ("abc", None),
    ("12abc", None),
    ("-1", None),
    (-0.5, None),
    ("nan", None),
    (float("inf"), None),
    ("1e400", None),
    (True, None),
])
def test_coerce_cost(raw, expected):
    assert coerce_cost(raw) == expected


def test_coerce_severity_defaults_to_medium():
    assert coerce_severity("CRITICAL") is Severity.CRITICAL
    assert coerce_severity(Severity.LOW) is Severity.LOW
    assert coerce_severity("urgent") is Severity.MEDIUM
    assert coerce_severity(None) is Severity.MEDIUM


def test_utc_now_ms_format():
    ts = utc_now_ms(datetime(2026, 2, 13, 12, 0, 0, 123456, tzinfo=timezone.utc))
    assert ts == "2026-02-13T12:00:00.123Z"


def test_canonical_json_ignores_insertion_order():
    a = {"z": 1, "a": "hello", "nested": {"b": 2, "a": 1}}
    b = {"nested": {"a": 1, "b": 2}, "a": "hello", "z": 1}
    assert canonical_json(a) == canonical_json(b)
    assert canonical_json(a) == b'{"a":"hello","nested":{"a":1,"b":2},"z":1}'


def test_canonical_json_number_formatting():
    # 1.0 and 1 must hash identically; the JSONL line may spell either
    assert canonical_json({"cost": 1.0}) == canonical_json({"cost": 1})


def test_compact_line_is_single_line():
    line = compact_line({"description": "multi\nline", "cost": None})
    assert "\n" not in line
    assert line == '{"description":"multi\\nline","cost":null}'


def test_chain_preimage_appends_previous_hash():
    assert chain_preimage({"b": 1, "a": 2}, "genesis") == b'{"a":2,"b":1}genesis'


def test_parse_line_refuses_non_finite_numbers():
    assert parse_line('{"cost":1.5}') == {"cost": 1.5}
    with pytest.raises(ValueError, match="NaN"):
        parse_line('{"cost":NaN}')
    with pytest.raises(ValueError):
        parse_line('{"cost":-Infinity}')
