# tests/test_verify.py
from pathlib import Path

from continuity.chain.writer import ActionLog
from continuity.query.engine import query
from continuity.verify.verifier import IntegrityValidator, VerificationResult

from conftest import rewrite_line


def create_test_stream(log: ActionLog, n_actions: int = 4) -> Path:
    for i in range(n_actions):
        assert log.append("message", "slack", f"Message #{i}", metadata={"i": i})
    return log.stream_path()


def test_valid_chain(log: ActionLog):
    stream = create_test_stream(log, 6)
    result = IntegrityValidator().validate_file(stream)
    assert result.is_valid is True
    assert result.entries == 6
    assert result.failures == []
    assert result.last_hash == log.state.last_hash()
    assert "PASSED (6 entries verified)" in str(result)


def test_empty_stream_is_valid(tmp_path: Path):
    result = IntegrityValidator().validate_file(tmp_path / "missing.jsonl")
    assert result
    assert result.entries == 0


def test_purchase_commit_scenario(log: ActionLog):
    a = log.append("purchase", "stripe", "Buy credits", cost=1.00)
    b = log.append("commit", "github", "Push fix", cost=None)
    stream = log.stream_path()

    assert (a.sequence, b.sequence) == (1, 2)
    rows = query(stream, type="purchase")
    assert len(rows) == 1
    assert rows[0]["seq"] == 1
    assert rows[0]["cost"] == 1.0

    result = IntegrityValidator().validate_file(stream)
    assert (result.entries, len(result.failures)) == (2, 0)

    rewrite_line(stream, 2, lambda r: r["action"].update(description="Push backdoor"))
    tampered = IntegrityValidator().validate_file(stream)
    assert tampered.entries == 2
    assert len(tampered.failures) == 1
    assert tampered.first_failure.index == 2
    assert tampered.first_failure.category == "hash_mismatch"
    assert tampered.failures_at(1) == []


def test_tampered_content_reported_once(log: ActionLog):
    stream = create_test_stream(log, 5)
    rewrite_line(stream, 2, lambda r: r["action"].update(cost=999))

    result = IntegrityValidator().validate_file(stream)
    assert not result
    assert [(f.index, f.category) for f in result.failures] == [(2, "hash_mismatch")]


def test_broken_previous_link_is_chain_broken_not_mismatch(log: ActionLog):
    stream = create_test_stream(log, 5)
    rewrite_line(stream, 3, lambda r: r["action"]["_integrity"].update(previous="deadbeef" * 8))

    result = IntegrityValidator().validate_file(stream)
    assert [(f.index, f.category) for f in result.failures] == [(3, "chain_broken")]


def test_deleted_record_breaks_chain(log: ActionLog):
    stream = create_test_stream(log, 4)
    lines = stream.read_text().splitlines()
    del lines[1]
    stream.write_text("\n".join(lines) + "\n")

    result = IntegrityValidator().validate_file(stream)
    assert result.entries == 3
    categories = {f.category for f in result.failures_at(2)}
    assert "chain_broken" in categories


def test_garbage_line_does_not_cascade(log: ActionLog):
    stream = create_test_stream(log, 3)
    lines = stream.read_text().splitlines()
    lines.insert(1, '{"action": {"id": "half-written"')
    stream.write_text("\n".join(lines) + "\n")

    result = IntegrityValidator().validate_file(stream)
    assert result.entries == 4
    assert [(f.index, f.category) for f in result.failures] == [(2, "invalid_json")]


def test_missing_integrity(log: ActionLog):
    stream = create_test_stream(log, 2)
    rewrite_line(stream, 1, lambda r: r["action"].pop("_integrity"))

    result = IntegrityValidator().validate_file(stream)
    assert result.failures_at(1)[0].category == "missing_integrity"
    # line 2 expected "genesis" as previous since line 1 never produced a hash
    assert result.failures_at(2)[0].category == "chain_broken"


def test_replayed_sequence_is_flagged(log: ActionLog):
    stream = create_test_stream(log, 3)
    lines = stream.read_text().splitlines()
    stream.write_text("\n".join(lines + [lines[0]]) + "\n")

    result = IntegrityValidator().validate_file(stream)
    categories = {f.category for f in result.failures_at(4)}
    assert "sequence" in categories
    assert "chain_broken" in categories


def test_result_str_lists_failures():
    from continuity.verify.verifier import VerificationFailure
    result = VerificationResult(entries=3, failures=[VerificationFailure(2, "boom", "hash_mismatch")])
    text = str(result)
    assert "FAILED (1 errors in 3 entries)" in text
    assert "[line 2] hash_mismatch: boom" in text


def test_non_finite_number_is_invalid_json(log: ActionLog):
    stream = create_test_stream(log, 3)
    lines = stream.read_text().splitlines()
    assert '"cost":null' in lines[1]
    lines[1] = lines[1].replace('"cost":null', '"cost":NaN')
    stream.write_text("\n".join(lines) + "\n")

    result = IntegrityValidator().validate_file(stream)
    [failure] = result.failures_at(2)
    assert failure.category == "invalid_json"
    assert "NaN" in failure.message
