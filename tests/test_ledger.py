import json
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from pydantic import ValidationError

import mediawall.services.ledger as ledger_module
from mediawall.services.ledger import (
    ClientMetadata,
    JsonLedger,
    LedgerWriteError,
    LikeEntry,
    LikesLedger,
    utc_timestamp,
)


def _read(path: Path):
    return json.loads(path.read_text(encoding="utf-8"))


def test_record_keeps_total_in_step_with_entries(tmp_path: Path) -> None:
    ledger = LikesLedger(tmp_path / "likes.json")
    ledger.ensure()

    totals = [ledger.record(LikeEntry.build(ip="10.0.0.1", user_agent="tests")) for _ in range(3)]

    document = _read(ledger.path)
    assert totals == [1, 2, 3]
    assert document["total"] == len(document["entries"]) == 3
    assert ledger.total() == 3


def test_concurrent_records_do_not_lose_updates(tmp_path: Path) -> None:
    ledger = LikesLedger(tmp_path / "likes.json")
    ledger.ensure()

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: ledger.record(LikeEntry.build(ip=None, user_agent=None)), range(40)))

    document = _read(ledger.path)
    assert document["total"] == 40
    assert len(document["entries"]) == 40


def test_record_recomputes_invalid_total_from_entries(tmp_path: Path) -> None:
    path = tmp_path / "likes.json"
    path.write_text(json.dumps({"total": "many", "entries": [{"timestamp": "t"}] * 2}), encoding="utf-8")
    ledger = LikesLedger(path)

    assert ledger.total() == 2
    assert ledger.record(LikeEntry.build(ip=None, user_agent=None)) == 3
    assert _read(path)["total"] == 3


def test_corrupt_ledger_reads_as_empty(tmp_path: Path) -> None:
    path = tmp_path / "likes.json"
    path.write_text("{not json", encoding="utf-8")
    ledger = LikesLedger(path)

    assert ledger.total() == 0
    assert ledger.record(LikeEntry.build(ip=None, user_agent=None)) == 1
    document = _read(path)
    assert document["total"] == 1
    assert len(document["entries"]) == 1


def test_update_skips_write_when_unchanged(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "doc.json"
    ledger = JsonLedger(path, name="doc", default=lambda: {"items": []}, validate=lambda p: isinstance(p, dict))
    ledger.ensure()
    before = path.stat().st_mtime_ns

    def _fail(document):
        raise AssertionError("should not write")

    monkeypatch.setattr(ledger, "_write", _fail)
    assert ledger.update(lambda document: len(document["items"])) == 0
    assert path.stat().st_mtime_ns == before


def test_write_failure_raises_ledger_error(tmp_path: Path, monkeypatch) -> None:
    ledger = LikesLedger(tmp_path / "likes.json")

    def _boom(*args, **kwargs):
        raise OSError("disk full")

    monkeypatch.setattr(ledger_module.tempfile, "mkstemp", _boom)

    with pytest.raises(LedgerWriteError):
        ledger.record(LikeEntry.build(ip=None, user_agent=None))


def test_like_entry_omits_absent_fields() -> None:
    entry = LikeEntry.build(ip="  ", user_agent=None, metadata=ClientMetadata(), timestamp="2024-05-01T00:00:00.000Z")

    assert entry.to_dict() == {"timestamp": "2024-05-01T00:00:00.000Z"}


def test_client_metadata_is_sanitised_and_capped() -> None:
    metadata = ClientMetadata.model_validate_json(
        json.dumps(
            {
                "language": "  pt-BR ",
                "platform": "",
                "timezone": 3,
                "screen": {"width": 1920.0, "height": True},
                "referrer": "x" * 2000,
                "unexpected": "ignored",
            }
        )
    )

    data = metadata.to_dict()
    assert data["language"] == "pt-BR"
    assert "platform" not in data
    assert "timezone" not in data
    assert data["screen"] == {"width": 1920}
    assert len(data["referrer"]) == 512
    assert "unexpected" not in data


def test_client_metadata_drops_unusable_screen() -> None:
    assert ClientMetadata.model_validate({"screen": "1080p"}).is_empty()
    assert ClientMetadata.model_validate({"screen": {"width": 0, "height": 10**9}}).is_empty()
    assert ClientMetadata().is_empty()


def test_client_metadata_rejects_non_object_body() -> None:
    with pytest.raises(ValidationError):
        ClientMetadata.model_validate_json('["en"]')


def test_utc_timestamp_format() -> None:
    stamp = utc_timestamp()

    assert stamp.endswith("Z")
    assert len(stamp) == len("2024-01-01T00:00:00.000Z")
