import hashlib
import hmac

import orjson

from conftest import make_entry

from redacter import __version__
from redacter.config import RunConfig
from redacter.models import ContentCategory, Outcome, RedactionResult
from redacter.pipeline import RunSummary
from redacter.results import write_results


def _summary() -> RunSummary:
    summary = RunSummary()
    summary.record(
        RedactionResult(
            make_entry("a.txt"),
            Outcome.REDACTED,
            category=ContentCategory.PLAIN_TEXT,
            findings=2,
            backends=["gcp-dlp"],
        ),
        ["a.txt"],
    )
    summary.record(
        RedactionResult(
            make_entry("b.bin"), Outcome.FAILED, reason="boom", error_kind="conversion"
        ),
        [],
    )
    return summary


def test_results_file_contents(tmp_path):
    path = write_results(
        tmp_path / "out" / "results.json", "src/", "dst/", _summary(), RunConfig(), ["gcp-dlp"]
    )
    record = orjson.loads(path.read_bytes())
    assert record["version"] == __version__
    assert record["source"] == "src/"
    assert record["redacters"] == ["gcp-dlp"]
    assert record["config"]["sampling_tail"] == "copy"
    assert record["summary"]["redacted"] == 1
    assert record["summary"]["failures"] == [
        {"path": "b.bin", "kind": "conversion", "message": "boom"}
    ]
    assert [i["outcome"] for i in record["items"]] == ["redacted", "failed"]
    assert "hmac" not in record


def test_results_are_signed_with_key(tmp_path):
    path = write_results(
        tmp_path / "results.json", "s", "d", _summary(), RunConfig(), hmac_key="secret"
    )
    record = orjson.loads(path.read_bytes())
    sig = record.pop("hmac")
    assert sig["alg"] == "HMAC-SHA256"
    expected = hmac.new(b"secret", orjson.dumps(record), hashlib.sha256).hexdigest()
    assert sig["value"] == expected
