"""JSON results file for a copy run.

Records the version, who ran it and where, the configuration snapshot, the
summary and every item's outcome. When ``REDACTER_HMAC_KEY`` is set the
record is signed with HMAC-SHA256 for tamper detection.
"""

from __future__ import annotations

import dataclasses
import getpass
import hashlib
import hmac
import socket
import time
from pathlib import Path
from typing import Any, Dict, Optional

import orjson

from .config import RunConfig
from .pipeline import RunSummary


def build_record(
    source: str,
    destination: str,
    summary: RunSummary,
    cfg: RunConfig,
    redacters: Optional[list] = None,
) -> Dict[str, Any]:
    from redacter import __version__ as version

    return {
        "version": version,
        "timestamp": int(time.time()),
        "user": getpass.getuser(),
        "host": socket.gethostname(),
        "source": source,
        "destination": destination,
        "redacters": list(redacters or []),
        "config": dataclasses.asdict(cfg),
        "summary": summary.model_dump(mode="json", exclude={"items"}),
        "items": [item.model_dump(mode="json") for item in summary.items],
    }


def sign_record(record: Dict[str, Any], key: Optional[str]) -> Dict[str, Any]:
    if key:
        sig = hmac.new(key.encode("utf-8"), orjson.dumps(record), hashlib.sha256).hexdigest()
        record["hmac"] = {"alg": "HMAC-SHA256", "key_hint": "env:REDACTER_HMAC_KEY", "value": sig}
    return record


def write_results(
    path: str | Path,
    source: str,
    destination: str,
    summary: RunSummary,
    cfg: RunConfig,
    redacters: Optional[list] = None,
    hmac_key: Optional[str] = None,
) -> Path:
    """Write the results JSON to ``path`` and return it."""
    out = Path(path)
    record = sign_record(build_record(source, destination, summary, cfg, redacters), hmac_key)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(orjson.dumps(record, option=orjson.OPT_INDENT_2))
    return out


__all__ = ["build_record", "sign_record", "write_results"]
