from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from .errors import AirdropError
from .project_constants import (
    DEFAULT_TIMEZONE,
    SNAPSHOT_BLOCKED_FILE,
    SNAPSHOT_NON_QUALIFIED_FILE,
    SNAPSHOT_READY_FILE,
    TIMESTAMP_FORMAT,
)
from .tiers import Partition, QualificationResult, summarize

log = logging.getLogger("snapshot")


def local_timestamp(tz_name: str = DEFAULT_TIMEZONE) -> str:
    return datetime.now(ZoneInfo(tz_name)).strftime(TIMESTAMP_FORMAT)


def decimal_str(value: Decimal) -> str:
    # Amounts are written as strings so no float rounding creeps into the record.
    return format(value.normalize(), "f")


def write_json_atomic(path: Path, doc: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(doc, f, indent=2)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def holder_record(result: QualificationResult) -> Dict[str, Any]:
    h = result.holder
    rec: Dict[str, Any] = {
        "holderAddress": h.address,
        "heldTokens": decimal_str(h.held_amount),
        "ignored": h.ignored,
        "hasTrustline": h.has_channel,
        "readyForDrop": result.ready_for_drop,
        "isQualified": result.is_qualified,
        "totalAmount": decimal_str(result.reward_amount),
    }
    if h.nft_count:
        rec["totalNFTs"] = h.nft_count
    if result.category is not None:
        rec["category"] = result.category
    return rec


def write_snapshot(
    part: Partition,
    out_dir: str | Path = ".",
    date: Optional[str] = None,
) -> Dict[str, Path]:
    """Writes the ready, blocked and non-qualified holder documents."""
    out = Path(out_dir)
    date = date or local_timestamp()
    docs = {
        SNAPSHOT_READY_FILE: (part.ready, True),
        SNAPSHOT_BLOCKED_FILE: (part.blocked, True),
        SNAPSHOT_NON_QUALIFIED_FILE: (part.non_qualified, False),
    }
    written: Dict[str, Path] = {}
    for name, (results, with_summary) in docs.items():
        doc: Dict[str, Any] = {"date": date}
        if with_summary:
            doc["summary"] = summarize(results)
        doc["holders"] = [holder_record(r) for r in results]
        path = out / name
        write_json_atomic(path, doc)
        log.info("Snapshot saved to %s (%d holders)", path, len(results))
        written[name] = path
    return written


def load_ready_jobs(path: str | Path) -> List[Dict[str, Any]]:
    """Reads a ready-holder snapshot back into dispatch jobs."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            doc = json.load(f)
    except (OSError, ValueError) as e:
        raise AirdropError(f"Cannot read snapshot {path}: {e}") from e

    jobs: List[Dict[str, Any]] = []
    for h in doc.get("holders", []):
        if not h.get("readyForDrop") or h.get("ignored"):
            continue
        jobs.append(
            {
                "account": h.get("holderAddress"),
                "amount": h.get("totalAmount"),
                "category": h.get("category"),
            }
        )
    return jobs
