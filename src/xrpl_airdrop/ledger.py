from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from .errors import AirdropError
from .project_constants import LEDGER_FAILED_FILE, LEDGER_SUCCESS_FILE
from .snapshot import decimal_str, local_timestamp, write_json_atomic

log = logging.getLogger("ledger")


@dataclass(frozen=True)
class LedgerEntry:
    counter: int
    account: Optional[str]
    amount: Optional[Decimal]
    transaction_result: str
    on_chain: str = "N/A"
    fee: Optional[Decimal] = None
    error: Optional[str] = None
    category: Optional[str] = None
    sequence: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"counter": self.counter}
        if self.category is not None:
            d["category"] = self.category
        d["account"] = self.account
        d["amount"] = decimal_str(self.amount) if self.amount is not None else None
        d["transactionResult"] = self.transaction_result
        d["onChain"] = self.on_chain
        if self.sequence is not None:
            d["sequence"] = self.sequence
        if self.fee is not None:
            d["fee"] = decimal_str(self.fee)
        if self.error is not None:
            d["error"] = self.error
        return d


class TransactionLedger:
    """
    Two append-only JSON stores: one for settled-successful payments, one for
    everything else. Each append re-reads and rewrites the whole file, so only
    one writer may use a directory at a time.
    """

    def __init__(self, out_dir: str | Path = ".", clock: Callable[[], str] = local_timestamp) -> None:
        self.out_dir = Path(out_dir)
        self.clock = clock

    def path_for(self, success: bool) -> Path:
        return self.out_dir / (LEDGER_SUCCESS_FILE if success else LEDGER_FAILED_FILE)

    def load_document(self, success: bool) -> Dict[str, Any]:
        path = self.path_for(success)
        if not path.exists():
            return {"date": None, "transactions": []}
        try:
            with open(path, "r", encoding="utf-8") as f:
                doc = json.load(f)
        except ValueError as e:
            raise AirdropError(f"Ledger file {path} is not valid JSON: {e}") from e
        # Older runs wrote a bare list of entries
        if isinstance(doc, list):
            return {"date": None, "transactions": doc}
        if not isinstance(doc, dict) or not isinstance(doc.get("transactions"), list):
            raise AirdropError(f"Ledger file {path} has no transactions list")
        return doc

    def load(self, success: bool) -> List[Dict[str, Any]]:
        return self.load_document(success)["transactions"]

    def append(self, entry: LedgerEntry, success: bool) -> None:
        doc = self.load_document(success)
        if not doc.get("date"):
            doc["date"] = self.clock()
        doc["transactions"].append(entry.to_dict())
        write_json_atomic(self.path_for(success), doc)
        log.debug("Logged %s for %s (%s)", entry.transaction_result, entry.account, "success" if success else "failed")

    def settled_accounts(self) -> Set[str]:
        return {t["account"] for t in self.load(True) if t.get("account")}

    def summary(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for success, label in ((True, "success"), (False, "failed")):
            txs = self.load(success)
            amount = Decimal(0)
            fees = Decimal(0)
            for t in txs:
                amount += _as_decimal(t.get("amount"))
                fees += _as_decimal(t.get("fee"))
            out[label] = {
                "count": len(txs),
                "amount": decimal_str(amount),
                "fees": decimal_str(fees),
            }
        return out


def _as_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal(0)
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal(0)
