from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .errors import PaginationStallError

log = logging.getLogger("holders")


@dataclass(frozen=True)
class Asset:
    currency: str
    issuer: str


@dataclass(frozen=True)
class Holder:
    address: str
    held_amount: Decimal
    has_channel: bool = False
    ignored: bool = False
    nft_count: int = 0
    # one attribute list per NFT owned (trait airdrops only)
    traits: Tuple[Tuple[Dict[str, Any], ...], ...] = field(default=())
    category: Optional[str] = None


def parse_line_balance(line: Dict[str, Any]) -> Decimal:
    """
    Seen from the issuer, a holder's balance is negative; we only need its size.
    """
    try:
        return abs(Decimal(str(line.get("balance", "0"))))
    except InvalidOperation:
        return Decimal(0)


def holders_from_lines(
    lines: Iterable[Dict[str, Any]],
    currency: str,
    ignore: Set[str],
    seen: Set[str],
) -> List[Holder]:
    out: List[Holder] = []
    for line in lines:
        if line.get("currency") != currency:
            continue
        addr = line.get("account")
        if not addr or addr in ignore:
            continue
        balance = parse_line_balance(line)
        if balance == 0:
            continue
        if addr in seen:
            log.warning("Duplicate trust line for %s ignored", addr)
            continue
        seen.add(addr)
        out.append(Holder(address=addr, held_amount=balance))
    return out


def collect_holders(gateway, tracked: Asset, ignore: Set[str]) -> List[Holder]:
    """
    Walks every account_lines page of the tracked asset's issuer.

    Any failing page aborts the whole walk (markers are only valid for the
    ledger they were issued against, so a rerun starts from scratch).
    """
    holders: List[Holder] = []
    seen: Set[str] = set()
    markers: Set[str] = set()
    marker: Any = None
    pages = 0

    while True:
        lines, next_marker = gateway.list_trust_lines(
            tracked.issuer, marker=marker, ledger_index="validated"
        )
        pages += 1
        holders.extend(holders_from_lines(lines, tracked.currency, ignore, seen))
        if not next_marker:
            break
        key = repr(next_marker)
        if key in markers:
            raise PaginationStallError(tracked.issuer, next_marker)
        markers.add(key)
        marker = next_marker

    log.debug("account_lines pages read: %d", pages)
    return holders


def load_category_holders(path: str, ignore: Set[str]) -> List[Holder]:
    """
    Reads a hand-made airdrop list: ``{"<category>": ["r...", ...], ...}``.
    An address listed under two categories keeps the first one.
    """
    with open(path, "r", encoding="utf-8") as f:
        database = json.load(f)
    if not isinstance(database, dict):
        raise ValueError(f"{path}: expected an object of category -> address list")

    holders: List[Holder] = []
    seen: Set[str] = set()
    for category, addresses in database.items():
        for addr in addresses or []:
            if addr in seen:
                log.warning("%s listed more than once; keeping its first category", addr)
                continue
            seen.add(addr)
            holders.append(
                Holder(
                    address=addr,
                    held_amount=Decimal(0),
                    ignored=addr in ignore,
                    category=str(category),
                )
            )
    return holders


def load_excluded_wallets(path: str | None) -> Set[str]:
    if not path:
        return set()
    out: Set[str] = set()
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            w = line.strip()
            if not w or w.startswith("#"):
                continue
            out.add(w)
    return out
