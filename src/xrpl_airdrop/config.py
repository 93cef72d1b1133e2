from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, FrozenSet, List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv

from .errors import ConfigError
from .holders import Asset, load_excluded_wallets
from .project_constants import (
    DEFAULT_EXPLORER_URL,
    DEFAULT_RPC_URL,
    DEFAULT_TIMEZONE,
    ELIGIBILITY_CONCURRENCY,
)
from .tiers import CategoryTier, RangeTier, Tier, TraitTier, parse_tiers


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    seed: Optional[str] = None

    @staticmethod
    def from_env(rpc_url_override: str | None = None) -> "Settings":
        load_dotenv()

        seed = os.getenv("XRPL_SEED", "").strip() or None

        # If user provides --rpc-url, trust it.
        if rpc_url_override:
            return Settings(rpc_url=rpc_url_override, seed=seed)

        env_rpc = os.getenv("XRPL_RPC_URL", "").strip()
        return Settings(rpc_url=env_rpc or DEFAULT_RPC_URL, seed=seed)


@dataclass(frozen=True)
class AirdropConfig:
    """Everything a run needs besides the node URL, read from config.json."""

    reward_asset: Asset
    memo: str
    tiers: Tuple[Tier, ...]
    test_mode: bool = True
    tracked_asset: Optional[Asset] = None
    ignore_wallets: FrozenSet[str] = field(default_factory=frozenset)
    seed: Optional[str] = None
    nft_issuer: Optional[str] = None
    taxon: Optional[int] = None
    listed_above: Optional[Decimal] = None
    airdrop_list_file: Optional[str] = None
    concurrency: int = ELIGIBILITY_CONCURRENCY
    timezone: str = DEFAULT_TIMEZONE
    explorer_url: str = DEFAULT_EXPLORER_URL

    @property
    def range_tiers(self) -> List[RangeTier]:
        return [t for t in self.tiers if isinstance(t, RangeTier)]

    @property
    def trait_tiers(self) -> List[TraitTier]:
        return [t for t in self.tiers if isinstance(t, TraitTier)]

    @property
    def category_tiers(self) -> List[CategoryTier]:
        return [t for t in self.tiers if isinstance(t, CategoryTier)]

    def require(self, *names: str) -> None:
        """Fails with every missing field at once, naming them as they appear in config.json."""
        missing = [n for n in names if getattr(self, n) in (None, "", [], ())]
        if missing:
            raise ConfigError("Missing config values: " + ", ".join(_JSON_NAMES.get(n, n) for n in missing))

    def sender_seed(self, settings: Settings) -> str:
        seed = settings.seed or self.seed
        if not seed:
            raise ConfigError("Missing XRPL_SEED (or seed in config). Put it in .env or export it.")
        return seed

    @staticmethod
    def from_file(path: str) -> "AirdropConfig":
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except OSError as e:
            raise ConfigError(f"Cannot read config {path}: {e}") from e
        except ValueError as e:
            raise ConfigError(f"Config {path} is not valid JSON: {e}") from e
        if not isinstance(raw, dict):
            raise ConfigError(f"Config {path} must be a JSON object")
        return AirdropConfig.from_dict(raw)

    @staticmethod
    def from_dict(raw: Dict[str, Any]) -> "AirdropConfig":
        missing = [k for k in ("currency", "issuer", "sendingMemo", "airdropAmounts") if not raw.get(k)]
        if missing:
            raise ConfigError("Missing config values: " + ", ".join(missing))

        try:
            tiers = tuple(parse_tiers(raw["airdropAmounts"]))
        except (ValueError, InvalidOperation, TypeError) as e:
            raise ConfigError(f"Invalid airdropAmounts: {e}") from e

        tracked = None
        if raw.get("holdCurrency") or raw.get("holdIssuer"):
            if not (raw.get("holdCurrency") and raw.get("holdIssuer")):
                raise ConfigError("holdCurrency and holdIssuer must be given together")
            tracked = Asset(str(raw["holdCurrency"]), str(raw["holdIssuer"]))

        ignore = raw.get("ignoreWallets", [])
        if not isinstance(ignore, list):
            raise ConfigError("ignoreWallets must be a list of addresses")
        try:
            ignore = list(ignore) + sorted(load_excluded_wallets(raw.get("ignoreWalletsFile")))
        except OSError as e:
            raise ConfigError(f"Cannot read ignoreWalletsFile: {e}") from e

        test_mode = raw.get("testMode", True)
        if not isinstance(test_mode, bool):
            raise ConfigError("testMode must be true or false")

        concurrency = raw.get("concurrency", ELIGIBILITY_CONCURRENCY)
        if not isinstance(concurrency, int) or isinstance(concurrency, bool) or concurrency < 1:
            raise ConfigError("concurrency must be a positive integer")

        tz = str(raw.get("timezone", DEFAULT_TIMEZONE))
        try:
            ZoneInfo(tz)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigError(f"Unknown timezone {tz!r}") from e

        listed_above = None
        if raw.get("listedAbove") is not None:
            try:
                listed_above = Decimal(str(raw["listedAbove"]))
            except InvalidOperation as e:
                raise ConfigError("listedAbove must be a number of XRP") from e

        taxon = raw.get("taxon")
        if taxon is not None and (not isinstance(taxon, int) or isinstance(taxon, bool)):
            raise ConfigError("taxon must be an integer")

        return AirdropConfig(
            reward_asset=Asset(str(raw["currency"]), str(raw["issuer"])),
            memo=str(raw["sendingMemo"]),
            tiers=tiers,
            test_mode=test_mode,
            tracked_asset=tracked,
            ignore_wallets=frozenset(str(w) for w in ignore),
            seed=raw.get("seed") or None,
            nft_issuer=raw.get("nftIssuer") or None,
            taxon=taxon,
            listed_above=listed_above,
            airdrop_list_file=raw.get("airdropListFile") or None,
            concurrency=concurrency,
            timezone=tz,
            explorer_url=str(raw.get("explorerUrl", DEFAULT_EXPLORER_URL)),
        )


_JSON_NAMES = {
    "tracked_asset": "holdCurrency/holdIssuer",
    "nft_issuer": "nftIssuer",
    "taxon": "taxon",
    "airdrop_list_file": "airdropListFile",
    "range_tiers": "airdropAmounts (min/max tiers)",
    "trait_tiers": "airdropAmounts (trait tiers)",
    "category_tiers": "airdropAmounts (category tiers)",
}
