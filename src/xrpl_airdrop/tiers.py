from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Union

from .holders import Holder


@dataclass(frozen=True)
class RangeTier:
    min_inclusive: Decimal
    max_inclusive: Decimal
    reward_amount: Decimal

    @property
    def label(self) -> str:
        return f"{self.min_inclusive}-{self.max_inclusive}"

    def contains(self, signal: Decimal) -> bool:
        return self.min_inclusive <= signal <= self.max_inclusive


@dataclass(frozen=True)
class TraitTier:
    trait_type: str
    value: str
    reward_amount: Decimal

    @property
    def label(self) -> str:
        return f"{self.trait_type}-{self.value}"


@dataclass(frozen=True)
class CategoryTier:
    category: str
    reward_amount: Decimal

    @property
    def label(self) -> str:
        return self.category


Tier = Union[RangeTier, TraitTier, CategoryTier]


@dataclass(frozen=True)
class QualificationResult:
    holder: Holder
    tier: Optional[Tier]
    reward_amount: Decimal
    is_qualified: bool
    ready_for_drop: bool

    @property
    def category(self) -> Optional[str]:
        if self.tier is not None:
            return self.tier.label
        return self.holder.category


@dataclass(frozen=True)
class Partition:
    ready: List[QualificationResult]
    blocked: List[QualificationResult]
    non_qualified: List[QualificationResult]


def _result(holder: Holder, tier: Optional[Tier], amount: Decimal) -> QualificationResult:
    qualified = amount > 0
    return QualificationResult(
        holder=holder,
        tier=tier,
        reward_amount=amount,
        is_qualified=qualified,
        ready_for_drop=qualified and holder.has_channel and not holder.ignored,
    )


def classify(holder: Holder, tiers: Sequence[RangeTier]) -> QualificationResult:
    """
    First tier (in declared order) whose range contains the holder's signal wins.
    Overlapping ranges are not rejected: the earlier tier shadows the later one.
    """
    for tier in tiers:
        if tier.contains(holder.held_amount):
            return _result(holder, tier, tier.reward_amount)
    return _result(holder, None, Decimal(0))


def matching_trait_tiers(attributes: Iterable[dict], tiers: Sequence[TraitTier]) -> List[TraitTier]:
    pairs = {(a.get("trait_type"), str(a.get("value"))) for a in attributes if isinstance(a, dict)}
    return [t for t in tiers if (t.trait_type, t.value) in pairs]


def classify_traits(holder: Holder, tiers: Sequence[TraitTier]) -> QualificationResult:
    """
    Unlike range tiers, every matching trait tier pays: the reward is the sum of
    all matches over every NFT the holder owns.
    """
    total = Decimal(0)
    first_match: Optional[TraitTier] = None
    for attributes in holder.traits:
        matches = matching_trait_tiers(attributes, tiers)
        for tier in matches:
            total += tier.reward_amount
        if matches and first_match is None:
            first_match = matches[0]
    return _result(holder, first_match, total)


def classify_category(holder: Holder, tiers: Sequence[CategoryTier]) -> QualificationResult:
    for tier in tiers:
        if tier.category == holder.category:
            return _result(holder, tier, tier.reward_amount)
    return _result(holder, None, Decimal(0))


def partition(results: Iterable[QualificationResult]) -> Partition:
    ready: List[QualificationResult] = []
    blocked: List[QualificationResult] = []
    non_qualified: List[QualificationResult] = []
    for r in results:
        if r.ready_for_drop:
            ready.append(r)
        elif r.is_qualified:
            blocked.append(r)
        else:
            non_qualified.append(r)
    return Partition(ready=ready, blocked=blocked, non_qualified=non_qualified)


def summarize(results: Iterable[QualificationResult]) -> Dict[str, int]:
    """Holder count per tier label."""
    return dict(Counter(r.category for r in results if r.category is not None))


def parse_tiers(raw: Sequence[dict]) -> List[Tier]:
    """
    Builds tiers from the ``airdropAmounts`` config entries.
    Each entry is one of {min, max, amount}, {trait_type, value, amount}
    or {category, amount}; all entries must be of the same kind.
    """
    tiers: List[Tier] = []
    for entry in raw:
        if not isinstance(entry, dict) or "amount" not in entry:
            raise ValueError(f"tier entry without an amount: {entry!r}")
        amount = Decimal(str(entry["amount"]))
        if "min" in entry and "max" in entry:
            lo, hi = Decimal(str(entry["min"])), Decimal(str(entry["max"]))
            if lo > hi:
                raise ValueError(f"tier min {lo} is above max {hi}")
            tiers.append(RangeTier(lo, hi, amount))
        elif "trait_type" in entry and "value" in entry:
            tiers.append(TraitTier(str(entry["trait_type"]), str(entry["value"]), amount))
        elif "category" in entry:
            tiers.append(CategoryTier(str(entry["category"]), amount))
        else:
            raise ValueError(f"unrecognised tier entry: {entry!r}")

    kinds = {type(t) for t in tiers}
    if len(kinds) > 1:
        raise ValueError("airdropAmounts mixes range, trait and category tiers")
    return tiers
