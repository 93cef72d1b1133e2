"""
Unit tests for EligibilityChecker:
- trust line matching on currency + issuer
- retry and retry exhaustion
- bounded concurrency, per-check delay and ordering
"""

from decimal import Decimal

import pytest
from unittest.mock import Mock

from conftest import ISSUER, REWARD, make_address
from xrpl_airdrop.eligibility import EligibilityChecker
from xrpl_airdrop.holders import Holder


def holder(i):
    return Holder(address=make_address(i), held_amount=Decimal(10))


def reward_line(currency="RWD", issuer=ISSUER):
    return {"account": issuer, "currency": currency, "balance": "0", "limit": "1000000"}


@pytest.fixture
def checker(gateway, sleep):
    return EligibilityChecker(gateway, REWARD, concurrency=3, sleep=sleep)


# ============================================================================
# Matching
# ============================================================================

def test_matching_line_sets_channel(gateway, checker):
    h = holder(1)
    gateway.trust_lines[h.address] = [reward_line()]
    [out] = checker.check_all([h])
    assert out.has_channel is True
    assert h.has_channel is False  # input left untouched


def test_currency_or_issuer_mismatch_is_no_channel(gateway, checker):
    h1, h2 = holder(1), holder(2)
    gateway.trust_lines[h1.address] = [reward_line(currency="USD")]
    gateway.trust_lines[h2.address] = [reward_line(issuer=make_address(99))]
    out = checker.check_all([h1, h2])
    assert [h.has_channel for h in out] == [False, False]


def test_unfunded_account_answers_without_retry(gateway, checker, sleep):
    h = holder(1)
    gateway.missing_accounts.add(h.address)
    [out] = checker.check_all([h])
    assert out.has_channel is False
    assert gateway.calls[("account_lines", h.address)] == 1
    assert sleep.count(1.0) == 0


# ============================================================================
# Retry
# ============================================================================

def test_recovers_after_transient_failures(gateway, checker, sleep):
    h = holder(1)
    gateway.trust_lines[h.address] = [reward_line()]
    gateway.failures[h.address] = 2
    [out] = checker.check_all([h])
    assert out.has_channel is True
    assert gateway.calls[("account_lines", h.address)] == 3
    assert sleep.count(1.0) == 2


def test_retry_exhaustion_is_false_and_batch_continues(gateway, checker):
    bad, good = holder(1), holder(2)
    gateway.trust_lines[bad.address] = [reward_line()]
    gateway.trust_lines[good.address] = [reward_line()]
    gateway.failures[bad.address] = 4

    out = checker.check_all([bad, good])

    assert gateway.calls[("account_lines", bad.address)] == 4
    assert [h.has_channel for h in out] == [False, True]


def test_unexpected_error_is_no_channel_and_batch_continues(gateway, checker):
    odd, good = holder(1), holder(2)
    gateway.trust_lines[odd.address] = ["not-a-line"]
    gateway.trust_lines[good.address] = [reward_line()]

    out = checker.check_all([odd, good])

    assert [h.has_channel for h in out] == [False, True]


# ============================================================================
# Concurrency
# ============================================================================

def test_concurrency_cap_and_order(gateway, sleep):
    holders = [holder(i) for i in range(1, 13)]
    for h in holders[::2]:
        gateway.trust_lines[h.address] = [reward_line()]
    gateway.check_delay = 0.01

    progress = Mock()
    checker = EligibilityChecker(gateway, REWARD, concurrency=2, sleep=sleep, progress=progress)
    out = checker.check_all(holders)

    assert [h.address for h in out] == [h.address for h in holders]
    assert [h.has_channel for h in out] == [i % 2 == 0 for i in range(12)]
    assert gateway.max_in_flight <= 2
    assert sleep.count(0.1) == len(holders)
    assert progress.call_count == len(holders)
    progress.assert_any_call(12, 12)


def test_empty_input(checker):
    assert checker.check_all([]) == []


def test_rejects_zero_concurrency(gateway):
    with pytest.raises(ValueError):
        EligibilityChecker(gateway, REWARD, concurrency=0)
