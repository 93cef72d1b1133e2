"""
Integration tests for the airdrop pipelines, end to end against FakeGateway
(real signing, fake node).
"""

import json
from decimal import Decimal
from unittest.mock import Mock

import pytest
from xrpl.wallet import Wallet

from conftest import ISSUER, make_address
from xrpl_airdrop.config import AirdropConfig, Settings
from xrpl_airdrop.errors import ConfigError
from xrpl_airdrop.pipeline import (
    gateway_session,
    run_list_airdrop,
    run_nft_airdrop,
    run_send,
    run_token_airdrop,
    run_trait_airdrop,
)

HOLD_ISSUER = make_address(150)
A, B, C = (make_address(i) for i in range(1, 4))


@pytest.fixture(scope="module")
def settings():
    return Settings(rpc_url="http://unused", seed=Wallet.create().seed)


def config(**over):
    raw = {
        "currency": "RWD",
        "issuer": ISSUER,
        "holdCurrency": "HLD",
        "holdIssuer": HOLD_ISSUER,
        "sendingMemo": "gm",
        "testMode": True,
        "airdropAmounts": [{"min": 1, "max": 99, "amount": 10}, {"min": 100, "max": 1000, "amount": 25}],
    }
    raw.update(over)
    return AirdropConfig.from_dict(raw)


def reward_line():
    return [{"account": ISSUER, "currency": "RWD", "balance": "0"}]


@pytest.fixture
def token_gateway(gateway):
    page = [
        {"account": A, "currency": "HLD", "balance": "-50"},
        {"account": B, "currency": "HLD", "balance": "-500"},
        {"account": C, "currency": "HLD", "balance": "-5000"},
    ]
    orig = gateway.list_trust_lines

    def list_trust_lines(account, **kw):
        if account == HOLD_ISSUER:
            return page, None
        return orig(account, **kw)

    gateway.list_trust_lines = list_trust_lines
    gateway.trust_lines[A] = reward_line()
    gateway.trust_lines[C] = reward_line()
    return gateway


def read(path):
    return json.loads(path.read_text())


# ============================================================================
# Token airdrop
# ============================================================================

def test_token_test_mode_writes_snapshot_only(token_gateway, settings, tmp_path, sleep):
    run = run_token_airdrop(config(), settings, tmp_path, gateway=token_gateway, sleep=sleep)

    assert [r.holder.address for r in run.partition.ready] == [A]
    assert [r.holder.address for r in run.partition.blocked] == [B]
    assert [r.holder.address for r in run.partition.non_qualified] == [C]
    assert run.outcomes == []
    assert token_gateway.submitted == []
    assert read(tmp_path / "qualifiedWithTrustline_snapshot.json")["holders"][0]["totalAmount"] == "10"
    assert not (tmp_path / "transactions_success.json").exists()


def test_token_live_run_pays_ready_holders(token_gateway, settings, tmp_path, sleep):
    run = run_token_airdrop(config(testMode=False), settings, tmp_path, gateway=token_gateway, sleep=sleep)

    assert [o.job.address for o in run.outcomes] == [A]
    assert run.outcomes[0].success
    assert len(token_gateway.submitted) == 1
    [entry] = read(tmp_path / "transactions_success.json")["transactions"]
    assert entry["account"] == A
    assert entry["amount"] == "10"
    assert entry["category"] == "1-99"


def test_live_run_without_seed_fails_before_network(token_gateway, tmp_path):
    with pytest.raises(ConfigError):
        run_token_airdrop(config(testMode=False), Settings(rpc_url="u"), tmp_path, gateway=token_gateway)
    assert token_gateway.calls == {}


def test_token_requires_tracked_asset(settings, tmp_path):
    cfg = config(holdCurrency=None, holdIssuer=None)
    with pytest.raises(ConfigError, match="holdCurrency"):
        run_token_airdrop(cfg, settings, tmp_path, gateway=Mock())


def test_resume_skips_settled_accounts(token_gateway, settings, tmp_path, sleep):
    cfg = config(testMode=False)
    run_token_airdrop(cfg, settings, tmp_path, gateway=token_gateway, sleep=sleep)
    again = run_token_airdrop(cfg, settings, tmp_path, gateway=token_gateway, sleep=sleep, resume=True)

    assert again.outcomes == []
    assert len(token_gateway.submitted) == 1


# ============================================================================
# NFT, trait and list airdrops
# ============================================================================

def test_nft_airdrop_by_count(gateway, settings, tmp_path, sleep):
    source = Mock()
    source.fetch_collection.return_value = [
        {"Owner": A, "NFTokenID": "1"},
        {"Owner": A, "NFTokenID": "2"},
        {"Owner": B, "NFTokenID": "3"},
    ]
    gateway.trust_lines[A] = reward_line()
    gateway.trust_lines[B] = reward_line()
    cfg = config(nftIssuer="rNft", taxon=1, airdropAmounts=[{"min": 2, "max": 10, "amount": 7}])

    run = run_nft_airdrop(cfg, settings, tmp_path, gateway=gateway, source=source, sleep=sleep)

    source.fetch_collection.assert_called_once_with("rNft", 1)
    assert [(r.holder.address, r.reward_amount) for r in run.partition.ready] == [(A, Decimal(7))]
    assert [r.holder.address for r in run.partition.non_qualified] == [B]


def test_trait_airdrop_sums(gateway, settings, tmp_path, sleep):
    source = Mock()
    source.fetch_collection.return_value = [{"Owner": A, "NFTokenID": "1", "URI": "00"}]
    source.metadata_url.return_value = "https://ipfs.io/ipfs/x"
    source.fetch_attributes.return_value = [
        {"trait_type": "Color", "value": "Red"},
        {"trait_type": "Hat", "value": "Top"},
    ]
    gateway.trust_lines[A] = reward_line()
    cfg = config(
        nftIssuer="rNft",
        taxon=1,
        airdropAmounts=[
            {"trait_type": "Color", "value": "Red", "amount": 5},
            {"trait_type": "Hat", "value": "Top", "amount": 3},
        ],
    )
    run = run_trait_airdrop(cfg, settings, tmp_path, gateway=gateway, source=source, sleep=sleep)
    assert run.partition.ready[0].reward_amount == Decimal(8)


def test_list_airdrop(gateway, settings, tmp_path, sleep):
    path = tmp_path / "list.json"
    path.write_text(json.dumps({"gold": [A], "silver": [B]}))
    gateway.trust_lines[A] = reward_line()
    gateway.trust_lines[B] = reward_line()
    cfg = config(
        airdropListFile=str(path),
        airdropAmounts=[{"category": "gold", "amount": 100}, {"category": "silver", "amount": 40}],
    )
    run = run_list_airdrop(cfg, settings, tmp_path, gateway=gateway, sleep=sleep)
    assert {(r.holder.address, r.reward_amount) for r in run.partition.ready} == {
        (A, Decimal(100)),
        (B, Decimal(40)),
    }


def test_list_airdrop_missing_file(settings, tmp_path):
    cfg = config(airdropListFile=str(tmp_path / "nope.json"), airdropAmounts=[{"category": "a", "amount": 1}])
    with pytest.raises(ConfigError):
        run_list_airdrop(cfg, settings, tmp_path, gateway=Mock())


# ============================================================================
# Send from snapshot
# ============================================================================

def test_send_from_snapshot(gateway, settings, tmp_path, sleep):
    snap = tmp_path / "ready.json"
    snap.write_text(json.dumps({
        "date": "x",
        "holders": [
            {"holderAddress": A, "totalAmount": "3", "readyForDrop": True, "ignored": False},
            {"holderAddress": B, "totalAmount": "3", "readyForDrop": False},
        ],
    }))
    run = run_send(config(testMode=False), settings, snap, tmp_path, gateway=gateway, sleep=sleep)
    assert [o.job.address for o in run.outcomes] == [A]


def test_send_refuses_in_test_mode(settings, tmp_path):
    with pytest.raises(ConfigError):
        run_send(config(), settings, tmp_path / "ready.json", tmp_path, gateway=Mock())


def test_gateway_session_closes_what_it_opens(monkeypatch):
    opened = Mock()
    monkeypatch.setattr("xrpl_airdrop.pipeline.open_gateway", lambda settings, timeout_s: opened)
    with pytest.raises(RuntimeError):
        with gateway_session(Settings(rpc_url="u")):
            raise RuntimeError("boom")
    opened.close.assert_called_once()

    injected = Mock()
    with gateway_session(Settings(rpc_url="u"), gateway=injected):
        pass
    injected.close.assert_not_called()
