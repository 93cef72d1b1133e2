from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import httpx

from .config import AirdropConfig, Settings
from .dispatch import (
    DispatchJob,
    DispatchOutcome,
    TransactionDispatcher,
    jobs_from_records,
    jobs_from_results,
)
from .eligibility import EligibilityChecker
from .errors import ConfigError
from .holders import collect_holders, load_category_holders
from .ledger import TransactionLedger
from .nfts import NftSource, count_holders, trait_holders
from .rpc import LedgerGateway
from .signing import PaymentSigner
from .snapshot import load_ready_jobs, local_timestamp, write_snapshot
from .tiers import (
    Partition,
    QualificationResult,
    classify,
    classify_category,
    classify_traits,
    partition,
)

log = logging.getLogger("pipeline")

Sleep = Callable[[float], None]


@dataclass
class RunResult:
    partition: Optional[Partition] = None
    snapshot_files: Dict[str, Path] = field(default_factory=dict)
    outcomes: List[DispatchOutcome] = field(default_factory=list)


def open_gateway(settings: Settings, timeout_s: float = 60.0) -> LedgerGateway:
    gateway = LedgerGateway(settings.rpc_url, timeout_s=timeout_s)
    try:
        gateway.ping()
    except Exception:
        gateway.close()
        raise
    return gateway


@contextmanager
def gateway_session(
    settings: Settings,
    gateway: Optional[LedgerGateway] = None,
    timeout_s: float = 60.0,
) -> Iterator[LedgerGateway]:
    """Yields a connected gateway; one opened here is always closed on the way out."""
    if gateway is not None:
        yield gateway
        return
    gw = open_gateway(settings, timeout_s)
    try:
        yield gw
    finally:
        gw.close()


def build_signer(config: AirdropConfig, settings: Settings) -> PaymentSigner:
    return PaymentSigner.from_seed(
        config.sender_seed(settings),
        currency=config.reward_asset.currency,
        issuer=config.reward_asset.issuer,
        memo=config.memo,
    )


def send_jobs(
    gateway,
    config: AirdropConfig,
    signer: PaymentSigner,
    jobs: Sequence[DispatchJob],
    out_dir: str | Path = ".",
    sleep: Sleep = time.sleep,
    resume: bool = False,
) -> List[DispatchOutcome]:
    ledger = TransactionLedger(out_dir, clock=lambda: local_timestamp(config.timezone))
    jobs = list(jobs)
    if resume:
        settled = ledger.settled_accounts()
        skipped = [j for j in jobs if j.address in settled]
        jobs = [j for j in jobs if j.address not in settled]
        if skipped:
            log.info("Resume: skipping %d accounts already paid", len(skipped))
    if not jobs:
        log.info("Nothing to send")
        return []

    dispatcher = TransactionDispatcher(
        gateway, signer, ledger, explorer_url=config.explorer_url, sleep=sleep
    )
    dispatcher.check_funds(jobs)
    return dispatcher.dispatch(jobs)


def _finish(
    gateway,
    config: AirdropConfig,
    signer: Optional[PaymentSigner],
    results: List[QualificationResult],
    out_dir: str | Path,
    sleep: Sleep,
    resume: bool,
) -> RunResult:
    part = partition(results)
    log.info(
        "Ready: %d  Qualified without trust line: %d  Not qualified: %d",
        len(part.ready),
        len(part.blocked),
        len(part.non_qualified),
    )
    files = write_snapshot(part, out_dir, local_timestamp(config.timezone))
    run = RunResult(partition=part, snapshot_files=files)
    if signer is None:
        log.info("Test mode: snapshot written, nothing sent")
        return run
    run.outcomes = send_jobs(
        gateway, config, signer, jobs_from_results(part.ready), out_dir, sleep, resume
    )
    return run


def _checker(gateway, config: AirdropConfig, sleep: Sleep) -> EligibilityChecker:
    return EligibilityChecker(
        gateway, config.reward_asset, concurrency=config.concurrency, sleep=sleep
    )


def _signer_unless_test(config: AirdropConfig, settings: Settings) -> Optional[PaymentSigner]:
    # Built before any network work so a bad seed fails the run up front.
    return None if config.test_mode else build_signer(config, settings)


def run_token_airdrop(
    config: AirdropConfig,
    settings: Settings,
    out_dir: str | Path = ".",
    gateway: Optional[LedgerGateway] = None,
    timeout_s: float = 60.0,
    sleep: Sleep = time.sleep,
    resume: bool = False,
) -> RunResult:
    """Token holders, rewarded by balance range."""
    config.require("tracked_asset", "range_tiers")
    signer = _signer_unless_test(config, settings)
    with gateway_session(settings, gateway, timeout_s) as gw:
        holders = collect_holders(gw, config.tracked_asset, set(config.ignore_wallets))
        if not holders:
            log.warning("No holders found for %s", config.tracked_asset)
        else:
            log.info("Found %d holders of %s", len(holders), config.tracked_asset.currency)
        holders = _checker(gw, config, sleep).check_all(holders)
        results = [classify(h, config.range_tiers) for h in holders]
        return _finish(gw, config, signer, results, out_dir, sleep, resume)


@contextmanager
def _nft_source(source: Optional[NftSource], timeout_s: float) -> Iterator[NftSource]:
    if source is not None:
        yield source
        return
    client = httpx.Client(timeout=timeout_s, follow_redirects=True)
    try:
        yield NftSource(client)
    finally:
        client.close()


def run_nft_airdrop(
    config: AirdropConfig,
    settings: Settings,
    out_dir: str | Path = ".",
    gateway: Optional[LedgerGateway] = None,
    source: Optional[NftSource] = None,
    timeout_s: float = 60.0,
    sleep: Sleep = time.sleep,
    resume: bool = False,
) -> RunResult:
    """NFT holders, rewarded by the number of NFTs held (optionally ignoring cheap listings)."""
    config.require("nft_issuer", "taxon", "range_tiers")
    signer = _signer_unless_test(config, settings)
    with gateway_session(settings, gateway, timeout_s) as gw, _nft_source(source, timeout_s) as src:
        nfts = src.fetch_collection(config.nft_issuer, config.taxon)
        log.info("There are %d NFTs in the collection", len(nfts))
        holders = count_holders(gw, nfts, set(config.ignore_wallets), config.listed_above, sleep=sleep)
        log.info("There are %d holders of NFTs in the collection", len(holders))
        holders = _checker(gw, config, sleep).check_all(holders)
        results = [classify(h, config.range_tiers) for h in holders]
        return _finish(gw, config, signer, results, out_dir, sleep, resume)


def run_trait_airdrop(
    config: AirdropConfig,
    settings: Settings,
    out_dir: str | Path = ".",
    gateway: Optional[LedgerGateway] = None,
    source: Optional[NftSource] = None,
    timeout_s: float = 60.0,
    sleep: Sleep = time.sleep,
    resume: bool = False,
) -> RunResult:
    """NFT holders, rewarded per matching trait (amounts add up)."""
    config.require("nft_issuer", "taxon", "trait_tiers")
    signer = _signer_unless_test(config, settings)
    with gateway_session(settings, gateway, timeout_s) as gw, _nft_source(source, timeout_s) as src:
        nfts = src.fetch_collection(config.nft_issuer, config.taxon)
        log.info("There are %d NFTs in the collection", len(nfts))
        holders = trait_holders(src, nfts, set(config.ignore_wallets), sleep=sleep)
        holders = _checker(gw, config, sleep).check_all(holders)
        results = [classify_traits(h, config.trait_tiers) for h in holders]
        return _finish(gw, config, signer, results, out_dir, sleep, resume)


def run_list_airdrop(
    config: AirdropConfig,
    settings: Settings,
    out_dir: str | Path = ".",
    gateway: Optional[LedgerGateway] = None,
    timeout_s: float = 60.0,
    sleep: Sleep = time.sleep,
    resume: bool = False,
) -> RunResult:
    """Addresses from a category list file, rewarded per category."""
    config.require("airdrop_list_file", "category_tiers")
    try:
        holders = load_category_holders(config.airdrop_list_file, set(config.ignore_wallets))
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read airdrop list {config.airdrop_list_file}: {e}") from e
    signer = _signer_unless_test(config, settings)
    with gateway_session(settings, gateway, timeout_s) as gw:
        holders = _checker(gw, config, sleep).check_all(holders)
        results = [classify_category(h, config.category_tiers) for h in holders]
        return _finish(gw, config, signer, results, out_dir, sleep, resume)


def run_send(
    config: AirdropConfig,
    settings: Settings,
    snapshot_path: str | Path,
    out_dir: str | Path = ".",
    gateway: Optional[LedgerGateway] = None,
    timeout_s: float = 60.0,
    sleep: Sleep = time.sleep,
    resume: bool = False,
) -> RunResult:
    """Pays the ready holders of a snapshot written by an earlier run."""
    if config.test_mode:
        raise ConfigError("testMode is true; set it to false to send payments")
    signer = build_signer(config, settings)
    jobs = jobs_from_records(load_ready_jobs(snapshot_path))
    log.info("Loaded %d ready holders from %s", len(jobs), snapshot_path)
    with gateway_session(settings, gateway, timeout_s) as gw:
        return RunResult(outcomes=send_jobs(gw, config, signer, jobs, out_dir, sleep, resume))
