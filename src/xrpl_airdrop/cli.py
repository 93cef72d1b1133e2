from __future__ import annotations

import argparse
import logging
from typing import List

from .config import AirdropConfig, Settings
from .dispatch import DispatchOutcome
from .errors import AirdropError
from .ledger import TransactionLedger
from .pipeline import (
    RunResult,
    run_list_airdrop,
    run_nft_airdrop,
    run_send,
    run_token_airdrop,
    run_trait_airdrop,
)
from .project_constants import SNAPSHOT_READY_FILE

PIPELINES = {
    "token": run_token_airdrop,
    "nft": run_nft_airdrop,
    "traits": run_trait_airdrop,
    "list": run_list_airdrop,
}


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def print_outcomes(outcomes: List[DispatchOutcome]) -> None:
    if not outcomes:
        return
    ok = [o for o in outcomes if o.success]
    print("----------------------------------------")
    print(f"Payments sent : {len(ok)}")
    print(f"Payments failed: {len(outcomes) - len(ok)}")


def print_run(run: RunResult) -> None:
    part = run.partition
    print("========================================")
    print("XRPL HOLDER AIRDROP SNAPSHOT")
    print("========================================")
    if part is not None:
        print(f"Ready for drop          : {len(part.ready)}")
        print(f"Qualified, no trustline : {len(part.blocked)}")
        print(f"Not qualified           : {len(part.non_qualified)}")
    for path in run.snapshot_files.values():
        print(f"Wrote snapshot: {path}")
    print_outcomes(run.outcomes)


def cmd_run(args: argparse.Namespace) -> int:
    settings = Settings.from_env(rpc_url_override=args.rpc_url)
    config = AirdropConfig.from_file(args.config)
    run = PIPELINES[args.cmd](
        config,
        settings,
        out_dir=args.out_dir,
        timeout_s=args.timeout,
        resume=args.resume,
    )
    print_run(run)
    return 0


def cmd_send(args: argparse.Namespace) -> int:
    settings = Settings.from_env(rpc_url_override=args.rpc_url)
    config = AirdropConfig.from_file(args.config)
    run = run_send(
        config,
        settings,
        args.snapshot,
        out_dir=args.out_dir,
        timeout_s=args.timeout,
        resume=args.resume,
    )
    print_outcomes(run.outcomes)
    return 0


def cmd_summary(args: argparse.Namespace) -> int:
    summary = TransactionLedger(args.out_dir).summary()
    for label in ("success", "failed"):
        s = summary[label]
        print(f"{label:8}: {s['count']} transactions, amount {s['amount']}, fees {s['fees']} XRP")
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="xrpl-airdrop",
        description="Snapshot XRPL token/NFT holders and airdrop an issued currency to them.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--rpc-url", default=None, help="Override node JSON-RPC URL (else use env).")
    p.add_argument("--timeout", type=float, default=60.0, help="RPC timeout seconds.")
    p.add_argument("--config", default="config.json", help="Airdrop config JSON path.")
    p.add_argument("--out-dir", default=".", help="Directory for snapshot and ledger files.")

    sub = p.add_subparsers(dest="cmd", required=True)

    helps = {
        "token": "Snapshot token holders and reward them by balance tier.",
        "nft": "Snapshot NFT holders and reward them by NFT count tier.",
        "traits": "Snapshot NFT holders and reward every matching trait.",
        "list": "Reward addresses from the airdropListFile categories.",
    }
    for name, text in helps.items():
        s = sub.add_parser(name, help=text)
        s.add_argument(
            "--resume",
            action="store_true",
            help="Skip accounts that already have a successful ledger entry.",
        )
        s.set_defaults(func=cmd_run)

    snd = sub.add_parser("send", help="Pay the ready holders of an existing snapshot.")
    snd.add_argument("--snapshot", default=SNAPSHOT_READY_FILE, help="Ready-holder snapshot path.")
    snd.add_argument("--resume", action="store_true", help="Skip accounts already paid.")
    snd.set_defaults(func=cmd_send)

    s = sub.add_parser("summary", help="Summarize the success/failed transaction ledgers.")
    s.set_defaults(func=cmd_summary)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    try:
        code = args.func(args)
    except AirdropError as e:
        logging.getLogger("airdrop").error("%s", e)
        raise SystemExit(1)
    raise SystemExit(code)
