from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from xrpl.constants import XRPLException
from xrpl.utils import drops_to_xrp

from .errors import (
    AirdropError,
    GatewayError,
    InsufficientFundsError,
    InvalidJobError,
    SettlementUnknownError,
    SubmissionRejectedError,
)
from .ledger import LedgerEntry, TransactionLedger
from .project_constants import (
    DEFAULT_EXPLORER_URL,
    LAST_LEDGER_OFFSET,
    POLL_DELAY_S,
    POLL_RETRIES,
    POLL_RETRY_DELAY_S,
    REJECTED_RESULT_PREFIXES,
    SUBMIT_DELAY_S,
    TES_SUCCESS,
)
from .signing import PaymentSigner, PaymentSpec, SignedPayment, is_valid_classic_address
from .tiers import QualificationResult

log = logging.getLogger("dispatch")


@dataclass
class DispatchJob:
    counter: int
    address: Optional[str]
    amount: Optional[Decimal]
    category: Optional[str] = None
    # set once the node has accepted the signed payment
    sequence: Optional[int] = None
    tx_hash: Optional[str] = None


@dataclass(frozen=True)
class DispatchOutcome:
    job: DispatchJob
    success: bool
    entry: LedgerEntry


def _parse_amount(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def jobs_from_records(records: Iterable[Dict[str, Any]]) -> List[DispatchJob]:
    """Builds jobs from ``{account, amount, category?}`` records, numbered from 1."""
    return [
        DispatchJob(
            counter=i,
            address=r.get("account"),
            amount=_parse_amount(r.get("amount")),
            category=r.get("category"),
        )
        for i, r in enumerate(records, start=1)
    ]


def jobs_from_results(results: Iterable[QualificationResult]) -> List[DispatchJob]:
    return [
        DispatchJob(counter=i, address=r.holder.address, amount=r.reward_amount, category=r.category)
        for i, r in enumerate(results, start=1)
    ]


class TransactionDispatcher:
    """
    Sends one payment per job from a single sender, strictly one at a time.

    Phase one signs and submits every job without waiting for validation,
    assigning sequence numbers from a local counter that only advances when
    the node accepts a blob. Phase two polls each accepted hash until the
    ledger reports its result. Every job ends up as exactly one ledger entry.
    """

    def __init__(
        self,
        gateway,
        signer: PaymentSigner,
        ledger: TransactionLedger,
        explorer_url: str = DEFAULT_EXPLORER_URL,
        submit_delay_s: float = SUBMIT_DELAY_S,
        poll_retries: int = POLL_RETRIES,
        poll_retry_delay_s: float = POLL_RETRY_DELAY_S,
        poll_delay_s: float = POLL_DELAY_S,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.gateway = gateway
        self.signer = signer
        self.ledger = ledger
        self.explorer_url = explorer_url
        self.submit_delay_s = submit_delay_s
        self.poll_retries = poll_retries
        self.poll_retry_delay_s = poll_retry_delay_s
        self.poll_delay_s = poll_delay_s
        self.sleep = sleep

    def on_chain(self, tx_hash: str) -> str:
        return f"{self.explorer_url}{tx_hash}"

    def validate(self, job: DispatchJob) -> None:
        if not job.address:
            raise InvalidJobError(f"job {job.counter}: missing destination address")
        if not is_valid_classic_address(job.address):
            raise InvalidJobError(f"job {job.counter}: {job.address!r} is not a valid XRPL address")
        if job.address == self.signer.address:
            raise InvalidJobError(f"job {job.counter}: destination is the sending account")
        if job.amount is None or job.amount <= 0:
            raise InvalidJobError(f"job {job.counter}: amount {job.amount!r} is not a positive number")

    def check_funds(self, jobs: Sequence[DispatchJob]) -> Optional[Decimal]:
        # The issuer holds no trust line to its own currency and cannot run short
        if self.signer.address == self.signer.issuer:
            log.info("Sender is the issuer of %s; skipping balance check", self.signer.currency)
            return None
        required = sum((j.amount for j in jobs if j.amount is not None and j.amount > 0), Decimal(0))
        available = self.gateway.get_trust_line_balance(
            self.signer.address, self.signer.currency, self.signer.issuer
        )
        if available < required:
            raise InsufficientFundsError(available, required)
        log.info("Sender balance %s covers the required %s", available, required)
        return available

    def prepare(self, job: DispatchJob, sequence: int) -> SignedPayment:
        fee_drops = self.gateway.get_fee_drops()
        last_ledger = self.gateway.get_current_ledger_index() + LAST_LEDGER_OFFSET
        spec = PaymentSpec(
            destination=job.address,
            amount=job.amount,
            sequence=sequence,
            fee_drops=fee_drops,
            last_ledger_sequence=last_ledger,
        )
        signed = self.signer.sign_payment(spec)
        log.info(
            "%d: prepared %s sending %s %s to %s (seq %d, fee %s XRP)",
            job.counter,
            self.signer.address,
            job.amount,
            self.signer.currency,
            job.address,
            sequence,
            drops_to_xrp(str(fee_drops)),
        )
        return signed

    def submit(self, signed: SignedPayment) -> str:
        result = self.gateway.submit(signed.tx_blob)
        engine_result = str(result.get("engine_result", ""))
        if engine_result.startswith(REJECTED_RESULT_PREFIXES):
            raise SubmissionRejectedError(engine_result, str(result.get("engine_result_message", "")))
        return engine_result

    def _record(self, job: DispatchJob, entry: LedgerEntry, success: bool) -> DispatchOutcome:
        self.ledger.append(entry, success)
        return DispatchOutcome(job=job, success=success, entry=entry)

    def _record_error(self, job: DispatchJob, error: Exception, tx_hash: Optional[str]) -> DispatchOutcome:
        entry = LedgerEntry(
            counter=job.counter,
            category=job.category,
            account=job.address,
            amount=job.amount,
            transaction_result="ERROR",
            on_chain=self.on_chain(tx_hash) if tx_hash else "N/A",
            error=str(error),
        )
        return self._record(job, entry, False)

    def settle(self, job: DispatchJob) -> DispatchOutcome:
        attempts = self.poll_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                result = self.gateway.get_transaction(job.tx_hash)
            except GatewayError as e:
                log.warning("Error fetching transaction result for %s: %s", job.tx_hash, e)
                result = None

            if result is not None:
                code = result["meta"]["TransactionResult"]
                fee = result.get("Fee") or result.get("tx_json", {}).get("Fee")
                entry = LedgerEntry(
                    counter=job.counter,
                    category=job.category,
                    account=job.address,
                    amount=job.amount,
                    transaction_result=code,
                    on_chain=self.on_chain(job.tx_hash),
                    fee=drops_to_xrp(str(fee)) if fee is not None else None,
                    sequence=job.sequence,
                )
                if code != TES_SUCCESS:
                    log.warning("%d: %s settled with %s", job.counter, job.tx_hash, code)
                return self._record(job, entry, code == TES_SUCCESS)

            if attempt < attempts:
                log.debug(
                    "Retrying fetch transaction result for %s, retries left: %d",
                    job.tx_hash,
                    attempts - attempt,
                )
                self.sleep(self.poll_retry_delay_s)

        err = SettlementUnknownError(job.tx_hash, attempts)
        log.error("%d: %s", job.counter, err)
        return self._record_error(job, err, job.tx_hash)

    def dispatch(self, jobs: Sequence[DispatchJob]) -> List[DispatchOutcome]:
        # A broken ledger file must stop the run before anything is signed
        self.ledger.load_document(True)
        self.ledger.load_document(False)

        sequence = self.gateway.get_account_sequence(self.signer.address)
        log.info("Dispatching %d payments from %s starting at sequence %d", len(jobs), self.signer.address, sequence)

        outcomes: List[DispatchOutcome] = []
        submitted: List[DispatchJob] = []

        for job in jobs:
            signed: Optional[SignedPayment] = None
            try:
                self.validate(job)
                signed = self.prepare(job, sequence)
                engine_result = self.submit(signed)
            except (AirdropError, XRPLException) as e:
                log.error("%d: payment to %s failed before submission: %s", job.counter, job.address, e)
                outcomes.append(self._record_error(job, e, signed.tx_hash if signed else None))
            else:
                job.sequence = sequence
                job.tx_hash = signed.tx_hash
                submitted.append(job)
                sequence += 1
                log.debug("%d: submitted %s (%s)", job.counter, signed.tx_hash, engine_result)
            self.sleep(self.submit_delay_s)

        log.info("Submitted %d/%d payments; waiting for results", len(submitted), len(jobs))
        for job in submitted:
            try:
                outcome = self.settle(job)
            except Exception as e:
                log.error("%d: settling %s failed: %s", job.counter, job.tx_hash, e)
                outcome = self._record_error(job, e, job.tx_hash)
            outcomes.append(outcome)
            self.sleep(self.poll_delay_s)

        outcomes.sort(key=lambda o: o.job.counter)
        ok = sum(1 for o in outcomes if o.success)
        log.info("Dispatch finished: %d succeeded, %d failed", ok, len(outcomes) - ok)
        return outcomes
