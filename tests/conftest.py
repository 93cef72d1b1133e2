"""
Shared fakes for the airdrop tests.

FakeGateway stands in for the XRPL node; FakeSigner skips real signing so
dispatcher tests can see exactly which sequence each payment received.
"""

import hashlib
import threading
import time
from collections import Counter
from decimal import Decimal

import pytest
from xrpl.constants import XRPLException
from xrpl.core.addresscodec import encode_classic_address
from xrpl.core.binarycodec import decode

from xrpl_airdrop.errors import GatewayError, TransientNetworkError
from xrpl_airdrop.holders import Asset
from xrpl_airdrop.signing import SignedPayment


def make_address(i: int) -> str:
    """Deterministic, checksum-valid classic address."""
    return encode_classic_address(bytes([i]) * 20)


ISSUER = make_address(200)
SENDER = make_address(201)
REWARD = Asset("RWD", ISSUER)


class FakeGateway:
    def __init__(self):
        self.pages = []                 # [(lines, next_marker)] served in order
        self.trust_lines = {}           # address -> list of lines
        self.failures = {}              # address -> number of errors before answering
        self.failure_error = TransientNetworkError("node busy", code="slowDown")
        self.missing_accounts = set()
        self.sequence = 100
        self.fee_drops = 12
        self.ledger_index = 5000
        self.balance = Decimal("1000000")
        self.submit_results = {}        # destination -> engine result
        self.tx_codes = {}              # destination -> TransactionResult
        self.unsettled = set()          # destinations whose tx never validates
        self.submitted = []
        self.hash_dest = {}
        self.calls = Counter()
        self.check_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def list_trust_lines(self, account, marker=None, peer=None, ledger_index="validated", limit=400):
        with self._lock:
            self.calls[("account_lines", account)] += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.check_delay:
                time.sleep(self.check_delay)
            if account == ISSUER and self.pages:
                idx = self.calls[("account_lines", account)] - 1
                page = self.pages[idx]
                if isinstance(page, Exception):
                    raise page
                return page
            with self._lock:
                left = self.failures.get(account, 0)
                if left:
                    self.failures[account] = left - 1
            if left:
                raise self.failure_error
            if account in self.missing_accounts:
                raise GatewayError("Account not found.", code="actNotFound")
            return list(self.trust_lines.get(account, [])), None
        finally:
            with self._lock:
                self.in_flight -= 1

    def get_trust_line_balance(self, account, currency, issuer):
        return self.balance

    def get_account_sequence(self, account):
        self.calls["account_info"] += 1
        return self.sequence

    def get_fee_drops(self):
        return self.fee_drops

    def get_current_ledger_index(self):
        return self.ledger_index

    def submit(self, tx_blob):
        self.submitted.append(tx_blob)
        if tx_blob.startswith("blob:"):
            dest = tx_blob.split(":")[1]
            tx_hash = "hash:" + tx_blob[len("blob:"):]
        else:
            # really signed: txid = SHA512Half("TXN\0" + blob)
            dest = decode(tx_blob)["Destination"]
            tx_hash = hashlib.sha512(bytes.fromhex("54584E00" + tx_blob)).digest()[:32].hex().upper()
        self.hash_dest[tx_hash] = dest
        return {"engine_result": self.submit_results.get(dest, "tesSUCCESS")}

    def get_transaction(self, tx_hash):
        self.calls[("tx", tx_hash)] += 1
        dest = self.hash_dest.get(tx_hash)
        if dest is None or dest in self.unsettled:
            return None
        return {
            "hash": tx_hash,
            "validated": True,
            "Fee": "12",
            "meta": {"TransactionResult": self.tx_codes.get(dest, "tesSUCCESS")},
        }

    def get_nft_sell_offers(self, nft_id):
        return list(self.trust_lines.get(("offers", nft_id), []))


class FakeSigner:
    def __init__(self, address=SENDER, fail_for=()):
        self.address = address
        self.currency = REWARD.currency
        self.issuer = REWARD.issuer
        self.fail_for = set(fail_for)
        self.specs = []

    def sign_payment(self, spec):
        if spec.destination in self.fail_for:
            raise XRPLException("cannot sign")
        self.specs.append(spec)
        return SignedPayment(
            tx_blob=f"blob:{spec.destination}:{spec.sequence}",
            tx_hash=f"hash:{spec.destination}:{spec.sequence}",
        )


class SleepRecorder:
    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, seconds):
        with self._lock:
            self.calls.append(seconds)

    def count(self, seconds):
        return sum(1 for s in self.calls if s == seconds)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def signer():
    return FakeSigner()


@pytest.fixture
def sleep():
    return SleepRecorder()
