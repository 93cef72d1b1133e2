from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from xrpl.core import addresscodec
from xrpl.core.binarycodec import encode
from xrpl.models.amounts import IssuedCurrencyAmount
from xrpl.models.transactions import Memo, Payment
from xrpl.transaction import sign
from xrpl.wallet import Wallet

from .errors import ConfigError


@dataclass(frozen=True)
class PaymentSpec:
    destination: str
    amount: Decimal
    sequence: int
    fee_drops: int
    last_ledger_sequence: int


@dataclass(frozen=True)
class SignedPayment:
    tx_blob: str
    tx_hash: str


def is_valid_classic_address(address: object) -> bool:
    if not isinstance(address, str) or not address:
        return False
    return addresscodec.is_valid_classic_address(address)


def memo_hex(text: str) -> str:
    return text.encode("utf-8").hex().upper()


def format_amount(amount: Decimal) -> str:
    # Ledger amounts must not use exponent notation ("1E+2")
    return format(amount.normalize(), "f")


class PaymentSigner:
    """Signs issued-currency payments from one sender wallet, offline."""

    def __init__(self, wallet: Wallet, currency: str, issuer: str, memo: str) -> None:
        self.wallet = wallet
        self.currency = currency
        self.issuer = issuer
        self.memo_data = memo_hex(memo)

    @classmethod
    def from_seed(cls, seed: str, currency: str, issuer: str, memo: str) -> "PaymentSigner":
        try:
            wallet = Wallet.from_seed(seed)
        except Exception as e:
            raise ConfigError(f"Sender seed is not a valid XRPL seed: {e}") from e
        return cls(wallet, currency, issuer, memo)

    @property
    def address(self) -> str:
        return self.wallet.classic_address

    def build_payment(self, spec: PaymentSpec) -> Payment:
        return Payment(
            account=self.address,
            destination=spec.destination,
            amount=IssuedCurrencyAmount(
                currency=self.currency,
                issuer=self.issuer,
                value=format_amount(spec.amount),
            ),
            sequence=spec.sequence,
            fee=str(spec.fee_drops),
            last_ledger_sequence=spec.last_ledger_sequence,
            memos=[Memo(memo_data=self.memo_data)],
        )

    def sign_payment(self, spec: PaymentSpec) -> SignedPayment:
        signed = sign(self.build_payment(spec), self.wallet)
        return SignedPayment(tx_blob=encode(signed.to_xrpl()), tx_hash=signed.get_hash())
