from __future__ import annotations

from decimal import Decimal


class AirdropError(Exception):
    """Base class for every error the airdrop tool raises on purpose."""


class ConfigError(AirdropError):
    pass


class GatewayError(AirdropError):
    """The XRPL node answered with an error, or could not be reached."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class TransientNetworkError(GatewayError):
    """Retryable: transport failure, rate limiting or an overloaded node."""


class GatewayUnavailableError(GatewayError):
    """The node could not be reached when the run started."""


class PaginationStallError(AirdropError):
    def __init__(self, account: str, marker: object) -> None:
        super().__init__(f"account_lines for {account} returned marker {marker!r} twice")
        self.account = account
        self.marker = marker


class InvalidJobError(AirdropError):
    """A dispatch job is missing or has an unusable address/amount."""


class SubmissionRejectedError(AirdropError):
    """The node refused a signed blob before it reached the open ledger."""

    def __init__(self, engine_result: str, message: str = "") -> None:
        super().__init__(f"{engine_result}: {message}" if message else engine_result)
        self.engine_result = engine_result


class SettlementUnknownError(AirdropError):
    def __init__(self, tx_hash: str, attempts: int) -> None:
        super().__init__(f"Transaction result not found for {tx_hash} after {attempts} attempts")
        self.tx_hash = tx_hash
        self.attempts = attempts


class InsufficientFundsError(AirdropError):
    def __init__(self, available: Decimal, required: Decimal) -> None:
        super().__init__(
            f"Insufficient balance to cover the airdrop. Available: {available}, Required: {required}"
        )
        self.available = available
        self.required = required
