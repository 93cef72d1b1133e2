from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .errors import GatewayError, GatewayUnavailableError, TransientNetworkError

# rippled error codes worth retrying
TRANSIENT_RPC_ERRORS = {"slowDown", "tooBusy", "noNetwork", "noCurrent", "noClosed", "lgrNotFound"}

# Upper bound on the escalated open-ledger fee we are willing to pay (2 XRP)
MAX_FEE_DROPS = 2_000_000


class LedgerGateway:
    """Thin JSON-RPC client for a rippled node.

    One instance (and one ``httpx.Client``) is shared by every phase of a run.
    ``httpx.Client`` is safe to use from the eligibility worker threads.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout_s: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.client = httpx.Client(timeout=timeout_s, transport=transport)

    def close(self) -> None:
        self.client.close()

    def _post(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        payload = {"method": method, "params": [params or {}]}
        try:
            resp = self.client.post(self.rpc_url, json=payload)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method}: {e}") from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientNetworkError(
                f"{method}: HTTP {resp.status_code}", code=str(resp.status_code)
            )
        try:
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPStatusError, ValueError) as e:
            raise GatewayError(f"{method}: {e}") from e

        result = data.get("result") if isinstance(data, dict) else None
        if not isinstance(result, dict):
            raise GatewayError(f"{method}: response has no result object")
        if result.get("status") == "error" or "error" in result:
            code = result.get("error")
            message = result.get("error_message") or code
            cls = TransientNetworkError if code in TRANSIENT_RPC_ERRORS else GatewayError
            raise cls(f"RPC error ({method}): {message}", code=code)
        return result

    def ping(self) -> Dict[str, Any]:
        """Checks the node answers at all. Called once before a run starts."""
        try:
            return self._post("server_info")["info"]
        except GatewayError as e:
            raise GatewayUnavailableError(f"Cannot reach XRPL node at {self.rpc_url}: {e}") from e

    def list_trust_lines(
        self,
        account: str,
        marker: Any = None,
        peer: Optional[str] = None,
        ledger_index: str = "validated",
        limit: int = 400,
    ) -> Tuple[List[Dict[str, Any]], Any]:
        """Returns one page of trust lines and the marker of the next page (or None)."""
        params: Dict[str, Any] = {
            "account": account,
            "ledger_index": ledger_index,
            "limit": limit,
        }
        if marker is not None:
            params["marker"] = marker
        if peer:
            params["peer"] = peer
        result = self._post("account_lines", params)
        return list(result.get("lines", [])), result.get("marker")

    def get_trust_line_balance(self, account: str, currency: str, issuer: str) -> Decimal:
        marker = None
        while True:
            lines, marker = self.list_trust_lines(
                account, marker=marker, peer=issuer, ledger_index="current"
            )
            for line in lines:
                if line.get("currency") == currency and line.get("account") == issuer:
                    return Decimal(line["balance"])
            if not marker:
                return Decimal(0)

    def get_account_sequence(self, account: str) -> int:
        result = self._post(
            "account_info", {"account": account, "ledger_index": "current", "strict": True}
        )
        return int(result["account_data"]["Sequence"])

    def get_fee_drops(self) -> int:
        drops = self._post("fee")["drops"]
        fee = max(int(drops["base_fee"]), int(drops.get("open_ledger_fee", 0)))
        return min(fee, MAX_FEE_DROPS)

    def get_current_ledger_index(self) -> int:
        return int(self._post("ledger_current")["ledger_current_index"])

    def submit(self, tx_blob: str) -> Dict[str, Any]:
        """Submits a signed blob without waiting for validation."""
        return self._post("submit", {"tx_blob": tx_blob})

    def get_transaction(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Returns the validated transaction, or None while it is not settled."""
        try:
            result = self._post("tx", {"transaction": tx_hash, "binary": False})
        except GatewayError as e:
            if e.code == "txnNotFound":
                return None
            raise
        if not result.get("validated") or "meta" not in result:
            return None
        return result

    def get_nft_sell_offers(self, nft_id: str) -> List[Dict[str, Any]]:
        try:
            result = self._post("nft_sell_offers", {"nft_id": nft_id, "ledger_index": "validated"})
        except GatewayError as e:
            if e.code == "objectNotFound":
                return []
            raise
        return list(result.get("offers", []))
