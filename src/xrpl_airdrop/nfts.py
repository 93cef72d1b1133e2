from __future__ import annotations

import binascii
import logging
import time
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import httpx

from .errors import GatewayError, TransientNetworkError
from .holders import Holder
from .project_constants import (
    ELIGIBILITY_REQUEST_DELAY_S,
    IPFS_GATEWAY,
    NFT_COLLECTION_API,
    SELL_OFFER_RETRIES,
)

log = logging.getLogger("nfts")


class NftSource:
    """Off-chain lookups for NFT collections: the collection list and IPFS metadata."""

    def __init__(
        self,
        client: httpx.Client,
        api_url: str = NFT_COLLECTION_API,
        ipfs_gateway: str = IPFS_GATEWAY,
    ) -> None:
        self.client = client
        self.api_url = api_url.rstrip("/")
        self.ipfs_gateway = ipfs_gateway

    def fetch_collection(self, issuer: str, taxon: int) -> List[Dict[str, Any]]:
        url = f"{self.api_url}/issuer/{issuer}/taxon/{taxon}"
        try:
            resp = self.client.get(url)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TransportError as e:
            raise TransientNetworkError(f"NFT collection lookup failed: {e}") from e
        except (httpx.HTTPStatusError, ValueError) as e:
            raise GatewayError(f"NFT collection lookup failed: {e}") from e
        payload = data.get("data") if isinstance(data, dict) else None
        if not isinstance(payload, dict):
            return []
        return list(payload.get("nfts") or [])

    def metadata_url(self, uri_hex: Any) -> Optional[str]:
        """Decodes an on-ledger hex URI; only ipfs:// URIs are accepted."""
        if not isinstance(uri_hex, str) or not uri_hex:
            return None
        try:
            uri = binascii.unhexlify(uri_hex).decode("utf-8")
        except (binascii.Error, ValueError):
            return None
        if not uri.startswith("ipfs://"):
            return None
        return self.ipfs_gateway + uri[len("ipfs://"):]

    def fetch_attributes(self, url: str) -> Optional[List[Dict[str, Any]]]:
        try:
            resp = self.client.get(url)
            resp.raise_for_status()
            doc = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            log.error("Error fetching NFT attributes for %s: %s", url, e)
            return None
        attributes = doc.get("attributes") if isinstance(doc, dict) else None
        if not isinstance(attributes, list):
            return None
        return attributes


def sell_price_xrp(
    gateway,
    nft_id: str,
    retries: int = SELL_OFFER_RETRIES,
    retry_delay_s: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[bool, Optional[Decimal]]:
    """
    Returns (listed, price in XRP) from the first sell offer.
    Offers priced in an issued currency count as listed without an XRP price.
    """
    for attempt in range(retries + 1):
        try:
            offers = gateway.get_nft_sell_offers(nft_id)
            break
        except GatewayError as e:
            if attempt < retries:
                log.warning("Error checking sell offers for %s, retrying: %s", nft_id, e)
                sleep(retry_delay_s)
            else:
                log.error("Error checking sell offers for %s: %s", nft_id, e)
                return False, None
    if not offers:
        return False, None
    amount = offers[0].get("amount")
    if isinstance(amount, str) and amount.isdigit():
        return True, Decimal(amount) / Decimal(1_000_000)
    return True, None


def _group_by_owner(nfts: List[Dict[str, Any]]) -> "OrderedDict[str, List[Dict[str, Any]]]":
    owners: "OrderedDict[str, List[Dict[str, Any]]]" = OrderedDict()
    for n in nfts:
        owner = n.get("Owner")
        if not owner:
            continue
        owners.setdefault(owner, []).append(n)
    return owners


def count_holders(
    gateway,
    nfts: List[Dict[str, Any]],
    ignore: Set[str],
    listed_above: Optional[Decimal] = None,
    request_delay_s: float = ELIGIBILITY_REQUEST_DELAY_S,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Holder]:
    """
    One holder per owner. The tier signal is the number of NFTs that are either
    not for sale or listed at ``listed_above`` XRP or more. Without a
    ``listed_above`` price every NFT counts and no sell offers are looked up.
    """
    holders: List[Holder] = []
    for owner, owned in _group_by_owner(nfts).items():
        counted = 0
        for n in owned:
            if listed_above is None:
                counted += 1
                continue
            listed, price = sell_price_xrp(gateway, n.get("NFTokenID", ""), sleep=sleep)
            if not listed or (price is not None and price >= listed_above):
                counted += 1
            sleep(request_delay_s)
        holders.append(
            Holder(
                address=owner,
                held_amount=Decimal(counted),
                ignored=owner in ignore,
                nft_count=len(owned),
            )
        )
    return holders


def trait_holders(
    source: NftSource,
    nfts: List[Dict[str, Any]],
    ignore: Set[str],
    request_delay_s: float = ELIGIBILITY_REQUEST_DELAY_S,
    sleep: Callable[[float], None] = time.sleep,
) -> List[Holder]:
    holders: List[Holder] = []
    for owner, owned in _group_by_owner(nfts).items():
        traits: List[Tuple[Dict[str, Any], ...]] = []
        for n in owned:
            nft_id = n.get("NFTokenID")
            url = source.metadata_url(n.get("URI"))
            if url is None:
                log.error("Invalid URI for NFT %s: %r", nft_id, n.get("URI"))
                continue
            attributes = source.fetch_attributes(url)
            sleep(request_delay_s)
            if attributes is None:
                log.error("No attributes found for NFT %s at %s", nft_id, url)
                continue
            traits.append(tuple(a for a in attributes if isinstance(a, dict)))
        holders.append(
            Holder(
                address=owner,
                held_amount=Decimal(len(owned)),
                ignored=owner in ignore,
                nft_count=len(owned),
                traits=tuple(traits),
            )
        )
    return holders
