from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Callable, List, Optional, Sequence

from .errors import GatewayError
from .holders import Asset, Holder
from .project_constants import (
    ELIGIBILITY_CONCURRENCY,
    ELIGIBILITY_REQUEST_DELAY_S,
    ELIGIBILITY_RETRIES,
    ELIGIBILITY_RETRY_DELAY_S,
)

log = logging.getLogger("eligibility")


class EligibilityChecker:
    """
    Marks each holder with whether it has a trust line to the reward asset.

    Checks run on at most ``concurrency`` threads; every check is followed by
    ``request_delay_s`` inside its worker, on top of the concurrency cap.
    A holder whose check keeps failing is reported as having no trust line.
    """

    def __init__(
        self,
        gateway,
        reward_asset: Asset,
        concurrency: int = ELIGIBILITY_CONCURRENCY,
        request_delay_s: float = ELIGIBILITY_REQUEST_DELAY_S,
        retries: int = ELIGIBILITY_RETRIES,
        retry_delay_s: float = ELIGIBILITY_RETRY_DELAY_S,
        sleep: Callable[[float], None] = time.sleep,
        progress: Optional[Callable[[int, int], None]] = None,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.gateway = gateway
        self.reward_asset = reward_asset
        self.concurrency = concurrency
        self.request_delay_s = request_delay_s
        self.retries = retries
        self.retry_delay_s = retry_delay_s
        self.sleep = sleep
        self.progress = progress
        self._lock = threading.Lock()
        self._done = 0
        self._total = 0

    def has_trust_line(self, address: str) -> bool:
        asset = self.reward_asset
        marker = None
        seen = set()
        while True:
            try:
                lines, marker = self.gateway.list_trust_lines(
                    address, marker=marker, peer=asset.issuer, ledger_index="current"
                )
            except GatewayError as e:
                # Unfunded accounts cannot hold trust lines
                if e.code == "actNotFound":
                    return False
                raise
            for line in lines:
                if line.get("currency") == asset.currency and line.get("account") == asset.issuer:
                    return True
            if not marker:
                return False
            if repr(marker) in seen:
                log.warning("account_lines for %s repeated marker %r; stopping", address, marker)
                return False
            seen.add(repr(marker))

    def check_with_retry(self, address: str) -> bool:
        for attempt in range(self.retries + 1):
            try:
                return self.has_trust_line(address)
            except GatewayError as e:
                left = self.retries - attempt
                if left > 0:
                    log.warning(
                        "Error checking trust line for %s, retrying... (%d retries left): %s",
                        address,
                        left,
                        e,
                    )
                    self.sleep(self.retry_delay_s)
                else:
                    log.error("Error checking trust line for %s: %s", address, e)
        return False

    def _tick(self) -> None:
        with self._lock:
            self._done += 1
            done, total = self._done, self._total
        if self.progress is not None:
            self.progress(done, total)
        if done == total or done % 100 == 0:
            log.info("Trust lines checked: %d/%d", done, total)

    def _check(self, holder: Holder) -> Holder:
        try:
            has_channel = self.check_with_retry(holder.address)
        except Exception as e:
            log.error("Unexpected error checking trust line for %s: %s", holder.address, e)
            has_channel = False
        finally:
            self.sleep(self.request_delay_s)
            self._tick()
        return replace(holder, has_channel=has_channel)

    def check_all(self, holders: Sequence[Holder]) -> List[Holder]:
        """Returns new holders in input order, once every check has finished."""
        with self._lock:
            self._done = 0
            self._total = len(holders)
        if not holders:
            return []
        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            return list(pool.map(self._check, holders))
