"""
Data Manager - holds the latest poll result of every monitored host.

Collectors publish into it once per poll; the presentation layer reads
from it between polls.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from .models import PollResult, Snapshot


logger = logging.getLogger(__name__)


class DataManager:
    """
    Latest published PollResult per host.

    Published snapshots are immutable, so readers get them without
    copying.
    """

    def __init__(self):
        self._results: Dict[str, PollResult] = {}
        self._lock = asyncio.Lock()

    @property
    def hosts(self) -> List[str]:
        """Get list of all hosts with a published result."""
        return list(self._results)

    @property
    def results(self) -> Dict[str, PollResult]:
        """Get all current results keyed by host."""
        return self._results.copy()

    def get_result(self, host: str) -> Optional[PollResult]:
        return self._results.get(host)

    def get_snapshot(self, host: str) -> Optional[Snapshot]:
        """Get the latest snapshot for a host."""
        result = self._results.get(host)
        return result.snapshot if result else None

    async def publish(self, host: str, result: PollResult):
        """
        Store a poll result for a host.

        Skipped polls carry nothing new and leave the stored result alone.
        """
        if result.skipped:
            logger.debug(f"Ignoring skipped poll for {host}")
            return

        async with self._lock:
            self._results[host] = result
            if result.errors:
                logger.info(
                    f"Published snapshot for {host} with failed probes: "
                    + ", ".join(failure.probe for failure in result.errors)
                )
            else:
                logger.debug(f"Published snapshot for {host}")

    async def remove_host(self, host: str):
        """Remove a host from the registry."""
        async with self._lock:
            if host in self._results:
                del self._results[host]
                logger.info(f"Removed host: {host}")

    def get_stale_hosts(self, max_age_seconds: float = 300) -> List[str]:
        """Get hosts whose snapshot has not been refreshed recently."""
        cutoff = datetime.now() - timedelta(seconds=max_age_seconds)
        return [
            host for host, result in self._results.items()
            if result.snapshot.timestamp < cutoff
        ]

    def clear(self):
        """Clear all stored data."""
        self._results.clear()
        logger.info("Cleared all data")

    def __len__(self) -> int:
        """Return number of monitored hosts."""
        return len(self._results)
