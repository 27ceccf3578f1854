"""
Source-bias lookup: maps linked URLs to editorial bias records.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError

from leanwatch.core.scoring import normalize_bias_label
from leanwatch.schemas import BiasRecord
from leanwatch.store import Store
from leanwatch.utils import extract_hostname, root_domain

logger = logging.getLogger(__name__)


def match_record(hostname: str, records: Mapping[str, BiasRecord]) -> Optional[BiasRecord]:
    """
    Resolve a hostname against records keyed by domain.

    Tiers, first hit wins:
        1. exact hostname
        2. root domain (last two labels)
        3. any key the hostname ends with (longest key first)
    """
    if hostname in records:
        return records[hostname]

    root = root_domain(hostname)
    if root in records:
        return records[root]

    for key in sorted(records, key=len, reverse=True):
        if key and hostname.endswith(key):
            return records[key]
    return None


class SourceBiasIndex:
    """Read-only view over the bias-source table."""

    def __init__(self, store: Store):
        self._store = store

    async def lookup(self, urls: Iterable[str]) -> Dict[str, BiasRecord]:
        """
        Find the bias record for each URL.

        Args:
            urls: Linked URLs; non-http(s) or unparseable ones are skipped

        Returns:
            Mapping of URL -> BiasRecord; URLs without a match are absent. A store failure
            yields an empty mapping.
        """
        hosts_by_url = {url: host for url in urls if (host := extract_hostname(url))}
        if not hosts_by_url:
            return {}

        hostnames: List[str] = sorted(set(hosts_by_url.values()))
        try:
            rows = await asyncio.to_thread(self._store.find_bias_sources, hostnames)
        except SQLAlchemyError as e:
            logger.warning("Bias lookup unavailable, continuing without source bias: %s", type(e).__name__)
            return {}

        records = {
            row.domain_key: row.model_copy(update={"bias_label": normalize_bias_label(row.bias_label)})
            for row in rows
        }

        matched: Dict[str, BiasRecord] = {}
        for url, host in hosts_by_url.items():
            record = match_record(host, records)
            if record is not None:
                matched[url] = record

        logger.info("Bias lookup: %d/%d URLs matched", len(matched), len(hosts_by_url))
        return matched
