"""
Per-path metadata (meta.units) for the own vessel.

Signal K only attaches meta to the first delta of a path, so units are
remembered here: prefetched from the full data model at connect time and
topped up from whatever deltas carry.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp

from n2kbridge.config import SignalKConfig
from n2kbridge.delta import MetaInfo

log = logging.getLogger(__name__)

_SKIP_KEYS = {"meta", "value", "values", "$source", "timestamp", "source", "pgn", "sentence"}


class MetaStore:
    def __init__(self, cfg: Optional[SignalKConfig] = None):
        self.cfg = cfg
        self._meta: Dict[str, MetaInfo] = {}

    def get(self, path: str) -> Optional[MetaInfo]:
        return self._meta.get(path)

    def remember(self, path: str, meta: Optional[MetaInfo]) -> Optional[MetaInfo]:
        """Store meta for a path unless one is already known; returns the stored meta."""
        if meta is not None and path not in self._meta:
            self._meta[path] = meta
        return self._meta.get(path)

    def load_model(self, node: Any, prefix: str = "") -> int:
        """Walk a Signal K full-model document and record units for every leaf."""
        if not isinstance(node, dict):
            return 0
        count = 0
        if prefix and "value" in node:
            meta = MetaInfo.from_raw(node.get("meta"))
            if meta is not None and prefix not in self._meta:
                self._meta[prefix] = meta
                count += 1
        for key, child in node.items():
            if key in _SKIP_KEYS or not isinstance(child, dict):
                continue
            count += self.load_model(child, f"{prefix}.{key}" if prefix else key)
        return count

    async def fetch(self) -> int:
        if self.cfg is None:
            return 0
        url = f"{self.cfg.http_base}/api/vessels/self"
        timeout = aiohttp.ClientTimeout(total=self.cfg.meta_timeout_secs)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    if response.status != 200:
                        log.warning(f"Signal K data model request returned HTTP {response.status}")
                        return 0
                    model = await response.json(content_type=None)
        except asyncio.TimeoutError:
            log.warning(f"Signal K data model request timed out after {self.cfg.meta_timeout_secs}s")
            return 0
        except (aiohttp.ClientError, ValueError) as e:
            log.warning(f"Failed to fetch Signal K path metadata: {e}")
            return 0
        count = self.load_model(model)
        log.info(f"Loaded units for {count} Signal K paths")
        return count

    def __len__(self) -> int:
        return len(self._meta)
