"""
Device Registry for NMEA 2000 sources known to the Signal K server.

Resolves a source id to manufacturer/model strings so every sensor from the
same source is grouped under one Home Assistant device. Optional: an empty
registry falls back to generic names.
"""

import asyncio
import logging
from typing import Optional, Dict, Any
from dataclasses import dataclass

import aiohttp

from n2kbridge.config import SignalKConfig

log = logging.getLogger(__name__)

DEFAULT_MANUFACTURER = "NMEA 2000"
DEFAULT_MODEL = "NMEA 2000 Device"


@dataclass
class DeviceInfo:
    """One N2K device as reported by /signalk/v1/api/sources."""
    source_id: str
    manufacturer: str
    model: str
    device_class: str = ""
    serial_number: str = ""
    software_version: str = ""
    product_code: str = ""


def _field(n2k: Dict[str, Any], key: str, label: str, default: str = "") -> str:
    value = n2k.get(key) or n2k.get(label)
    return str(value) if value not in (None, "") else default


class DeviceRegistry:
    """Fetches and caches N2K device information."""

    def __init__(self, cfg: SignalKConfig):
        self.cfg = cfg
        self.devices: Dict[str, DeviceInfo] = {}

    @property
    def sources_url(self) -> str:
        return f"{self.cfg.http_base}/api/sources"

    async def fetch_devices(self) -> int:
        """Load devices from the Signal K server; returns how many were found.

        Never raises: on timeout or any HTTP/JSON failure the registry keeps
        whatever it had and the bridge continues with default names.
        """
        timeout = aiohttp.ClientTimeout(total=self.cfg.registry_timeout_secs)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.sources_url) as response:
                    if response.status != 200:
                        log.warning(f"Signal K sources API returned HTTP {response.status}")
                        return 0
                    sources = await response.json(content_type=None)
        except asyncio.TimeoutError:
            log.warning(f"Signal K sources request timed out after {self.cfg.registry_timeout_secs}s")
            return 0
        except (aiohttp.ClientError, ValueError) as e:
            log.warning(f"Failed to fetch Signal K devices: {e}")
            return 0
        count = self.parse_devices(sources)
        log.info(f"Loaded {count} N2K devices from Signal K")
        return count

    def parse_devices(self, sources: Any) -> int:
        if not isinstance(sources, dict):
            log.warning("Unexpected Signal K sources document; no devices loaded")
            return 0
        count = 0
        for provider, entries in sources.items():
            if not isinstance(entries, dict):
                continue
            for source_id, data in entries.items():
                if not isinstance(data, dict) or not isinstance(data.get("n2k"), dict):
                    continue
                n2k = data["n2k"]
                info = DeviceInfo(
                    source_id=str(source_id),
                    manufacturer=_field(n2k, "manufacturerCode", "Manufacturer Code", "Unknown"),
                    model=_field(n2k, "modelId", "Model ID", "Unknown Device"),
                    device_class=_field(n2k, "deviceClass", "Device Class"),
                    serial_number=_field(n2k, "modelSerialCode", "Model Serial Code"),
                    software_version=_field(n2k, "softwareVersionCode", "Software Version Code"),
                    product_code=_field(n2k, "productCode", "Product Code"),
                )
                # Deltas report either "35" or "can0.35"
                self.devices[str(source_id)] = info
                self.devices[f"{provider}.{source_id}"] = info
                count += 1
                log.debug(f"  Source {source_id}: {info.manufacturer} {info.model}")
        return count

    def get_device(self, source_id: Any) -> Optional[DeviceInfo]:
        return self.devices.get(str(source_id))

    def get_manufacturer(self, source_id: Any) -> str:
        device = self.get_device(source_id)
        return device.manufacturer if device else DEFAULT_MANUFACTURER

    def get_model(self, source_id: Any) -> str:
        device = self.get_device(source_id)
        return device.model if device else DEFAULT_MODEL

    def get_device_name(self, source_id: Any) -> str:
        device = self.get_device(source_id)
        if device:
            return f"{device.manufacturer} {device.model} (Src {source_id})"
        return f"N2K Source {source_id}"

    def __len__(self) -> int:
        return len({id(d) for d in self.devices.values()})
