"""Pydantic models for discovered devices."""

import time
from enum import Enum

from pydantic import BaseModel, Field


class SignalStrength(str, Enum):
    WEAK = "weak"
    MEDIUM = "medium"
    STRONG = "strong"


class DeviceStatus(str, Enum):
    """Lifecycle of a device record."""
    DISCOVERED = "discovered"
    PAIRING = "pairing"
    CONNECTED = "connected"
    ERROR = "error"


class Device(BaseModel):
    """A peer found by an adapter scan."""
    id: str  # hostname for Wi-Fi peers, peripheral address for BLE
    name: str
    address: str
    port: int | None = None
    rssi: int = -100
    signal_strength: SignalStrength = SignalStrength.WEAK
    services: list[str] = Field(default_factory=list)
    status: DeviceStatus = DeviceStatus.DISCOVERED
    connected_at: float | None = None  # Unix timestamp
    last_seen: float = Field(default_factory=time.time)
    manufacturer_data: str | None = None  # hex
    # BLE only
    characteristic: str | None = None
    write_with_response: bool = True
    limited_connection: bool = False

    def add_services(self, uuids) -> None:
        """Merge service UUIDs, keeping first-seen order."""
        for uuid in uuids:
            if uuid not in self.services:
                self.services.append(uuid)


class SendMeta(BaseModel):
    """Per-send options passed down to the adapter."""
    target: str | None = None
    filename: str | None = None


def signal_strength_for(rssi: int) -> SignalStrength:
    """Bucket an RSSI reading into a coarse signal strength."""
    if rssi > -50:
        return SignalStrength.STRONG
    if rssi > -70:
        return SignalStrength.MEDIUM
    return SignalStrength.WEAK
