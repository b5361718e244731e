"""Transport adapter interface and helpers shared by the variants."""

from __future__ import annotations

import logging
import os
from typing import Protocol

from adapters.errors import NoTarget
from adapters.models import Device, SendMeta

logger = logging.getLogger(__name__)


class TransportAdapter(Protocol):
    id: str

    async def start(self) -> None:
        """Start any background listeners the transport needs."""

    async def stop(self) -> None:
        """Close listeners and release held connections."""

    async def scan_devices(self, timeout_ms: int) -> list[Device]:
        """Discover nearby devices; an empty list on timeout is not an error."""

    async def connect_device(self, device: Device) -> bool:
        """Connect to a device; False when it cannot be reached."""

    async def disconnect_device(self, device: Device) -> bool:
        """Forget a device; disconnecting an unknown device succeeds."""

    async def send_text(self, text: str, meta: SendMeta) -> None:
        """Send text to meta.target or to every connected device."""

    async def send_file(self, source: str | bytes, meta: SendMeta) -> None:
        """Send a file (path or raw bytes) to meta.target or every connected device."""


def read_payload(source: str | bytes, meta: SendMeta) -> tuple[bytes, str]:
    """Resolve a file source into (data, filename)."""
    if isinstance(source, (bytes, bytearray)):
        return bytes(source), meta.filename or "upload.bin"
    with open(source, "rb") as f:
        data = f.read()
    return data, meta.filename or os.path.basename(source)


def select_targets(connected: dict[str, Device], meta: SendMeta) -> list[Device]:
    """Pick the devices a send fans out to, in connection order."""
    if meta.target:
        device = connected.get(meta.target)
        if device is None:
            raise NoTarget(f"Device {meta.target} is not connected")
        return [device]
    if not connected:
        raise NoTarget("No target specified and no devices connected")
    return list(connected.values())


async def fan_out(devices: list[Device], send) -> None:
    """Await ``send(device)`` for each device, then re-raise the first failure.

    Every device is attempted even if an earlier one failed.
    """
    first_error: Exception | None = None
    for device in devices:
        try:
            await send(device)
        except Exception as e:
            logger.warning(f"Send to {device.name} ({device.id}) failed: {e}")
            if first_error is None:
                first_error = e
    if first_error is not None:
        raise first_error
