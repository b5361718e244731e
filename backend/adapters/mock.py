"""In-memory adapter for demos and tests; nothing leaves the process."""

import asyncio
import logging
import time

from adapters.base import read_payload, select_targets
from adapters.errors import Unsupported
from adapters.models import Device, DeviceStatus, SendMeta

logger = logging.getLogger(__name__)


class MockAdapter:
    def __init__(self, text_delay: float = 0.1, file_delay: float = 0.15) -> None:
        self.id = "mock"
        self.text_delay = text_delay
        self.file_delay = file_delay
        self.connected_devices: dict[str, Device] = {}
        self.sent: list[tuple[str, str, bytes | str]] = []  # (device id, kind, payload)

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        self.connected_devices.clear()

    async def scan_devices(self, timeout_ms: int = 0) -> list[Device]:
        raise Unsupported("Device scanning not supported by the mock adapter")

    async def connect_device(self, device: Device) -> bool:
        device.status = DeviceStatus.CONNECTED
        device.connected_at = time.time()
        self.connected_devices[device.id] = device
        return True

    async def disconnect_device(self, device: Device) -> bool:
        if self.connected_devices.pop(device.id, None) is not None:
            device.status = DeviceStatus.DISCOVERED
            device.connected_at = None
        return True

    async def send_text(self, text: str, meta: SendMeta) -> None:
        targets = select_targets(self.connected_devices, meta)
        await asyncio.sleep(self.text_delay)
        for device in targets:
            self.sent.append((device.id, "text", text))
        logger.info(f"[mock] sendText to {meta.target or 'all'}: {text[:80]}")

    async def send_file(self, source: str | bytes, meta: SendMeta) -> None:
        targets = select_targets(self.connected_devices, meta)
        data, filename = read_payload(source, meta)
        await asyncio.sleep(self.file_delay)
        for device in targets:
            self.sent.append((device.id, "file", data))
        logger.info(f"[mock] sendFile to {meta.target or 'all'}: {filename} ({len(data)} bytes)")
