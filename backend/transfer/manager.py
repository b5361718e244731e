"""
Transfer Manager: the process-wide context.

Owns the active adapter, the discovered/connected device maps, the send
queue and the broadcast hub. The HTTP layer talks only to this object.
"""

import base64
import logging
import mimetypes
import os
import time
import uuid

from config import (
    MAX_BROADCAST_BYTES,
    SCAN_TIMEOUT_MS,
    TRANSFER_ADAPTER,
    UPLOAD_DIR,
)
from adapters.base import TransportAdapter
from adapters.errors import DeviceNotFound, PayloadTooLarge, TransferError, Unsupported
from adapters.factory import get_adapter
from adapters.models import Device, DeviceStatus, SendMeta
from transfer.hub import BroadcastHub
from transfer.models import Job, JobKind
from transfer.queue import SendQueue

logger = logging.getLogger(__name__)

PROTOCOLS = ("wifi-direct", "bluetooth", "mock")
CONNECTION_MODES = ("single", "broadcast")


class TransferManager:
    """Wires the active adapter to the send queue and the broadcast hub."""

    def __init__(
        self,
        adapter_type: str = TRANSFER_ADAPTER,
        upload_dir: str = UPLOAD_DIR,
        adapter_factory=get_adapter,
    ) -> None:
        self._adapter_factory = adapter_factory
        self._adapter: TransportAdapter = adapter_factory(adapter_type, on_message=self._on_incoming)
        self._upload_dir = upload_dir
        self.discovered_devices: dict[str, Device] = {}
        self.connected_devices: dict[str, Device] = {}
        self.connection_mode = "single"
        self.queue = SendQueue(lambda: self._adapter)
        self.hub = BroadcastHub()

    @property
    def adapter(self) -> TransportAdapter:
        return self._adapter

    async def start(self) -> None:
        """Start the active adapter's background listeners."""
        await self._adapter.start()
        logger.info(f"Transfer manager started with adapter '{self._adapter.id}'")

    async def stop(self) -> None:
        await self.queue.stop()
        await self._adapter.stop()
        logger.info("Transfer manager stopped")

    # --- Queue ---

    def submit_text(self, text: str, target: str | None = None) -> str:
        job = Job(kind=JobKind.TEXT, payload=text, meta=SendMeta(target=target))
        return self.queue.enqueue(job).id

    def submit_file(
        self,
        source: str | bytes,
        filename: str,
        size: int | None = None,
        target: str | None = None,
    ) -> str:
        """Queue a file; raw bytes are spooled to the upload directory first."""
        if isinstance(source, (bytes, bytearray)):
            path = self._store_upload(bytes(source), filename)
            size = len(source) if size is None else size
        else:
            path = source
            size = os.path.getsize(path) if size is None else size

        job = Job(
            kind=JobKind.FILE,
            payload_path=path,
            filename=filename,
            size=size,
            meta=SendMeta(target=target, filename=filename),
        )
        return self.queue.enqueue(job).id

    def _store_upload(self, data: bytes, filename: str) -> str:
        os.makedirs(self._upload_dir, exist_ok=True)
        base, ext = os.path.splitext(os.path.basename(filename) or "upload")
        if not ext:
            ext = mimetypes.guess_extension(mimetypes.guess_type(filename)[0] or "") or ".bin"
        unique = f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
        path = os.path.join(self._upload_dir, f"{base or 'upload'}-{unique}{ext}")
        with open(path, "wb") as f:
            f.write(data)
        return path

    def get_job(self, job_id: str) -> Job | None:
        return self.queue.get_job(job_id)

    # --- Status ---

    def get_status(self) -> dict:
        return {
            "adapter_id": self._adapter.id,
            "connection_mode": self.connection_mode,
            "discovered_devices": [d.model_dump() for d in self.discovered_devices.values()],
            "connected_devices": [d.model_dump() for d in self.connected_devices.values()],
            "queue_length": len(self.queue),
            "client_count": len(self.hub),
        }

    # --- Devices ---

    async def scan(self, timeout_ms: int = SCAN_TIMEOUT_MS) -> list[Device]:
        adapter = self._adapter
        devices = await adapter.scan_devices(timeout_ms)
        if adapter is not self._adapter:
            logger.info(f"Discarding scan results from replaced adapter '{adapter.id}'")
            return []

        self.discovered_devices = {
            d.id: d for d in devices if d.id not in self.connected_devices
        }
        logger.info(f"Scan found {len(devices)} device(s) via {adapter.id}")
        return devices

    async def connect(self, device_id: str) -> bool:
        device = self.discovered_devices.get(device_id)
        if device is None:
            raise DeviceNotFound(f"Device {device_id} not found")

        adapter = self._adapter
        device.status = DeviceStatus.PAIRING
        try:
            connected = await adapter.connect_device(device)
        except TransferError:
            device.status = DeviceStatus.ERROR
            raise
        if adapter is not self._adapter:
            return False

        if connected:
            device.status = DeviceStatus.CONNECTED
            device.connected_at = device.connected_at or time.time()
            self.connected_devices[device_id] = device
            self.discovered_devices.pop(device_id, None)
        else:
            device.status = DeviceStatus.ERROR
        return connected

    async def disconnect(self, device_id: str) -> bool:
        """Disconnect a device; an unknown or already-disconnected id succeeds."""
        device = self.connected_devices.pop(device_id, None)
        if device is None:
            return True

        result = await self._adapter.disconnect_device(device)
        device.status = DeviceStatus.DISCOVERED
        device.connected_at = None
        self.discovered_devices[device_id] = device
        return result

    # --- Protocol / mode ---

    async def set_protocol(self, name: str) -> str:
        """Replace the active adapter; device state from the old one is dropped."""
        if name not in PROTOCOLS:
            raise Unsupported(f"Invalid protocol '{name}'")

        old = self._adapter
        new = self._adapter_factory(name, on_message=self._on_incoming)

        self._adapter = new
        self.connected_devices.clear()
        self.discovered_devices.clear()

        await old.stop()
        await new.start()
        logger.info(f"Switched protocol: {old.id} -> {new.id}")
        return new.id

    def set_connection_mode(self, mode: str) -> str:
        if mode not in CONNECTION_MODES:
            raise Unsupported(f"Invalid connection mode '{mode}'")
        self.connection_mode = mode
        return mode

    # --- Broadcast ---

    async def broadcast_text(self, text: str) -> int:
        return await self.hub.publish({
            "type": "text",
            "content": text,
            "timestamp": time.time(),
            "from": "host",
        })

    async def broadcast_file(self, data: bytes, filename: str, size: int | None = None) -> int:
        size = len(data) if size is None else size
        if size > MAX_BROADCAST_BYTES:
            raise PayloadTooLarge(
                f"File too large for broadcast. Max size: "
                f"{MAX_BROADCAST_BYTES // (1024 * 1024)}MB"
            )

        logger.info(f"Broadcasting file: {filename} ({size} bytes)")
        return await self.hub.publish({
            "type": "file",
            "filename": filename,
            "size": size,
            "content": base64.b64encode(data).decode("ascii"),
            "mimeType": mimetypes.guess_type(filename)[0] or "application/octet-stream",
            "timestamp": time.time(),
            "from": "host",
        })

    def subscribe(self):
        """Async iterator of SSE frames for one live subscriber."""
        return self.hub.subscribe()

    async def _on_incoming(self, message: dict, sender: str) -> None:
        """Republish payloads received by the adapter to live subscribers."""
        await self.hub.publish({**message, "from": sender})
