"""
Wi-Fi Direct adapter.

Discovers peers with a UDP broadcast probe, answers other hosts' probes
through an announce service, and delivers text/file payloads as single
JSON datagrams to each peer's transfer port. Delivery is best effort:
no acknowledgement, no retransmission and no fragmentation.
"""

import asyncio
import base64
import errno
import json
import logging
import socket
import time

from config import (
    BROADCAST_ADDRESS,
    DEVICE_ID,
    DEVICE_NAME,
    DISCOVERY_PORT,
    DISCOVERY_PORT_RETRIES,
    MAX_DATAGRAM_SIZE,
    PING_TIMEOUT,
    SCAN_TIMEOUT_MS,
    TRANSFER_PORT,
)
from adapters.base import fan_out, read_payload, select_targets
from adapters.errors import (
    DeviceUnreachable,
    PayloadTooLarge,
    PortExhausted,
    ScanInProgress,
)
from adapters.models import Device, DeviceStatus, SendMeta, SignalStrength

logger = logging.getLogger(__name__)

WIFI_RSSI = -30  # no RF measurement over IP
WIFI_SERVICES = ["file-transfer"]
MAX_PORT = 65535


# --- Wire format helpers ---

def encode_message(msg_type: str, **fields) -> bytes:
    """Serialize a datagram; `type` is the discriminator."""
    payload = {"type": msg_type, **fields, "timestamp": int(time.time() * 1000)}
    return json.dumps(payload).encode("utf-8")


def decode_message(data: bytes) -> dict | None:
    """Parse a datagram, returning None for anything that is not a typed JSON object."""
    try:
        payload = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        return None
    return payload


# --- Datagram protocols ---

class DiscoveryProtocol(asyncio.DatagramProtocol):
    """Collects `device` replies while a scan is running."""

    def __init__(self, adapter: "WiFiDirectAdapter"):
        self.adapter = adapter

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        message = decode_message(data)
        if message is None or message["type"] != "device":
            return
        try:
            self.adapter.record_device(message, addr)
        except (KeyError, TypeError, ValueError) as e:
            logger.debug(f"Ignoring invalid device announcement from {addr}: {e}")

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Discovery UDP error: {exc}")


class AnnounceProtocol(asyncio.DatagramProtocol):
    """Answers discovery probes with this host's identity."""

    def __init__(self, adapter: "WiFiDirectAdapter"):
        self.adapter = adapter
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        message = decode_message(data)
        if message is None or message["type"] != "discovery":
            return
        reply = encode_message(
            "device",
            deviceId=self.adapter.device_id,
            deviceName=self.adapter.device_name,
            port=self.adapter.transfer_port,
        )
        self.transport.sendto(reply, addr)
        logger.debug(f"Answered discovery probe from {addr[0]}:{addr[1]}")

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Announce UDP error: {exc}")


class ReceiverProtocol(asyncio.DatagramProtocol):
    """Transfer-port listener: answers pings and accepts inbound payloads."""

    def __init__(self, adapter: "WiFiDirectAdapter"):
        self.adapter = adapter
        self.transport: asyncio.DatagramTransport | None = None

    def connection_made(self, transport) -> None:
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        message = decode_message(data)
        if message is None:
            logger.debug(f"Ignoring invalid datagram from {addr}")
            return

        if message["type"] == "ping":
            self.transport.sendto(encode_message("pong"), addr)
        elif message["type"] in ("text", "file"):
            logger.info(f"Received {message['type']} from {addr[0]}")
            callback = self.adapter.on_message
            if callback is not None:
                asyncio.ensure_future(callback(message, addr[0]))

    def error_received(self, exc: Exception) -> None:
        logger.warning(f"Receiver UDP error: {exc}")


class _PingProtocol(asyncio.DatagramProtocol):
    """Resolves `reply` with True on any answer, False on an ICMP error."""

    def __init__(self, reply: asyncio.Future):
        self.reply = reply

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        if not self.reply.done():
            self.reply.set_result(True)

    def error_received(self, exc: Exception) -> None:
        if not self.reply.done():
            self.reply.set_result(False)


# --- Adapter ---

class WiFiDirectAdapter:
    """UDP broadcast discovery and unicast delivery on the local subnet."""

    def __init__(
        self,
        discovery_port: int = DISCOVERY_PORT,
        transfer_port: int = TRANSFER_PORT,
        broadcast_address: str = BROADCAST_ADDRESS,
        port_retries: int = DISCOVERY_PORT_RETRIES,
        ping_timeout: float = PING_TIMEOUT,
        device_id: str = DEVICE_ID,
        device_name: str = DEVICE_NAME,
        on_message=None,
    ) -> None:
        self.id = "wifi-direct"
        self.discovery_port = discovery_port
        self.transfer_port = transfer_port
        self.broadcast_address = broadcast_address
        self.port_retries = port_retries
        self.ping_timeout = ping_timeout
        self.device_id = device_id
        self.device_name = device_name
        self.on_message = on_message  # async fn(message: dict, sender: str)

        self.discovered_devices: dict[str, Device] = {}
        self.connected_devices: dict[str, Device] = {}
        self._scanning = False
        self._announce_transport: asyncio.DatagramTransport | None = None
        self._receiver_transport: asyncio.DatagramTransport | None = None

    # --- Lifecycle ---

    async def start(self) -> None:
        """Start the announce service and the transfer receiver."""
        loop = asyncio.get_running_loop()
        try:
            self._announce_transport, _ = await loop.create_datagram_endpoint(
                lambda: AnnounceProtocol(self),
                sock=self._bind_socket(self.discovery_port, reuse=True),
            )
            logger.info(f"Announce service listening on UDP port {self.discovery_port}")
        except OSError as e:
            logger.warning(f"Failed to start announce service: {e}")

        try:
            self._receiver_transport, _ = await loop.create_datagram_endpoint(
                lambda: ReceiverProtocol(self),
                sock=self._bind_socket(self.transfer_port, reuse=True),
            )
            logger.info(f"Transfer receiver listening on UDP port {self.transfer_port}")
        except OSError as e:
            logger.warning(f"Failed to start transfer receiver: {e}")

    async def stop(self) -> None:
        """Close the listeners and forget connected devices."""
        for transport in (self._announce_transport, self._receiver_transport):
            if transport:
                transport.close()
        self._announce_transport = None
        self._receiver_transport = None
        self.connected_devices.clear()
        logger.info("Wi-Fi Direct adapter stopped")

    @property
    def announcing(self) -> bool:
        return self._announce_transport is not None

    # --- Discovery ---

    def _bind_socket(self, port: int, reuse: bool = False) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            if reuse:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            sock.setblocking(False)
            sock.bind(("0.0.0.0", port))
        except OSError:
            sock.close()
            raise
        return sock

    def _bind_discovery_socket(self) -> socket.socket:
        """Bind the scan socket, moving up one port at a time while ports are taken."""
        port = self.discovery_port
        for _ in range(self.port_retries + 1):
            if port > MAX_PORT:
                break
            try:
                return self._bind_socket(port)
            except OSError as e:
                if e.errno != errno.EADDRINUSE:
                    raise
                logger.info(f"Port {port} in use, trying {port + 1}")
                port += 1
        raise PortExhausted(
            f"No free discovery port between {self.discovery_port} and {port - 1}"
        )

    def record_device(self, message: dict, addr: tuple[str, int]) -> None:
        """Upsert a device from a `device` announcement."""
        device_id = str(message["deviceId"])
        if not device_id or device_id == self.device_id:
            return
        device = Device(
            id=device_id,
            name=message.get("deviceName") or f"Device-{addr[0]}",
            address=addr[0],
            port=int(message.get("port") or self.transfer_port),
            rssi=WIFI_RSSI,
            signal_strength=SignalStrength.STRONG,
            services=list(WIFI_SERVICES),
            last_seen=time.time(),
        )
        if device_id not in self.discovered_devices:
            logger.info(f"Discovered device: {device.name} ({device.address})")
        self.discovered_devices[device_id] = device

    async def scan_devices(self, timeout_ms: int = SCAN_TIMEOUT_MS) -> list[Device]:
        """Broadcast a discovery probe and collect replies until the timeout."""
        if self._scanning:
            raise ScanInProgress("Scan already in progress")

        self._scanning = True
        self.discovered_devices.clear()
        transport = None
        try:
            sock = self._bind_discovery_socket()
            loop = asyncio.get_running_loop()
            try:
                transport, _ = await loop.create_datagram_endpoint(
                    lambda: DiscoveryProtocol(self),
                    sock=sock,
                )
            except OSError:
                sock.close()
                raise

            transport.sendto(
                encode_message("discovery"),
                (self.broadcast_address, self.discovery_port),
            )
            await asyncio.sleep(timeout_ms / 1000)
        finally:
            if transport:
                transport.close()
            self._scanning = False

        return list(self.discovered_devices.values())

    # --- Connections ---

    async def _ping(self, address: str, port: int) -> None:
        """Probe a transfer port; raises DeviceUnreachable without an answer."""
        loop = asyncio.get_running_loop()
        reply: asyncio.Future[bool] = loop.create_future()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _PingProtocol(reply),
                remote_addr=(address, port),
            )
        except OSError as e:
            raise DeviceUnreachable(f"Cannot reach {address}:{port}: {e}") from e

        try:
            transport.sendto(encode_message("ping"))
            reachable = await asyncio.wait_for(reply, timeout=self.ping_timeout)
        except asyncio.TimeoutError:
            reachable = False
        finally:
            transport.close()

        if not reachable:
            raise DeviceUnreachable(f"{address}:{port} did not answer ping")

    async def connect_device(self, device: Device) -> bool:
        """'Connecting' over Wi-Fi is a reachability probe."""
        try:
            await self._ping(device.address, device.port or self.transfer_port)
        except DeviceUnreachable as e:
            logger.warning(f"Failed to connect to {device.name}: {e}")
            return False

        device.status = DeviceStatus.CONNECTED
        device.connected_at = time.time()
        self.connected_devices[device.id] = device
        logger.info(f"Connected to {device.name} ({device.address}:{device.port})")
        return True

    async def disconnect_device(self, device: Device) -> bool:
        if self.connected_devices.pop(device.id, None) is not None:
            device.status = DeviceStatus.DISCOVERED
            device.connected_at = None
            logger.info(f"Disconnected from {device.name}")
        return True

    # --- Sending ---

    async def send_text(self, text: str, meta: SendMeta) -> None:
        targets = select_targets(self.connected_devices, meta)
        message = encode_message("text", content=text)
        await fan_out(targets, lambda device: self._send_to_device(device, message))

    async def send_file(self, source: str | bytes, meta: SendMeta) -> None:
        targets = select_targets(self.connected_devices, meta)
        data, filename = read_payload(source, meta)
        message = encode_message(
            "file",
            filename=filename,
            content=base64.b64encode(data).decode("ascii"),
            size=len(data),
        )
        await fan_out(targets, lambda device: self._send_to_device(device, message))

    async def _send_to_device(self, device: Device, message: bytes) -> None:
        """Unicast one datagram; payloads are never fragmented."""
        if len(message) > MAX_DATAGRAM_SIZE:
            raise PayloadTooLarge(
                f"Payload of {len(message)} bytes exceeds one UDP datagram "
                f"({MAX_DATAGRAM_SIZE} bytes)"
            )

        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            asyncio.DatagramProtocol,
            remote_addr=(device.address, device.port or self.transfer_port),
        )
        try:
            transport.sendto(message)
        finally:
            transport.close()
        logger.debug(f"Sent {len(message)} bytes to {device.address}:{device.port}")
