"""
BLE adapter built on bleak.

Scans for advertising peripherals, keeps GATT connections open for the
devices the user connects, and writes payloads to a writable
characteristic in MTU-sized chunks. Sends to a named target open their
own connection and always close it again afterwards.
"""

import asyncio
import logging
import time
import uuid

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError
from bleak.uuids import normalize_uuid_str

from config import (
    BLE_CHARACTERISTIC_UUID,
    BLE_CHUNK_DELAY,
    BLE_MTU,
    BLE_READY_TIMEOUT,
    BLE_SCAN_TIMEOUT_MS,
    BLE_SERVICE_UUID,
    BLE_TARGET_NAME,
    SCAN_TIMEOUT_MS,
)
from adapters.base import fan_out, read_payload
from adapters.errors import (
    NoTarget,
    NoWritableCharacteristic,
    PeripheralNotFound,
    RadioNotReady,
    ScanInProgress,
    TargetNotFound,
)
from adapters.models import Device, DeviceStatus, SendMeta, signal_strength_for

logger = logging.getLogger(__name__)

POWERED_OFF = "poweredOff"
POWERED_ON = "poweredOn"

# Errors a radio call can surface besides BleakError (e.g. D-Bus socket missing)
RADIO_ERRORS = (BleakError, OSError, asyncio.TimeoutError)


def normalize_uuid(value: str | None) -> str | None:
    """Expand short or dashless UUIDs to bleak's lowercase 128-bit form."""
    if not value:
        return None
    value = value.strip().lower()
    if len(value) == 32:
        return str(uuid.UUID(value))
    return normalize_uuid_str(value)


def _advertised_name(ble_device, adv) -> str:
    return adv.local_name or ble_device.name or ""


class BLEAdapter:
    """Bluetooth Low Energy transport."""

    def __init__(
        self,
        service_uuid: str | None = BLE_SERVICE_UUID,
        characteristic_uuid: str | None = BLE_CHARACTERISTIC_UUID,
        target_name: str | None = BLE_TARGET_NAME,
        mtu: int = BLE_MTU,
        chunk_delay: float = BLE_CHUNK_DELAY,
        scan_timeout_ms: int = BLE_SCAN_TIMEOUT_MS,
        ready_timeout: float = BLE_READY_TIMEOUT,
        scanner_cls=BleakScanner,
        client_cls=BleakClient,
    ) -> None:
        self.id = "ble"
        self.service_uuid = normalize_uuid(service_uuid)
        self.characteristic_uuid = normalize_uuid(characteristic_uuid)
        self.target_name = target_name
        self.mtu = mtu
        self.chunk_delay = chunk_delay
        self.scan_timeout_ms = scan_timeout_ms
        self.ready_timeout = ready_timeout
        self._scanner_cls = scanner_cls
        self._client_cls = client_cls

        self.state = POWERED_OFF
        self.discovered_devices: dict[str, Device] = {}
        self.connected_devices: dict[str, Device] = {}
        self._peripherals: dict = {}  # live scan cache: address -> BLEDevice
        self._clients: dict = {}  # address -> connected BleakClient
        self._scanning = False

    # --- Radio state ---

    def on_state_change(self, state: str) -> None:
        if state != self.state:
            logger.info(f"Bluetooth radio state: {self.state} -> {state}")
        self.state = state

    async def ensure_ready(self) -> None:
        """Wait once for the radio to come up, probing it with a short scan."""
        if self.state == POWERED_ON:
            return

        scanner = self._scanner_cls()
        try:
            await asyncio.wait_for(scanner.start(), timeout=self.ready_timeout)
        except RADIO_ERRORS as e:
            self.on_state_change(POWERED_OFF)
            raise RadioNotReady(f"Bluetooth not powered on: {e}") from e
        await self._stop_scanner(scanner)
        self.on_state_change(POWERED_ON)

    async def _stop_scanner(self, scanner) -> None:
        try:
            await scanner.stop()
        except RADIO_ERRORS as e:
            logger.debug(f"Ignoring error while stopping BLE scan: {e}")

    # --- Lifecycle ---

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        """Drop every held connection."""
        for device in list(self.connected_devices.values()):
            await self.disconnect_device(device)
        self._peripherals.clear()
        logger.info("BLE adapter stopped")

    # --- Discovery ---

    def _device_from_advertisement(self, ble_device, adv) -> Device:
        rssi = adv.rssi if adv.rssi is not None else -100
        manufacturer = "".join(
            f"{company:04x}{data.hex()}"
            for company, data in (adv.manufacturer_data or {}).items()
        )
        device = Device(
            id=ble_device.address,
            name=_advertised_name(ble_device, adv) or ble_device.address,
            address=ble_device.address,
            rssi=rssi,
            signal_strength=signal_strength_for(rssi),
            manufacturer_data=manufacturer or None,
            last_seen=time.time(),
        )
        device.add_services(adv.service_uuids or [])
        return device

    async def scan_devices(self, timeout_ms: int = SCAN_TIMEOUT_MS) -> list[Device]:
        """Passive scan; returns whatever was seen by the timeout."""
        if self._scanning:
            raise ScanInProgress("Scan already in progress")

        self._scanning = True
        try:
            await self.ensure_ready()
            found: dict[str, Device] = {}

            def on_detection(ble_device, adv) -> None:
                self._peripherals[ble_device.address] = ble_device
                if ble_device.address not in found:
                    found[ble_device.address] = self._device_from_advertisement(ble_device, adv)

            scanner = self._scanner_cls(detection_callback=on_detection)
            try:
                await scanner.start()
            except RADIO_ERRORS as e:
                self.on_state_change(POWERED_OFF)
                logger.warning(f"BLE scan failed to start: {e}")
            else:
                try:
                    await asyncio.sleep(timeout_ms / 1000)
                finally:
                    await self._stop_scanner(scanner)

            self.discovered_devices = found
            return list(found.values())
        finally:
            self._scanning = False

    async def _find_peripheral(self, match):
        """Scan until an advertisement satisfies `match`; None on timeout."""
        try:
            return await self._scanner_cls.find_device_by_filter(
                match, timeout=self.scan_timeout_ms / 1000
            )
        except RADIO_ERRORS as e:
            self.on_state_change(POWERED_OFF)
            raise RadioNotReady(f"BLE scan failed: {e}") from e

    # --- Connections ---

    def _find_writable_characteristic(self, client):
        """Pick a characteristic to write to, preferring acknowledged writes."""
        candidates = []
        for service in client.services:
            if self.service_uuid and service.uuid.lower() != self.service_uuid:
                continue
            for characteristic in service.characteristics:
                if self.characteristic_uuid and characteristic.uuid.lower() != self.characteristic_uuid:
                    continue
                candidates.append(characteristic)

        for wanted in ("write", "write-without-response"):
            for characteristic in candidates:
                if wanted in characteristic.properties:
                    return characteristic
        raise NoWritableCharacteristic("No writable characteristic found")

    async def connect_device(self, device: Device) -> bool:
        await self.ensure_ready()
        peripheral = self._peripherals.get(device.id)
        if peripheral is None:
            raise PeripheralNotFound(f"Peripheral {device.id} not found - scan again")

        client = self._client_cls(peripheral)
        try:
            await client.connect()
        except RADIO_ERRORS as e:
            logger.warning(f"Failed to connect to {device.name}: {e}")
            return False

        try:
            characteristic = self._find_writable_characteristic(client)
        except (NoWritableCharacteristic, BleakError) as e:
            # Still connected; writes will fail explicitly later.
            logger.warning(f"Limited connection to {device.name}: {e}")
            device.characteristic = None
            device.limited_connection = True
        else:
            device.characteristic = characteristic.uuid
            device.write_with_response = "write" in characteristic.properties
            device.limited_connection = False

        device.status = DeviceStatus.CONNECTED
        device.connected_at = time.time()
        self._clients[device.id] = client
        self.connected_devices[device.id] = device
        logger.info(f"Connected to {device.name} ({device.address})")
        return True

    async def disconnect_device(self, device: Device) -> bool:
        self.connected_devices.pop(device.id, None)
        client = self._clients.pop(device.id, None)
        device.status = DeviceStatus.DISCOVERED
        device.connected_at = None
        if client is None:
            return True
        try:
            await client.disconnect()
        except RADIO_ERRORS as e:
            # the connection is already forgotten, so the disconnect still counts
            logger.warning(f"Failed to disconnect {device.name} cleanly: {e}")
        else:
            logger.info(f"Disconnected from {device.name}")
        return True

    # --- Sending ---

    async def send_text(self, text: str, meta: SendMeta) -> None:
        await self._send_bytes(str(text).encode("utf-8"), meta)

    async def send_file(self, source: str | bytes, meta: SendMeta) -> None:
        data, _ = read_payload(source, meta)
        await self._send_bytes(data, meta)

    async def _send_bytes(self, data: bytes, meta: SendMeta) -> None:
        if meta.target and meta.target in self.connected_devices:
            await self._write_connected(self.connected_devices[meta.target], data)
            return

        target_name = meta.target or self.target_name
        if target_name:
            await self.ensure_ready()
            peripheral = await self._find_peripheral(
                lambda d, adv: target_name in _advertised_name(d, adv)
            )
            if peripheral is None:
                raise TargetNotFound(f"Target device '{target_name}' not found")
            await self._write_session(peripheral, data)
        elif self.connected_devices:
            await fan_out(
                list(self.connected_devices.values()),
                lambda device: self._write_connected(device, data),
            )
        elif self.service_uuid and self.characteristic_uuid:
            await self.ensure_ready()
            peripheral = await self._find_peripheral(
                lambda d, adv: self.service_uuid in [u.lower() for u in adv.service_uuids or []]
            )
            if peripheral is None:
                raise TargetNotFound(f"No device advertising service {self.service_uuid} found")
            await self._write_session(peripheral, data)
        else:
            raise NoTarget(
                "Provide a target (device name) or service/characteristic UUIDs to use BLE"
            )

    async def _write_session(self, peripheral, data: bytes) -> None:
        """Connect, write, and disconnect whatever happens."""
        async with self._client_cls(peripheral) as client:
            characteristic = self._find_writable_characteristic(client)
            await self._write_chunks(
                client,
                characteristic.uuid,
                data,
                response="write" in characteristic.properties,
            )

    async def _write_connected(self, device: Device, data: bytes) -> None:
        client = self._clients.get(device.id)
        if device.limited_connection or not device.characteristic or client is None:
            raise NoWritableCharacteristic(
                f"{device.name} has no writable characteristic (limited connection)"
            )
        await self._write_chunks(client, device.characteristic, data, device.write_with_response)

    async def _write_chunks(self, client, characteristic_uuid: str, data: bytes, response: bool) -> None:
        for offset in range(0, len(data), self.mtu):
            await client.write_gatt_char(
                characteristic_uuid, data[offset:offset + self.mtu], response=response
            )
            await asyncio.sleep(self.chunk_delay)
