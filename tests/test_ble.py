from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest
from bleak.exc import BleakError

from adapters.ble import POWERED_ON, BLEAdapter, normalize_uuid
from adapters.errors import (
    NoTarget,
    NoWritableCharacteristic,
    PeripheralNotFound,
    RadioNotReady,
    ScanInProgress,
    TargetNotFound,
)
from adapters.models import Device, DeviceStatus, SendMeta, SignalStrength

SERVICE = "0000ffe0-0000-1000-8000-00805f9b34fb"
WRITE_CHAR = "0000ffe1-0000-1000-8000-00805f9b34fb"
OTHER_CHAR = "0000ffe2-0000-1000-8000-00805f9b34fb"


@dataclass
class FakeBLEDevice:
    address: str
    name: str | None = None


@dataclass
class FakeAdvertisement:
    local_name: str | None
    rssi: int | None
    service_uuids: list[str] = field(default_factory=list)
    manufacturer_data: dict[int, bytes] = field(default_factory=dict)


@dataclass
class FakeCharacteristic:
    uuid: str
    properties: list[str]


@dataclass
class FakeService:
    uuid: str
    characteristics: list[FakeCharacteristic]


def make_radio(
    advertisements, services=None, *, powered=True, fail_connect=(), fail_write=False, fail_disconnect=False
):
    """Build fake scanner/client classes sharing one simulated radio."""
    services = services if services is not None else [
        FakeService(SERVICE, [FakeCharacteristic(WRITE_CHAR, ["write", "write-without-response"])])
    ]
    clients: list = []

    class FakeScanner:
        def __init__(self, detection_callback=None):
            self.callback = detection_callback

        async def start(self):
            if not powered:
                raise BleakError("Bluetooth adapter is powered off")
            for device, adv in advertisements:
                if self.callback:
                    self.callback(device, adv)

        async def stop(self):
            pass

        @classmethod
        async def find_device_by_filter(cls, filterfunc, timeout=10.0):
            if not powered:
                raise BleakError("Bluetooth adapter is powered off")
            for device, adv in advertisements:
                if filterfunc(device, adv):
                    return device
            return None

    class FakeClient:
        def __init__(self, device, **kwargs):
            self.device = device
            self.services = services
            self.is_connected = False
            self.writes: list[tuple[str, bytes, bool]] = []
            clients.append(self)

        async def connect(self):
            if self.device.address in fail_connect:
                raise BleakError("connection failed")
            self.is_connected = True

        async def disconnect(self):
            if fail_disconnect:
                raise BleakError("disconnect failed")
            self.is_connected = False

        async def write_gatt_char(self, uuid, data, response=False):
            if fail_write:
                raise BleakError("write failed")
            self.writes.append((uuid, bytes(data), response))

        async def __aenter__(self):
            await self.connect()
            return self

        async def __aexit__(self, *exc_info):
            await self.disconnect()

    return FakeScanner, FakeClient, clients


def make_adapter(
    advertisements,
    services=None,
    *,
    powered=True,
    fail_connect=(),
    fail_write=False,
    fail_disconnect=False,
    **kwargs,
):
    scanner_cls, client_cls, clients = make_radio(
        advertisements,
        services,
        powered=powered,
        fail_connect=fail_connect,
        fail_write=fail_write,
        fail_disconnect=fail_disconnect,
    )
    kwargs.setdefault("service_uuid", None)
    kwargs.setdefault("characteristic_uuid", None)
    kwargs.setdefault("target_name", None)
    kwargs.setdefault("chunk_delay", 0)
    adapter = BLEAdapter(scanner_cls=scanner_cls, client_cls=client_cls, **kwargs)
    return adapter, clients


def test_normalize_uuid_forms() -> None:
    assert normalize_uuid("ffe0") == SERVICE
    assert normalize_uuid("0000FFE0-0000-1000-8000-00805F9B34FB") == SERVICE
    assert normalize_uuid("0000ffe000001000800000805f9b34fb") == SERVICE
    assert normalize_uuid(None) is None


def test_scan_buckets_rssi_and_dedupes() -> None:
    ads = [
        (FakeBLEDevice("AA"), FakeAdvertisement("Near", -40, [SERVICE], {0x004C: b"\x01\x02"})),
        (FakeBLEDevice("BB"), FakeAdvertisement("Mid", -60)),
        (FakeBLEDevice("CC", name="Far"), FakeAdvertisement(None, -80)),
        (FakeBLEDevice("AA"), FakeAdvertisement("Near", -95)),
        (FakeBLEDevice("DD"), FakeAdvertisement(None, None)),
    ]
    adapter, _ = make_adapter(ads)

    devices = asyncio.run(adapter.scan_devices(10))

    by_id = {d.id: d for d in devices}
    assert list(by_id) == ["AA", "BB", "CC", "DD"]
    assert by_id["AA"].signal_strength == SignalStrength.STRONG
    assert by_id["AA"].rssi == -40
    assert by_id["AA"].services == [SERVICE]
    assert by_id["AA"].manufacturer_data == "004c0102"
    assert by_id["BB"].signal_strength == SignalStrength.MEDIUM
    assert by_id["CC"].name == "Far"
    assert by_id["CC"].signal_strength == SignalStrength.WEAK
    assert by_id["DD"].name == "DD"
    assert by_id["DD"].rssi == -100
    assert adapter.state == POWERED_ON


def test_operations_fail_when_radio_is_off() -> None:
    adapter, _ = make_adapter([], powered=False)
    with pytest.raises(RadioNotReady):
        asyncio.run(adapter.scan_devices(10))
    with pytest.raises(RadioNotReady):
        asyncio.run(adapter.connect_device(Device(id="AA", name="x", address="AA")))
    assert not adapter._scanning


def test_concurrent_scan_is_rejected() -> None:
    adapter, _ = make_adapter([(FakeBLEDevice("AA"), FakeAdvertisement("A", -40))])

    async def run() -> None:
        first = asyncio.create_task(adapter.scan_devices(100))
        await asyncio.sleep(0.01)
        with pytest.raises(ScanInProgress):
            await adapter.scan_devices(100)
        await first

    asyncio.run(run())


def test_connect_requires_fresh_scan_cache() -> None:
    adapter, _ = make_adapter([])
    with pytest.raises(PeripheralNotFound):
        asyncio.run(adapter.connect_device(Device(id="AA", name="A", address="AA")))


def test_connect_caches_writable_characteristic() -> None:
    services = [
        FakeService(SERVICE, [
            FakeCharacteristic(OTHER_CHAR, ["read"]),
            FakeCharacteristic(WRITE_CHAR, ["write-without-response"]),
        ])
    ]
    adapter, clients = make_adapter(
        [(FakeBLEDevice("AA"), FakeAdvertisement("Speaker", -40))],
        services,
        service_uuid="ffe0",
    )

    async def run() -> tuple[bool, Device]:
        (device,) = await adapter.scan_devices(10)
        return await adapter.connect_device(device), device

    connected, device = asyncio.run(run())
    assert connected is True
    assert device.status == DeviceStatus.CONNECTED
    assert device.characteristic == WRITE_CHAR
    assert device.write_with_response is False
    assert device.limited_connection is False
    assert clients[-1].is_connected


def test_connect_failure_returns_false() -> None:
    adapter, _ = make_adapter(
        [(FakeBLEDevice("AA"), FakeAdvertisement("A", -40))], fail_connect=("AA",)
    )

    async def run() -> bool:
        (device,) = await adapter.scan_devices(10)
        return await adapter.connect_device(device)

    assert asyncio.run(run()) is False
    assert adapter.connected_devices == {}


def test_limited_connection_fails_writes_explicitly() -> None:
    services = [FakeService(SERVICE, [FakeCharacteristic(OTHER_CHAR, ["read", "notify"])])]
    adapter, _ = make_adapter([(FakeBLEDevice("AA"), FakeAdvertisement("A", -40))], services)

    async def run() -> Device:
        (device,) = await adapter.scan_devices(10)
        assert await adapter.connect_device(device) is True
        with pytest.raises(NoWritableCharacteristic):
            await adapter.send_text("hi", SendMeta())
        return device

    device = asyncio.run(run())
    assert device.limited_connection is True
    assert "AA" in adapter.connected_devices


def test_send_to_connected_device_uses_held_connection() -> None:
    adapter, clients = make_adapter(
        [(FakeBLEDevice("AA"), FakeAdvertisement("A", -40))], mtu=4
    )

    async def run() -> None:
        (device,) = await adapter.scan_devices(10)
        await adapter.connect_device(device)
        await adapter.send_text("abcdefghij", SendMeta(target="AA"))

    asyncio.run(run())
    client = clients[-1]
    assert [data for _, data, _ in client.writes] == [b"abcd", b"efgh", b"ij"]
    assert all(uuid == WRITE_CHAR and response for uuid, _, response in client.writes)
    assert client.is_connected


def test_send_to_named_target_chunks_and_disconnects() -> None:
    ads = [
        (FakeBLEDevice("AA"), FakeAdvertisement("Keyboard", -40)),
        (FakeBLEDevice("BB"), FakeAdvertisement("Speaker-42", -60)),
    ]
    adapter, clients = make_adapter(ads, mtu=4)

    asyncio.run(adapter.send_text("hello world", SendMeta(target="Speaker")))

    (client,) = clients
    assert client.device.address == "BB"
    assert [data for _, data, _ in client.writes] == [b"hell", b"o wo", b"rld"]
    assert all(response for _, _, response in client.writes)
    assert not client.is_connected


def test_session_disconnects_even_when_write_fails() -> None:
    adapter, clients = make_adapter(
        [(FakeBLEDevice("BB"), FakeAdvertisement("Speaker", -60))], fail_write=True
    )
    with pytest.raises(BleakError):
        asyncio.run(adapter.send_text("x", SendMeta(target="Speaker")))
    assert not clients[-1].is_connected


def test_named_target_missing() -> None:
    adapter, _ = make_adapter([(FakeBLEDevice("AA"), FakeAdvertisement("Keyboard", -40))])
    with pytest.raises(TargetNotFound):
        asyncio.run(adapter.send_text("x", SendMeta(target="Speaker")))


def test_configured_service_is_used_without_target(tmp_path) -> None:
    ads = [
        (FakeBLEDevice("AA"), FakeAdvertisement("Other", -40)),
        (FakeBLEDevice("BB"), FakeAdvertisement("Printer", -60, [SERVICE])),
    ]
    adapter, clients = make_adapter(ads, service_uuid="ffe0", characteristic_uuid="ffe1")
    path = tmp_path / "note.txt"
    path.write_bytes(b"file body")

    asyncio.run(adapter.send_file(str(path), SendMeta()))

    (client,) = clients
    assert client.device.address == "BB"
    assert client.writes == [(WRITE_CHAR, b"file body", True)]


def test_send_without_any_target_raises_no_target() -> None:
    adapter, _ = make_adapter([])
    with pytest.raises(NoTarget):
        asyncio.run(adapter.send_text("x", SendMeta()))


def test_disconnect_is_idempotent() -> None:
    adapter, clients = make_adapter([(FakeBLEDevice("AA"), FakeAdvertisement("A", -40))])

    async def run() -> tuple[bool, bool]:
        (device,) = await adapter.scan_devices(10)
        await adapter.connect_device(device)
        return await adapter.disconnect_device(device), await adapter.disconnect_device(device)

    assert asyncio.run(run()) == (True, True)
    assert not clients[-1].is_connected
    assert adapter.connected_devices == {}


def test_disconnect_succeeds_when_radio_errors() -> None:
    adapter, _ = make_adapter([(FakeBLEDevice("AA"), FakeAdvertisement("A", -40))], fail_disconnect=True)

    async def run() -> bool:
        (device,) = await adapter.scan_devices(10)
        await adapter.connect_device(device)
        return await adapter.disconnect_device(device)

    assert asyncio.run(run()) is True
    assert adapter.connected_devices == {}
