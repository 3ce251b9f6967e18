import asyncio
from types import SimpleNamespace

import pytest
from bleak import BleakError

from rbmini import ble_client
from rbmini.ble_client import Adapter, BleakRadio, PeripheralHandle
from rbmini.channel import NotificationChannel
from rbmini.constants import CHARACTERISTICS, NOTIFY_CHAR, RX, UART_SERVICE
from rbmini.errors import NotificationSourceClosed
from rbmini.session import Connection

from conftest import numbered_frame


async def settle(rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)


def uart_services():
    chars = [
        SimpleNamespace(uuid=CHARACTERISTICS[RX], properties=["write", "write-without-response"]),
        SimpleNamespace(uuid=NOTIFY_CHAR.upper(), properties=["notify"]),
    ]
    return [SimpleNamespace(uuid=CHARACTERISTICS[UART_SERVICE], characteristics=chars)]


class FakeBleakClient:
    """Stands in for bleak.BleakClient."""

    instances = []

    def __init__(self, device, disconnected_callback=None):
        self.device = device
        self.disconnected_callback = disconnected_callback
        self.is_connected = False
        self.services = uart_services()
        self.callback = None
        self.notifying = None
        self.stop_notify_error = None
        self.drop_on_start_notify = False
        self.disconnect_calls = 0
        FakeBleakClient.instances.append(self)

    async def connect(self, timeout=None):
        self.is_connected = True

    async def start_notify(self, char, callback):
        self.notifying = char
        self.callback = callback
        if self.drop_on_start_notify:
            self.drop()

    async def stop_notify(self, char):
        if self.stop_notify_error is not None:
            raise self.stop_notify_error
        self.notifying = None

    async def disconnect(self):
        self.disconnect_calls += 1
        self.is_connected = False

    def notify(self, data):
        self.callback(self.notifying, bytearray(data))

    def drop(self):
        """Link loss reported by the stack."""
        self.is_connected = False
        self.disconnected_callback(self)


@pytest.fixture
def fake_client(monkeypatch):
    FakeBleakClient.instances = []
    monkeypatch.setattr(ble_client, "BleakClient", FakeBleakClient)
    return FakeBleakClient


def make_handle(name="RaceBox Mini 42", address="AA:BB:CC:DD:EE:42", rssi=-55):
    device = SimpleNamespace(address=address, name=name)
    return PeripheralHandle(device, name, rssi)


# ========== PeripheralHandle ==========
def test_connect_registers_disconnect_callback(fake_client):
    handle = make_handle()
    asyncio.run(handle.connect(timeout=1.0))
    client = fake_client.instances[0]
    assert handle.is_connected
    assert client.device is handle.device
    assert client.disconnected_callback == handle._on_disconnect


def test_characteristics_lists_every_service(fake_client):
    handle = make_handle()

    async def main():
        await handle.connect()
        return await handle.characteristics()

    chars = asyncio.run(main())
    assert [c.char_uuid for c in chars] == [CHARACTERISTICS[RX], NOTIFY_CHAR.upper()]
    assert chars[1].props == ["notify"]
    assert all(c.service_uuid == CHARACTERISTICS[UART_SERVICE] for c in chars)


def test_characteristics_requires_connection():
    with pytest.raises(BleakError):
        asyncio.run(make_handle().characteristics())


def test_subscribe_unknown_characteristic(fake_client):
    handle = make_handle()

    async def main():
        await handle.connect()
        await handle.subscribe("0000ffff-0000-1000-8000-00805f9b34fb")

    with pytest.raises(BleakError):
        asyncio.run(main())


def test_stream_through_bleak_callbacks(fake_client):
    frames = [numbered_frame(i) for i in range(3)]
    handle = make_handle()
    connection = Connection(handle, "42")

    async def main():
        await handle.connect()
        client = fake_client.instances[0]
        channel = NotificationChannel()
        task = asyncio.ensure_future(connection.stream(channel))
        await settle()
        for frame in frames:
            client.notify(frame)
        await settle()
        client.drop()
        received = [payload async for payload in channel]
        with pytest.raises(NotificationSourceClosed):
            await task
        return received

    received = asyncio.run(main())
    assert received == frames
    assert all(type(payload) is bytes for payload in received)


def test_disconnect_during_start_notify_closes_iterator(fake_client):
    handle = make_handle()

    async def main():
        await handle.connect()
        fake_client.instances[0].drop_on_start_notify = True
        notifications = await handle.subscribe(NOTIFY_CHAR)
        return notifications, [payload async for payload in notifications]

    notifications, received = asyncio.run(main())
    assert received == []
    assert notifications.closed


def test_disconnect_survives_stop_notify_failure(fake_client):
    handle = make_handle()

    async def main():
        await handle.connect()
        client = fake_client.instances[0]
        notifications = await handle.subscribe(NOTIFY_CHAR)
        client.stop_notify_error = BleakError("not notifying")
        await handle.disconnect()
        return client, [payload async for payload in notifications], notifications

    client, received, notifications = asyncio.run(main())
    assert client.disconnect_calls == 1
    assert handle.client is None
    assert handle.notify_char is None
    assert not handle.is_connected
    assert received == [] and notifications.closed


def test_unsubscribe_stops_notify(fake_client):
    handle = make_handle()

    async def main():
        await handle.connect()
        await handle.subscribe(NOTIFY_CHAR)
        await handle.unsubscribe()
        return fake_client.instances[0]

    client = asyncio.run(main())
    assert client.notifying is None
    assert handle.notify_char is None
    assert handle.is_connected


# ========== BleakRadio ==========
class FakeScanner:
    """Stands in for bleak.BleakScanner."""

    instances = []
    advertisements = {}

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.running = False
        self.discovered_devices_and_advertisement_data = dict(FakeScanner.advertisements)
        FakeScanner.instances.append(self)

    async def start(self):
        self.running = True

    async def stop(self):
        self.running = False


@pytest.fixture
def fake_scanner(monkeypatch):
    FakeScanner.instances = []
    FakeScanner.advertisements = {
        "01": (SimpleNamespace(address="01", name="cached name"),
               SimpleNamespace(local_name="RaceBox Mini 1", rssi=-48)),
        "02": (SimpleNamespace(address="02", name="RaceBox Mini 2"),
               SimpleNamespace(local_name=None, rssi=-71)),
        "03": (SimpleNamespace(address="03", name=None),
               SimpleNamespace(local_name=None, rssi=-90)),
    }
    monkeypatch.setattr(ble_client, "BleakScanner", FakeScanner)
    return FakeScanner


def test_scan_extracts_name_and_rssi(fake_scanner):
    found = asyncio.run(BleakRadio().scan(Adapter("hci1"), 0))
    scanner = fake_scanner.instances[0]
    assert scanner.kwargs == {"adapter": "hci1"}
    assert not scanner.running
    # advertised local name wins over the cached device name
    assert [(p.address, p.name, p.rssi) for p in found] == [
        ("01", "RaceBox Mini 1", -48),
        ("02", "RaceBox Mini 2", -71),
        ("03", "unknown name", -90),
    ]


def test_scan_default_adapter_passes_no_kwargs(fake_scanner):
    asyncio.run(BleakRadio().scan(Adapter(ble_client.DEFAULT_ADAPTER), 0))
    assert fake_scanner.instances[0].kwargs == {}


def test_linux_adapters_from_sysfs(monkeypatch, tmp_path):
    for name in ("hci1", "hci0", "rfkill0"):
        (tmp_path / name).mkdir()
    monkeypatch.setattr(ble_client.sys, "platform", "linux")
    monkeypatch.setattr(ble_client, "SYSFS_BLUETOOTH", str(tmp_path))
    assert BleakRadio().adapters() == [Adapter("hci0"), Adapter("hci1")]


def test_linux_without_bluetooth_stack(monkeypatch, tmp_path):
    monkeypatch.setattr(ble_client.sys, "platform", "linux")
    monkeypatch.setattr(ble_client, "SYSFS_BLUETOOTH", str(tmp_path / "missing"))
    assert BleakRadio().adapters() == []


def test_other_platforms_use_system_adapter(monkeypatch):
    monkeypatch.setattr(ble_client.sys, "platform", "darwin")
    assert BleakRadio().adapters() == [Adapter(ble_client.DEFAULT_ADAPTER)]
