import pytest
from bleak import BleakError

from rbmini.ble_client import Adapter, CharInfo, Notifications
from rbmini.checksum import compute_checksum
from rbmini.constants import CHARACTERISTICS, NOTIFY_CHAR, RX, UART_SERVICE

# Data message captured from a RaceBox Mini (88 bytes)
REFERENCE_FRAME = bytes.fromhex(
    "B5 62 FF 01 50 00 A0 E7 0C 07 E6 07 01 0A 08 33"
    "08 37 19 00 00 00 2A AD 4D 0E 03 01 EA 0B C6 93"
    "E1 0D 3B 37 6F 19 61 8C 09 00 0F 01 09 00 9C 03"
    "00 00 2C 07 00 00 23 00 00 00 00 00 00 00 D0 00"
    "00 00 88 A9 DD 00 2C 01 00 59 FD FF 71 00 CE 03"
    "2F FF 56 00 FC FF 06 DB"
)


def with_checksum(frame: bytes) -> bytes:
    """Replace the last two bytes of `frame` with its correct checksum."""
    ck_a, ck_b = compute_checksum(frame)
    return frame[:-2] + bytes([ck_a, ck_b])


def numbered_frame(n: int) -> bytes:
    """Reference frame with itow replaced by `n`, checksum fixed up."""
    frame = REFERENCE_FRAME[:6] + n.to_bytes(4, "little") + REFERENCE_FRAME[10:]
    return with_checksum(frame)


UART_CHARS = [
    CharInfo(CHARACTERISTICS[UART_SERVICE], CHARACTERISTICS[RX], ["write", "write-without-response"]),
    CharInfo(CHARACTERISTICS[UART_SERVICE], NOTIFY_CHAR, ["notify"]),
]


class FakePeripheral:
    """Stands in for rbmini.ble_client.PeripheralHandle."""

    def __init__(self, name, address="AA:BB:CC:DD:EE:01", connected=False,
                 connect_error=None, chars=None, discover_error=None,
                 subscribe_error=None, frames=()):
        self.name = name
        self.address = address
        self.rssi = -60
        self.is_connected = connected
        self.connect_error = connect_error
        self.chars = UART_CHARS if chars is None else chars
        self.discover_error = discover_error
        self.subscribe_error = subscribe_error
        self.frames = list(frames)
        self.connect_calls = 0
        self.unsubscribed = False
        self.subscribed_uuid = None
        self.notifications = None

    async def connect(self, timeout=None):
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error
        self.is_connected = True

    async def disconnect(self):
        self.is_connected = False
        if self.notifications is not None:
            self.notifications.source_closed()

    async def characteristics(self):
        if self.discover_error is not None:
            raise self.discover_error
        return self.chars

    async def subscribe(self, uuid):
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscribed_uuid = uuid
        self.notifications = Notifications()
        for frame in self.frames:
            self.notifications.push(frame)
        return self.notifications

    async def unsubscribe(self):
        self.unsubscribed = True


class FakeRadio:
    """Stands in for rbmini.ble_client.BleakRadio."""

    def __init__(self, scans=None, scan_error=None):
        # adapter name -> peripherals seen on it
        self.scans = {"hci0": []} if scans is None else scans
        self.scan_error = scan_error
        self.dwells = []

    def adapters(self):
        return [Adapter(name) for name in self.scans]

    async def scan(self, adapter, dwell):
        self.dwells.append((adapter.name, dwell))
        if self.scan_error is not None:
            raise self.scan_error
        return list(self.scans[adapter.name])


@pytest.fixture
def frame():
    return REFERENCE_FRAME


@pytest.fixture
def bleak_error():
    return BleakError("radio failure")
