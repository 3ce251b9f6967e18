"""Exception hierarchy for discovery, connection, streaming and frame decoding."""


class RbMiniError(Exception):
    """Base class for all rbmini errors."""


# --- discovery / connect (fatal at startup)
class DiscoveryError(RbMiniError):
    pass


class NoAdaptersFound(DiscoveryError):
    def __init__(self):
        super().__init__("No Bluetooth adapters found")


class NoDevicesFound(DiscoveryError):
    def __init__(self):
        super().__init__("No BLE devices found")


class ScanFailed(DiscoveryError):
    pass


class ConnectError(RbMiniError):
    pass


class DeviceNotFound(ConnectError):
    def __init__(self, prefix: str):
        super().__init__(f"Failed to find a device advertising as '{prefix}<serial>'")
        self.prefix = prefix


# --- streaming (fatal to the stream task only)
class StreamError(RbMiniError):
    pass


class ServiceDiscoveryFailed(StreamError):
    pass


class NotifyCharacteristicNotFound(StreamError):
    def __init__(self, uuid: str):
        super().__init__(f"Notify characteristic {uuid} not found")
        self.uuid = uuid


class SubscriptionFailed(StreamError):
    pass


class NotificationSourceClosed(StreamError):
    def __init__(self):
        super().__init__("Notification source closed (device disconnected)")


class ConsumerGone(StreamError):
    def __init__(self):
        super().__init__("Consumer closed the notification channel")


class ChannelClosed(RbMiniError):
    """Raised by NotificationChannel.send() once the receiving side is closed."""


# --- per frame (never fatal)
class FrameError(RbMiniError):
    pass


class FrameTooShort(FrameError):
    def __init__(self, length: int, minimum: int):
        super().__init__(f"Frame too short: {length} bytes, need at least {minimum}")
        self.length = length
        self.minimum = minimum


class ChecksumInvalid(FrameError):
    def __init__(self, expected: tuple[int, int], actual: tuple[int, int]):
        super().__init__(
            f"Checksum mismatch: computed {expected[0]:02X} {expected[1]:02X}, "
            f"frame has {actual[0]:02X} {actual[1]:02X}"
        )
        self.expected = expected
        self.actual = actual


class MalformedFrame(FrameError):
    pass
