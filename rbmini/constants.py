"""RaceBox Mini device constants and GATT characteristic table."""

# Advertised local name is "RaceBox Mini <serial>"
LOCAL_NAME_PREFIX = "RaceBox Mini "

SCAN_DWELL = 10.0        # seconds per adapter
CONNECT_TIMEOUT = 10.0   # seconds
CHANNEL_CAPACITY = 32    # notifications buffered between producer and consumer

# GATT roles -> 128-bit UUIDs
DEVICE_INFO = "device_info"
MODEL = "model"
SERIAL_NUMBER = "serial_number"
FIRMWARE_REV = "firmware_rev"
HARDWARE_REV = "hardware_rev"
MANUFACTURER = "manufacturer"
UART_SERVICE = "uart_service"
RX = "rx"
TX = "tx"

CHARACTERISTICS = {
    DEVICE_INFO: "0000180a-0000-1000-8000-00805f9b34fb",
    MODEL: "00002a24-0000-1000-8000-00805f9b34fb",
    SERIAL_NUMBER: "00002a25-0000-1000-8000-00805f9b34fb",
    FIRMWARE_REV: "00002a26-0000-1000-8000-00805f9b34fb",
    HARDWARE_REV: "00002a27-0000-1000-8000-00805f9b34fb",
    MANUFACTURER: "00002a29-0000-1000-8000-00805f9b34fb",
    UART_SERVICE: "6e400001-b5a3-f393-e0a9-e50e24dcca9e",
    RX: "6e400002-b5a3-f393-e0a9-e50e24dcca9e",
    TX: "6e400003-b5a3-f393-e0a9-e50e24dcca9e",  # notify
}

NOTIFY_CHAR = CHARACTERISTICS[TX]

# Data message: class 0xFF, id 0x01, sent at 25 Hz
SYNC = b"\xb5\x62"
DATA_MESSAGE_CLASS = 0x01FF
HEADER_SIZE = 6
PAYLOAD_SIZE = 80
CHECKSUM_SIZE = 2
FRAME_SIZE = HEADER_SIZE + PAYLOAD_SIZE + CHECKSUM_SIZE   # 88
