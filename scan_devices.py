"""
Scan for BLE devices without the dashboard.
Useful for checking the Bluetooth adapter and whether the RaceBox Mini is advertising.
"""

import asyncio

from rbmini.ble_client import BleakRadio
from rbmini.constants import LOCAL_NAME_PREFIX
from rbmini.session import match_serial

SCAN_TIME = 5.0


async def scan_devices():
    print("\n" + "="*50)
    print("  BLE Scanner - RaceBox Mini")
    print("="*50)

    radio = BleakRadio()
    adapters = radio.adapters()
    if not adapters:
        print("❌ No Bluetooth adapters found!")
        return

    for adapter in adapters:
        print(f"\n[INFO] Scanning on {adapter.name} for {SCAN_TIME:.0f} seconds...\n")
        devices = await radio.scan(adapter, SCAN_TIME)
        if not devices:
            print("❌ No devices found!")
            continue

        print(f"✅ Found {len(devices)} device(s):\n")
        for i, device in enumerate(devices, 1):
            serial = match_serial(device.name, LOCAL_NAME_PREFIX)
            print(f"{i}. {device.name}" + (f"   <- RaceBox Mini, serial {serial}" if serial else ""))
            print(f"   Address: {device.address}")
            print(f"   RSSI: {device.rssi} dBm")
            print()


if __name__ == "__main__":
    print("\nPress Ctrl+C to stop\n")
    try:
        asyncio.run(scan_devices())
    except KeyboardInterrupt:
        print("\n\n[INFO] Scan cancelled by user")
