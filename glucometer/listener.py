#!/usr/bin/env python3
"""
Glucose Meter Sync over the Bluetooth Glucose Profile
======================================================
Connects to a BLE glucose meter with bleak and downloads the records stored
since the last sync, using RACP (Record Access Control Point).

THE SYNC:
=========
1. Connect to the glucose meter
2. Subscribe to notifications on:
   - Glucose Measurement (0x2a18)
   - Glucose Measurement Context (0x2a34)
   - Record Access Control Point/RACP (0x2a52)
3. Write "report records with sequence >= N" to RACP, N being one past the
   last record already stored
4. Meter notifies each record (measurement, then optional context)
5. Meter sends a RACP response when the transfer is complete

CONFIG (config.json):
=====================
{
  "mac_address": "80:F5:B5:7F:99:0F",
  "device_id": "accu-chek-guide",
  "scan_timeout": 10,
  "transfer_timeout": 30,
  "last_sequence_number": 48
}

Only mac_address is required. Leave out last_sequence_number to download
every stored record.
"""

import asyncio
import json
import logging
import os
import sys
from typing import Optional

from bleak import BleakClient, BleakScanner
from bleak.backends.characteristic import BleakGATTCharacteristic

from .racp import build_abort_command
from .session import BatchResult, CharacteristicKind, RawNotification, SyncSession

logger = logging.getLogger(__name__)

# Standard Bluetooth Glucose Service UUIDs
GLUCOSE_SERVICE_UUID = "00001808-0000-1000-8000-00805f9b34fb"
GLUCOSE_MEASUREMENT_UUID = "00002a18-0000-1000-8000-00805f9b34fb"
GLUCOSE_CONTEXT_UUID = "00002a34-0000-1000-8000-00805f9b34fb"
RACP_UUID = "00002a52-0000-1000-8000-00805f9b34fb"

CHARACTERISTIC_KINDS = {
    GLUCOSE_MEASUREMENT_UUID: CharacteristicKind.MEASUREMENT_VALUE,
    GLUCOSE_CONTEXT_UUID: CharacteristicKind.MEASUREMENT_CONTEXT,
    RACP_UUID: CharacteristicKind.RECORD_ACCESS_CONTROL_POINT,
}

DEFAULT_SCAN_TIMEOUT = 10
DEFAULT_TRANSFER_TIMEOUT = 30


def load_config(config_file="config.json"):
    """Load configuration from JSON file"""
    if not os.path.exists(config_file):
        raise FileNotFoundError(f"Config file '{config_file}' not found")

    with open(config_file, 'r') as f:
        return json.load(f)


def characteristic_kind(uuid: str) -> Optional[CharacteristicKind]:
    return CHARACTERISTIC_KINDS.get(uuid.lower())


class GlucoseMeterListener:
    def __init__(self, config: dict):
        self.device_address = config.get("mac_address")
        if not self.device_address:
            raise ValueError("MAC address not found in config file")

        self.device_id = config.get("device_id", self.device_address)
        self.scan_timeout = config.get("scan_timeout", DEFAULT_SCAN_TIMEOUT)
        self.transfer_timeout = config.get("transfer_timeout", DEFAULT_TRANSFER_TIMEOUT)
        self.session = SyncSession(self.device_id, config.get("last_sequence_number"))
        self.client = None
        self.result: Optional[BatchResult] = None
        self._done = asyncio.Event()

    def notification_handler(self, sender: BleakGATTCharacteristic, data: bytearray):
        """Route a notification to the sync session by characteristic"""
        kind = characteristic_kind(sender.uuid)
        logger.debug("Notification from %s: %s", sender.uuid, data.hex())
        if kind is None:
            logger.debug("Ignoring notification from %s", sender.uuid)
            return

        result = self.session.handle(RawNotification(kind=kind, data=bytes(data)))
        if result is not None:
            self.result = result
            self._done.set()

    def disconnected_handler(self, client: BleakClient):
        logger.warning("Device %s disconnected", self.device_address)
        self._done.set()

    async def write_racp_command(self, command: bytes) -> None:
        """Write command to RACP characteristic to request glucose records"""
        logger.info("Writing RACP command %s", command.hex())
        await self.client.write_gatt_char(RACP_UUID, command, response=True)

    async def connect_and_retrieve_data(self) -> BatchResult:
        """Connect to glucose meter and retrieve stored measurements"""
        device = await BleakScanner.find_device_by_address(self.device_address, timeout=self.scan_timeout)
        if device is None:
            logger.warning("Device %s not found in scan, attempting direct connection", self.device_address)
            device = self.device_address

        self.result = None
        self._done.clear()

        async with BleakClient(device, timeout=30.0, disconnected_callback=self.disconnected_handler) as client:
            self.client = client
            logger.info("Connected to %s", client.address)

            await client.start_notify(GLUCOSE_MEASUREMENT_UUID, self.notification_handler)
            try:
                await client.start_notify(GLUCOSE_CONTEXT_UUID, self.notification_handler)
            except Exception as e:
                # Context is optional, meters without it never set the flag
                logger.info("Glucose Context not available: %s", e)
            await client.start_notify(RACP_UUID, self.notification_handler)

            await self.write_racp_command(self.session.begin())

            try:
                await asyncio.wait_for(self._done.wait(), timeout=self.transfer_timeout)
            except asyncio.TimeoutError:
                logger.warning("No RACP response after %ss", self.transfer_timeout)
                if client.is_connected:
                    await self.write_racp_command(build_abort_command())

        if self.result is None:
            # Disconnect or timeout, keep the partial batch
            self.result = self.session.cancel()
        return self.result


def print_summary(result: BatchResult):
    print(f"\n{'='*60}")
    print("📊 SUMMARY")
    print(f"{'='*60}\n")

    if result.response is not None:
        print(f"RACP response: {result.response.response_text or 'record count'}")
    elif not result.complete:
        print("⚠️  Transfer did not complete, retry from the last stored record")

    for record in result.records:
        print(f"Seq #{record.sequence_number}: "
              f"{record.concentration} {record.concentration_units.value} "
              f"at {record.timestamp.isoformat()} ({record.meal_context.value})")

    print(f"\nRecords: {len(result.records)}, skipped: {result.skipped}, warnings: {len(result.warnings)}")
    if result.resume_sequence is not None:
        print(f"Last sequence number: {result.resume_sequence}")
    print(f"{'='*60}\n")


async def main(config_file="config.json"):
    """Main entry point"""
    logging.basicConfig(format='%(asctime)s %(levelname)s %(name)s %(message)s', level=logging.INFO)
    try:
        listener = GlucoseMeterListener(load_config(config_file))
        result = await listener.connect_and_retrieve_data()
    except FileNotFoundError as e:
        print(f"\n❌ {e}")
        print("\nPlease create config.json with:")
        print('{\n  "mac_address": "80:F5:B5:7F:99:0F"\n}')
        return 1
    except KeyboardInterrupt:
        print("\n\n⚠️  Interrupted by user")
        return 1

    print_summary(result)
    return 0 if result.succeeded else 1


def run():
    sys.exit(asyncio.run(main(*sys.argv[1:2])))


if __name__ == "__main__":
    run()
