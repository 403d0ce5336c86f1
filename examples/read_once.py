#!/usr/bin/env python3
"""Example: read tariff 1 consumption from one meter on a serial line."""

import sys

from pymeterlink import LinkChannel, Mercury230
from pymeterlink.errors import TransportError


def main() -> None:
    port = "/dev/ttyUSB0"  # change to your RS-485 adapter
    address = 1

    try:
        with LinkChannel(port_name=port, baud_rate=9600) as channel:
            meter = Mercury230(channel, address=address)
            outcome = meter.poll(tariff=1)
            print(f"{meter.type_name} {meter.identifier()}: {outcome.status.value}")

            reading = meter.consumption()
            if reading is not None:
                print(f"Tariff: {reading.tariff_index} - Consumption: {reading.value} {reading.unit}")
    except TransportError as e:
        print(f"Serial port error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
