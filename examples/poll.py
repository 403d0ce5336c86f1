#!/usr/bin/env python3
"""Example: poll several meters sharing one serial line on an interval; graceful shutdown on Ctrl+C."""

import sys
import time

from pymeterlink import DeviceRegistry, LinkChannel, Mercury230
from pymeterlink.errors import TransportError


def main() -> None:
    port = "/dev/ttyUSB0"  # change to your RS-485 adapter
    addresses = [1, 2, 3]
    interval_s = 60.0

    channel = LinkChannel(port_name=port)
    registry = DeviceRegistry()
    for address in addresses:
        registry.attach(Mercury230(channel, address=address))

    try:
        with channel:
            print(f"Polling meters {addresses} every {interval_s}s (Ctrl+C to stop)...")
            while True:
                for outcome in registry.poll_all():
                    print(outcome.address, outcome.status.value, outcome.reading)
                time.sleep(interval_s)
    except KeyboardInterrupt:
        print("\nStopped.")
    except TransportError as e:
        print(f"Serial port error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
