"""DeviceRegistry: sequences one polling pass over the meters sharing a LinkChannel."""

import logging
from typing import Iterator

from .channel import LinkChannel
from .device import DEFAULT_TARIFF, Counter
from .types import PollOutcome, PollStatus, Reading

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """
    Ordered set of devices polled one at a time.

    poll_all() never blocks on a device another caller holds: that device is
    reported BUSY and the pass moves on. Transport and decode failures come back
    as PollOutcome values and never stop the pass.
    """

    def __init__(self, strict_addresses: bool = False) -> None:
        self._devices: list[Counter] = []
        self._strict_addresses = strict_addresses

    @classmethod
    def from_channel(cls, channel: LinkChannel, strict_addresses: bool = False) -> "DeviceRegistry":
        """Registry over every device currently attached to channel."""
        registry = cls(strict_addresses=strict_addresses)
        for device in channel.devices:
            registry.attach(device)
        return registry

    def attach(self, device: Counter) -> None:
        """Add a device at the end of the polling order. Attaching the same object twice is a no-op."""
        if any(d is device for d in self._devices):
            return
        if any(d.address == device.address and d.channel is device.channel for d in self._devices):
            if self._strict_addresses:
                raise ValueError(f"Duplicate device address {device.address} on {device.channel.port_name}")
            logger.warning("Device address %d attached twice on %s", device.address, device.channel.port_name)
        self._devices.append(device)

    def detach(self, device: Counter) -> None:
        self._devices = [d for d in self._devices if d is not device]

    def get(self, address: int) -> Counter | None:
        """First attached device with the given address."""
        for device in self._devices:
            if device.address == address:
                return device
        return None

    @property
    def devices(self) -> list[Counter]:
        return list(self._devices)

    def poll_all(self, tariff: int = DEFAULT_TARIFF) -> list[PollOutcome]:
        """
        Poll every device once, in attachment order.

        Each device is tried on its own: one already being polled by another caller
        is reported BUSY and skipped, the rest are polled. A pass started from inside
        an exchange on the same thread reports BUSY for devices on that channel.
        """
        outcomes: list[PollOutcome] = []
        for device in list(self._devices):
            outcome = device.poll(tariff)
            if not outcome.ok and outcome.status != PollStatus.NO_UPDATE:
                logger.debug("Device %d: %s", device.address, outcome.status.value)
            outcomes.append(outcome)
        return outcomes

    def readings(self) -> dict[int, Reading | None]:
        """Snapshot of the cached reading of every device, keyed by address."""
        return {d.address: d.consumption() for d in self._devices}

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[Counter]:
        return iter(list(self._devices))
