"""Meter devices: one Counter per physical meter on a shared LinkChannel."""

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Iterator

from . import codec
from .channel import LinkChannel
from .errors import ChannelBusyError, ChecksumMismatch, MalformedResponse, TransportError, UnknownFunctionCode
from .types import DeviceState, PollOutcome, PollStatus, Reading

logger = logging.getLogger(__name__)

DEFAULT_TARIFF = 1


class Counter:
    """
    A utility meter addressed over a shared LinkChannel.

    Mutable poll state is guarded by a non-blocking lock: a poll that finds the lock
    held reports BUSY instead of waiting. So does a poll started from inside another
    exchange on the same thread and channel. consumption() never takes the lock; the
    cached Reading is a frozen record swapped in one assignment.

    Subclasses set ``type_name`` and may override interpret() to decode more
    function codes.
    """

    type_name = "Counter"

    def __init__(self, channel: LinkChannel, address: int = 0, strict: bool = False) -> None:
        if not 0 <= address <= 0xFF:
            raise ValueError(f"address must be 0..255, got {address}")
        self._channel = channel
        self._address = address
        self._strict = strict
        self._lock = threading.Lock()
        self._id_lock = threading.Lock()
        self._identifier: str | None = None
        self._last_reading: Reading | None = None
        self._state = DeviceState.IDLE
        self._name: str | None = None
        self._serial_number: str | None = None
        channel.attach(self)

    @property
    def address(self) -> int:
        return self._address

    @property
    def channel(self) -> LinkChannel:
        return self._channel

    def parent(self) -> LinkChannel:
        return self._channel

    @property
    def state(self) -> DeviceState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def identifier(self) -> str:
        """Random UUID string, generated on first call and cached for the life of the device."""
        if self._identifier is None:
            with self._id_lock:
                if self._identifier is None:
                    self._identifier = str(uuid.uuid4())
        return self._identifier

    @contextmanager
    def try_lock(self) -> Iterator[bool]:
        """Try to take exclusive access without blocking; yields whether it was acquired."""
        acquired = self._lock.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._lock.release()

    def build_request(self, tariff: int = DEFAULT_TARIFF) -> bytes:
        return codec.build_request(self._address, codec.FUNC_READ_CONSUMPTION, codec.tariff_param(tariff))

    def _outcome(self, status: PollStatus, reading: Reading | None = None, error: str | None = None) -> PollOutcome:
        return PollOutcome(
            address=self._address,
            identifier=self.identifier(),
            status=status,
            reading=reading,
            error=error,
        )

    def poll(self, tariff: int = DEFAULT_TARIFF) -> PollOutcome:
        """
        Run one request/response exchange for the consumption register of a tariff.

        Failures are returned as outcomes, never raised; the cached reading only
        changes on a successful decode.
        """
        with self.try_lock() as acquired:
            if not acquired:
                logger.debug("Device %d is busy, skipping", self._address)
                return self._outcome(PollStatus.BUSY)
            try:
                return self._poll_locked(tariff)
            finally:
                self._state = DeviceState.IDLE

    def _set_state(self, state: DeviceState) -> None:
        self._state = state

    def _poll_locked(self, tariff: int) -> PollOutcome:
        request = self.build_request(tariff)
        channel = self._channel
        try:
            response = channel.exchange(request, on_state=self._set_state)
        except ChannelBusyError:
            logger.debug("Device %d: channel %s has an exchange in flight, skipping", self._address, channel.port_name)
            return self._outcome(PollStatus.BUSY)
        except TransportError as e:
            logger.warning("Device %d: transport error on %s: %s", self._address, channel.port_name, e)
            return self._outcome(PollStatus.TRANSPORT_ERROR, error=str(e))

        self._state = DeviceState.DECODING
        try:
            reading = self.interpret(request, response)
        except ChecksumMismatch as e:
            logger.warning("Device %d: %s", self._address, e)
            return self._outcome(PollStatus.CHECKSUM_MISMATCH, error=str(e))
        except MalformedResponse as e:
            logger.warning("Device %d: malformed response %s: %s", self._address, response.hex(" "), e)
            return self._outcome(PollStatus.MALFORMED_RESPONSE, error=str(e))
        except UnknownFunctionCode as e:
            logger.warning("Device %d: %s", self._address, e)
            return self._outcome(PollStatus.UNKNOWN_FUNCTION, error=str(e))

        if reading is None:
            return self._outcome(PollStatus.NO_UPDATE)
        return self._outcome(PollStatus.OK, reading=reading)

    def interpret(self, request: bytes, response: bytes) -> Reading | None:
        """Decode a response and cache the reading; returns None when the request has no decoder."""
        reading = codec.decode_consumption(request, response, strict=self._strict)
        if reading is not None:
            self._last_reading = reading
            logger.info(
                "Device %d tariff %d: %s %s",
                self._address,
                reading.tariff_index,
                reading.value,
                reading.unit,
            )
        return reading

    def consumption(self) -> Reading | None:
        return self._last_reading

    def name(self) -> str | None:
        return self._name

    def serial_number(self) -> str | None:
        return self._serial_number

    def verification(self) -> None:
        """Run a verification on the meter (nothing to do in the base family)."""
        return None

    def last_verification(self) -> datetime | None:
        return None

    def verification_interval(self) -> timedelta | None:
        return None

    def set_verification_interval(self, interval: timedelta) -> None:
        return None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(address={self._address}, port={self._channel.port_name!r})"


class ElectricityCounter(Counter):
    """Electricity meter: per-phase quantities, unavailable unless a subclass decodes them."""

    type_name = "ElectricityCounter"

    def active_energy(self, phase: int) -> float | None:
        return None

    def reactive_energy(self, phase: int) -> float | None:
        return None

    def voltage(self, phase: int) -> float | None:
        return None

    def frequency(self, phase: int) -> int | None:
        return None


class Mercury230(ElectricityCounter):
    """Mercury 230 three-phase meter: consumption by tariff over function code 5."""

    type_name = "Mercury230"
