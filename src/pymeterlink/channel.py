"""LinkChannel: pyserial-backed serial line shared by every meter attached to it."""

import logging
import threading
import weakref
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, Iterator

import serial

from .errors import (
    ChannelBusyError,
    TransportConfigureError,
    TransportOpenError,
    TransportReadError,
    TransportWriteError,
)
from .types import BaudRate, DeviceState, SerialFraming

if TYPE_CHECKING:
    from .device import Counter

logger = logging.getLogger(__name__)

MAX_FRAME_SIZE = 255
DEFAULT_PORT = "COM1"
DEFAULT_BAUD_RATE = BaudRate.B9600
DEFAULT_READ_TIMEOUT = 1.0
# Silence after the first reply byte that ends a read.
DEFAULT_INTER_BYTE_TIMEOUT = 0.05


class LinkChannel:
    """
    Serial port configuration plus the open pyserial handle.

    The handle stays None until reconfigure() succeeds. reconfigure() is meant to be
    called before every exchange: it reapplies the line settings and drops whatever
    is left in the port buffers. One exchange at a time holds the channel (exclusive()).
    A read returns once the reply goes quiet for inter_byte_timeout, or after
    read_timeout when nothing arrives.

    Devices register themselves here for enumeration only; the channel keeps weak
    references, the devices keep the channel alive.
    """

    def __init__(
        self,
        port_name: str = DEFAULT_PORT,
        baud_rate: BaudRate | int = DEFAULT_BAUD_RATE,
        framing: SerialFraming | None = None,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        inter_byte_timeout: float | None = DEFAULT_INTER_BYTE_TIMEOUT,
    ) -> None:
        if read_timeout < 0:
            raise ValueError(f"read_timeout must be >= 0, got {read_timeout}")
        self.port_name = port_name
        self.baud_rate = BaudRate(baud_rate)
        self.framing = framing if framing is not None else SerialFraming()
        self.read_timeout = read_timeout
        self.inter_byte_timeout = inter_byte_timeout
        self.lock = threading.Lock()
        self._owner: int | None = None
        self._handle: serial.Serial | None = None
        self._devices: list[weakref.ref["Counter"]] = []

    @property
    def handle(self) -> serial.Serial | None:
        return self._handle

    @property
    def is_open(self) -> bool:
        return self._handle is not None and self._handle.is_open

    def _open(self) -> serial.Serial:
        port = serial.Serial()
        port.port = self.port_name
        try:
            port.open()
        except (serial.SerialException, OSError, ValueError) as e:
            raise TransportOpenError(
                f"Failed to open serial port {self.port_name!r}: {e}",
                port=self.port_name,
                cause=e,
            ) from e
        logger.debug("Opened serial port %s", self.port_name)
        return port

    def reconfigure(self) -> None:
        """
        Open the port if needed and (re)apply baud rate, 8N1 framing and timeouts.

        The handle is only stored once every setting is applied; a port that fails to
        configure is closed and the handle left as None.
        """
        port = self._handle
        if port is None or not port.is_open:
            port = self._open()
        try:
            port.baudrate = int(self.baud_rate)
            port.bytesize = self.framing.data_bits
            port.parity = self.framing.parity
            port.stopbits = self.framing.stop_bits
            port.xonxoff = self.framing.flow_control
            port.rtscts = self.framing.flow_control
            port.dsrdtr = False
            port.timeout = self.read_timeout
            port.write_timeout = self.read_timeout
            port.inter_byte_timeout = self.inter_byte_timeout
            port.reset_input_buffer()
            port.reset_output_buffer()
        except (serial.SerialException, OSError, ValueError) as e:
            self._handle = None
            try:
                port.close()
            except Exception as close_error:
                logger.warning("Error closing serial port %s: %s", self.port_name, close_error)
            raise TransportConfigureError(
                f"Failed to configure serial port {self.port_name!r}: {e}",
                port=self.port_name,
                cause=e,
            ) from e
        self._handle = port

    def send(self, data: bytes) -> None:
        """Write every byte of data; raises TransportWriteError on a short write or I/O failure."""
        if self._handle is None:
            raise TransportWriteError(f"Serial port {self.port_name!r} is not configured", port=self.port_name)
        try:
            written = self._handle.write(bytes(data))
            self._handle.flush()
        except (serial.SerialException, OSError) as e:
            raise TransportWriteError(
                f"Write to {self.port_name!r} failed: {e}",
                port=self.port_name,
                cause=e,
            ) from e
        if written is not None and written != len(data):
            raise TransportWriteError(
                f"Short write to {self.port_name!r}: {written} of {len(data)} bytes",
                port=self.port_name,
            )
        logger.debug("TX %s: %s", self.port_name, bytes(data).hex(" "))

    def receive(self) -> bytes:
        """
        Read up to MAX_FRAME_SIZE bytes, bounded by the read timeout.

        A timeout is not an error: whatever arrived (possibly nothing) is returned.
        """
        if self._handle is None:
            return b""
        try:
            data = bytes(self._handle.read(MAX_FRAME_SIZE))
        except (serial.SerialException, OSError) as e:
            raise TransportReadError(
                f"Read from {self.port_name!r} failed: {e}",
                port=self.port_name,
                cause=e,
            ) from e
        logger.debug("RX %s: %s", self.port_name, data.hex(" ") or "<timeout>")
        return data

    @property
    def in_exchange(self) -> bool:
        """True when the calling thread already holds the channel for an exchange."""
        return self._owner == threading.get_ident()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        """
        Hold the channel for one exchange.

        Other threads wait for the exchange in flight to finish. A nested request from
        the thread already holding the channel raises ChannelBusyError instead of
        interleaving frames on the line.
        """
        if self.in_exchange:
            raise ChannelBusyError(f"Exchange already in flight on {self.port_name!r}", port=self.port_name)
        with self.lock:
            self._owner = threading.get_ident()
            try:
                yield
            finally:
                self._owner = None

    def exchange(self, request: bytes, on_state: Callable[[DeviceState], None] | None = None) -> bytes:
        """
        Reconfigure, send request and return the response, holding the channel throughout.

        on_state, when given, is called as the exchange moves through configuring,
        sending and awaiting_response.
        """
        with self.exclusive():
            if on_state is not None:
                on_state(DeviceState.CONFIGURING)
            self.reconfigure()
            if on_state is not None:
                on_state(DeviceState.SENDING)
            self.send(request)
            if on_state is not None:
                on_state(DeviceState.AWAITING_RESPONSE)
            return self.receive()

    def attach(self, device: "Counter") -> None:
        self._devices = [ref for ref in self._devices if ref() is not None]
        if device not in self.devices:
            self._devices.append(weakref.ref(device))

    def detach(self, device: "Counter") -> None:
        self._devices = [ref for ref in self._devices if ref() is not None and ref() is not device]

    @property
    def devices(self) -> list["Counter"]:
        """Attached devices still alive, in attachment order."""
        alive = [ref() for ref in self._devices]
        return [d for d in alive if d is not None]

    def close(self) -> None:
        """Close the serial port. Safe to call more than once."""
        if self._handle is not None:
            try:
                self._handle.close()
            except Exception as e:
                logger.warning("Error closing serial port %s: %s", self.port_name, e)
            self._handle = None

    def describe(self) -> dict[str, Any]:
        return {
            "port": self.port_name,
            "baud_rate": int(self.baud_rate),
            "data_bits": self.framing.data_bits,
            "parity": self.framing.parity,
            "stop_bits": self.framing.stop_bits,
            "flow_control": self.framing.flow_control,
            "read_timeout": self.read_timeout,
            "inter_byte_timeout": self.inter_byte_timeout,
            "open": self.is_open,
            "devices": len(self.devices),
        }

    def __enter__(self) -> "LinkChannel":
        self.reconfigure()
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"LinkChannel(port_name={self.port_name!r}, baud_rate={int(self.baud_rate)})"
