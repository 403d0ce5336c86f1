"""Core data model: baud rates, serial framing, readings, poll outcomes and device states."""

from dataclasses import dataclass
from enum import Enum, IntEnum


class BaudRate(IntEnum):
    """Standard serial baud rates accepted by LinkChannel."""

    B110 = 110
    B300 = 300
    B600 = 600
    B1200 = 1200
    B2400 = 2400
    B4800 = 4800
    B9600 = 9600
    B19200 = 19200
    B38400 = 38400
    B57600 = 57600
    B115200 = 115200


@dataclass(frozen=True)
class SerialFraming:
    """Byte framing for the serial line. The base protocol family only uses 8N1 without flow control."""

    data_bits: int = 8
    parity: str = "N"
    stop_bits: int = 1
    flow_control: bool = False

    def __post_init__(self) -> None:
        if self.data_bits not in (5, 6, 7, 8):
            raise ValueError(f"data_bits must be 5..8, got {self.data_bits}")
        if self.parity not in ("N", "E", "O", "M", "S"):
            raise ValueError(f"parity must be one of N/E/O/M/S, got {self.parity!r}")
        if self.stop_bits not in (1, 2):
            raise ValueError(f"stop_bits must be 1 or 2, got {self.stop_bits}")


@dataclass(frozen=True)
class Reading:
    """Decoded consumption value for one tariff register. Replaced as a whole, never mutated."""

    tariff_index: int
    value: float
    unit: str = "kWh"


class PollStatus(str, Enum):
    """Per-device result of one poll cycle."""

    OK = "ok"
    NO_UPDATE = "no_update"
    BUSY = "busy"
    TRANSPORT_ERROR = "transport_error"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    MALFORMED_RESPONSE = "malformed_response"
    UNKNOWN_FUNCTION = "unknown_function"


@dataclass(frozen=True)
class PollOutcome:
    """Result of Device.poll(): status, the reading it produced (if any) and the error text."""

    address: int
    identifier: str
    status: PollStatus
    reading: Reading | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == PollStatus.OK


class DeviceState(str, Enum):
    """Where a device is in its poll cycle."""

    IDLE = "idle"
    CONFIGURING = "configuring"
    SENDING = "sending"
    AWAITING_RESPONSE = "awaiting_response"
    DECODING = "decoding"
