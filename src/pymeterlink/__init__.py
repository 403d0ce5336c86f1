"""pymeterlink: poll electricity meters sharing one serial line (address + function code + CRC-32 frames)."""

__version__ = "0.1.0"

from . import codec
from .channel import LinkChannel
from .device import Counter, ElectricityCounter, Mercury230
from .errors import (
    ChannelBusyError,
    ChecksumMismatch,
    DecodeError,
    MalformedResponse,
    MeterLinkError,
    TransportConfigureError,
    TransportError,
    TransportOpenError,
    TransportReadError,
    TransportReadTimeout,
    TransportWriteError,
    UnknownFunctionCode,
)
from .registry import DeviceRegistry
from .types import BaudRate, DeviceState, PollOutcome, PollStatus, Reading, SerialFraming

__all__ = [
    "__version__",
    "codec",
    "LinkChannel",
    "Counter",
    "ElectricityCounter",
    "Mercury230",
    "DeviceRegistry",
    "ChannelBusyError",
    "ChecksumMismatch",
    "DecodeError",
    "MalformedResponse",
    "MeterLinkError",
    "TransportConfigureError",
    "TransportError",
    "TransportOpenError",
    "TransportReadError",
    "TransportReadTimeout",
    "TransportWriteError",
    "UnknownFunctionCode",
    "BaudRate",
    "DeviceState",
    "PollOutcome",
    "PollStatus",
    "Reading",
    "SerialFraming",
]
