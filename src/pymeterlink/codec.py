"""Frame codec: build CRC-32 request frames, verify them, and decode meter responses."""

import logging
import struct
import zlib
from typing import Callable

from .errors import ChecksumMismatch, MalformedResponse, UnknownFunctionCode
from .types import Reading

logger = logging.getLogger(__name__)

# [address][function_code][param_hi][param_lo]
HEADER_SIZE = 4
CHECKSUM_SIZE = 4
# Checksum byte order; only this package builds and verifies it.
CHECKSUM_BYTEORDER = "little"

FUNC_READ_CONSUMPTION = 5

# Response offsets, in order, that form the high half of the big-endian double.
# Mixed-endian register pair of this meter family; keep as is.
CONSUMPTION_VALUE_ORDER = (4, 5, 2, 3)
CONSUMPTION_MIN_RESPONSE = max(CONSUMPTION_VALUE_ORDER) + 1
CONSUMPTION_SCALE = 1000.0

_Decoder = Callable[[bytes, bytes], Reading]


def _check_byte(name: str, value: int) -> None:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} must be 0..255, got {value}")


def checksum(payload: bytes) -> bytes:
    """CRC-32 (IEEE 802.3 polynomial) of payload as 4 bytes."""
    return (zlib.crc32(payload) & 0xFFFFFFFF).to_bytes(CHECKSUM_SIZE, CHECKSUM_BYTEORDER)


def append_checksum(payload: bytes) -> bytes:
    return bytes(payload) + checksum(payload)


def tariff_param(tariff: int) -> int:
    """Request param selecting a tariff register: tariff in the low byte, zero high byte."""
    _check_byte("tariff", tariff)
    return tariff


def build_request(address: int, function_code: int, param: int) -> bytes:
    """
    Build a request frame: [address, function_code, param_hi, param_lo, crc x4].

    Raises ValueError when a field does not fit its byte width.
    """
    _check_byte("address", address)
    _check_byte("function_code", function_code)
    if not 0 <= param <= 0xFFFF:
        raise ValueError(f"param must be 0..65535, got {param}")
    header = bytes((address, function_code, param >> 8, param & 0xFF))
    return append_checksum(header)


def verify(frame: bytes) -> bool:
    """True when the trailing 4 bytes are the CRC-32 of everything before them."""
    if len(frame) <= CHECKSUM_SIZE:
        return False
    payload, trailer = bytes(frame[:-CHECKSUM_SIZE]), bytes(frame[-CHECKSUM_SIZE:])
    return checksum(payload) == trailer


def ensure_valid(frame: bytes) -> None:
    """Raise ChecksumMismatch unless verify(frame) holds."""
    if not verify(frame):
        expected = checksum(frame[:-CHECKSUM_SIZE]) if len(frame) > CHECKSUM_SIZE else None
        actual = bytes(frame[-CHECKSUM_SIZE:]) if len(frame) > CHECKSUM_SIZE else None
        raise ChecksumMismatch(frame, expected=expected, actual=actual)


def _decode_read_consumption(request: bytes, response: bytes) -> Reading:
    if len(response) < CONSUMPTION_MIN_RESPONSE:
        raise MalformedResponse(response, CONSUMPTION_MIN_RESPONSE)
    high_half = bytes(response[i] for i in CONSUMPTION_VALUE_ORDER)
    (raw,) = struct.unpack(">d", high_half + bytes(8 - len(high_half)))
    return Reading(tariff_index=request[3], value=raw / CONSUMPTION_SCALE)


# (function_code, param_hi) -> decoder
_DECODERS: dict[tuple[int, int], _Decoder] = {
    (FUNC_READ_CONSUMPTION, 0): _decode_read_consumption,
}


def decode_consumption(request: bytes, response: bytes, strict: bool = False) -> Reading | None:
    """
    Decode the response to a request frame built by build_request().

    - The request checksum is verified first (ChecksumMismatch).
    - Dispatch is on the request's (function_code, param_hi); for read-consumption
      the tariff index is param_lo.
    - Returns None for requests no decoder handles, or raises UnknownFunctionCode
      when strict is set.

    Never mutates its inputs or any other state.
    """
    request = bytes(request)
    response = bytes(response)
    if len(request) < HEADER_SIZE + CHECKSUM_SIZE:
        raise MalformedResponse(request, HEADER_SIZE + CHECKSUM_SIZE, f"Request frame too short: {request.hex(' ')}")
    ensure_valid(request)

    function_code, param_hi, param_lo = request[1], request[2], request[3]
    decoder = _DECODERS.get((function_code, param_hi))
    if decoder is None:
        if strict:
            raise UnknownFunctionCode(function_code, (param_hi << 8) | param_lo)
        logger.debug("No decoder for function %d param %#06x, ignoring response", function_code, (param_hi << 8) | param_lo)
        return None
    return decoder(request, response)
