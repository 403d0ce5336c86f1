"""Clear exceptions for pymeterlink: serial transport failures and frame decode errors."""


class MeterLinkError(Exception):
    """Base exception for pymeterlink."""

    pass


class TransportError(MeterLinkError):
    """Raised when the serial link fails (wraps pyserial or OS errors)."""

    def __init__(
        self,
        message: str,
        *,
        port: str | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.port = port
        self.cause = cause
        super().__init__(message)


class TransportOpenError(TransportError):
    """Raised when the serial port cannot be opened (missing device, permissions, busy)."""

    pass


class TransportConfigureError(TransportError):
    """Raised when baud rate, byte framing or timeouts cannot be applied to an open port."""

    pass


class TransportWriteError(TransportError):
    """Raised on a short write or an I/O failure while sending a frame."""

    pass


class TransportReadError(TransportError):
    """Raised when the port fails while reading (not on timeout)."""

    pass


class ChannelBusyError(TransportError):
    """Raised when an exchange is started while the same thread already has one in flight on the channel."""

    pass


class TransportReadTimeout(TransportError):
    """Nothing arrived within the read timeout.

    LinkChannel.receive() reports a timeout by returning short or empty data;
    this class exists for callers that want to escalate that condition.
    """

    pass


class DecodeError(MeterLinkError):
    """Base for frame verification and response decoding failures."""

    pass


class ChecksumMismatch(DecodeError):
    """Raised when a frame's trailing CRC-32 does not match its payload."""

    def __init__(self, frame: bytes, expected: bytes | None = None, actual: bytes | None = None) -> None:
        self.frame = bytes(frame)
        self.expected = expected
        self.actual = actual
        super().__init__(f"Checksum mismatch in frame {self.frame.hex(' ')!s}")


class MalformedResponse(DecodeError):
    """Raised when a response is too short (or otherwise unusable) for the request it answers."""

    def __init__(self, response: bytes, needed: int, message: str | None = None) -> None:
        self.response = bytes(response)
        self.needed = needed
        self._msg = message or f"Response has {len(self.response)} bytes, need at least {needed}"
        super().__init__(self._msg)


class UnknownFunctionCode(DecodeError):
    """Raised in strict decoding when no decoder handles the request's function code."""

    def __init__(self, function_code: int, param: int) -> None:
        self.function_code = function_code
        self.param = param
        super().__init__(f"No decoder for function code {function_code} (param {param:#06x})")
