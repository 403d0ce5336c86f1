"""Tests for LinkChannel: port setup, error mapping and device enumeration (mocked pyserial)."""

import gc
import threading
from typing import Iterator
from unittest.mock import MagicMock, patch

import pytest
import serial

from pymeterlink import LinkChannel, Mercury230
from pymeterlink.channel import DEFAULT_INTER_BYTE_TIMEOUT, MAX_FRAME_SIZE
from pymeterlink.errors import (
    ChannelBusyError,
    TransportConfigureError,
    TransportOpenError,
    TransportReadError,
    TransportWriteError,
)
from pymeterlink.types import BaudRate, DeviceState, SerialFraming


@pytest.fixture
def mock_port() -> MagicMock:
    port = MagicMock()
    port.is_open = True
    port.write.side_effect = lambda data: len(data)
    port.read.return_value = b""
    return port


@pytest.fixture
def serial_factory(mock_port: MagicMock) -> Iterator[MagicMock]:
    with patch("pymeterlink.channel.serial.Serial", return_value=mock_port) as factory:
        yield factory


def test_defaults() -> None:
    ch = LinkChannel()
    assert ch.port_name == "COM1"
    assert ch.baud_rate == BaudRate.B9600
    assert ch.framing == SerialFraming(data_bits=8, parity="N", stop_bits=1, flow_control=False)
    assert ch.read_timeout == 1.0
    assert ch.handle is None
    assert not ch.is_open


def test_rejects_non_standard_baud_rate() -> None:
    with pytest.raises(ValueError):
        LinkChannel(baud_rate=12345)


def test_reconfigure_opens_and_applies_settings(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    ch = LinkChannel(port_name="/dev/ttyUSB0", baud_rate=BaudRate.B19200, read_timeout=0.5)
    ch.reconfigure()
    assert ch.handle is mock_port
    assert mock_port.port == "/dev/ttyUSB0"
    mock_port.open.assert_called_once()
    assert mock_port.baudrate == 19200
    assert mock_port.bytesize == 8
    assert mock_port.parity == "N"
    assert mock_port.stopbits == 1
    assert mock_port.xonxoff is False
    assert mock_port.rtscts is False
    assert mock_port.timeout == 0.5


def test_reconfigure_is_idempotent(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    ch = LinkChannel()
    ch.reconfigure()
    ch.reconfigure()
    serial_factory.assert_called_once()
    mock_port.open.assert_called_once()
    assert mock_port.reset_input_buffer.call_count == 2


def test_reconfigure_open_failure(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    mock_port.open.side_effect = serial.SerialException("could not open port")
    ch = LinkChannel(port_name="/dev/does-not-exist")
    with pytest.raises(TransportOpenError) as exc_info:
        ch.reconfigure()
    assert exc_info.value.port == "/dev/does-not-exist"
    assert isinstance(exc_info.value.cause, serial.SerialException)
    assert ch.handle is None


def test_reconfigure_configure_failure(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    mock_port.reset_input_buffer.side_effect = serial.SerialException("ioctl failed")
    ch = LinkChannel()
    with pytest.raises(TransportConfigureError):
        ch.reconfigure()
    assert ch.handle is None
    assert not ch.is_open
    mock_port.close.assert_called_once()


def test_reconfigure_failure_on_open_port_drops_handle(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    ch = LinkChannel()
    ch.reconfigure()
    assert ch.handle is mock_port
    mock_port.reset_output_buffer.side_effect = OSError("device unplugged")
    with pytest.raises(TransportConfigureError):
        ch.reconfigure()
    assert ch.handle is None
    with pytest.raises(TransportWriteError):
        ch.send(b"\x01")


def test_reconfigure_sets_inter_byte_timeout(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    LinkChannel().reconfigure()
    assert mock_port.inter_byte_timeout == DEFAULT_INTER_BYTE_TIMEOUT
    LinkChannel(inter_byte_timeout=None).reconfigure()
    assert mock_port.inter_byte_timeout is None


def test_send_writes_all_bytes(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    ch = LinkChannel()
    ch.reconfigure()
    ch.send(b"\x01\x05\x00\x01")
    mock_port.write.assert_called_once_with(b"\x01\x05\x00\x01")
    mock_port.flush.assert_called_once()


def test_send_short_write(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    mock_port.write.side_effect = None
    mock_port.write.return_value = 3
    ch = LinkChannel()
    ch.reconfigure()
    with pytest.raises(TransportWriteError, match="Short write"):
        ch.send(bytes(8))


def test_send_io_failure(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    mock_port.write.side_effect = serial.SerialTimeoutException("write timeout")
    ch = LinkChannel()
    ch.reconfigure()
    with pytest.raises(TransportWriteError):
        ch.send(bytes(8))


def test_send_unconfigured() -> None:
    with pytest.raises(TransportWriteError):
        LinkChannel().send(b"\x00")


def test_receive_reads_up_to_max_frame(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    mock_port.read.return_value = b"\x01\x05\x00\x00\x3f\xf0"
    ch = LinkChannel()
    ch.reconfigure()
    assert ch.receive() == b"\x01\x05\x00\x00\x3f\xf0"
    mock_port.read.assert_called_once_with(MAX_FRAME_SIZE)


def test_receive_timeout_returns_empty(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    ch = LinkChannel()
    ch.reconfigure()
    assert ch.receive() == b""


def test_receive_unconfigured_returns_empty() -> None:
    assert LinkChannel().receive() == b""


def test_receive_io_failure(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    mock_port.read.side_effect = serial.SerialException("device reports readiness to read but returned no data")
    ch = LinkChannel()
    ch.reconfigure()
    with pytest.raises(TransportReadError):
        ch.receive()


def test_exchange(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    mock_port.read.return_value = b"\xaa"
    ch = LinkChannel()
    assert ch.exchange(b"\x01\x02") == b"\xaa"
    mock_port.write.assert_called_once_with(b"\x01\x02")
    assert not ch.in_exchange


def test_exchange_reports_states(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    states: list[DeviceState] = []
    LinkChannel().exchange(b"\x01", on_state=states.append)
    assert states == [DeviceState.CONFIGURING, DeviceState.SENDING, DeviceState.AWAITING_RESPONSE]


def test_nested_exchange_on_same_thread_is_busy(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    ch = LinkChannel()
    nested: list[BaseException] = []

    def read(size: int) -> bytes:
        with pytest.raises(ChannelBusyError) as exc_info:
            ch.exchange(b"\x02")
        nested.append(exc_info.value)
        return b"\xaa"

    mock_port.read.side_effect = read
    assert ch.exchange(b"\x01") == b"\xaa"
    assert len(nested) == 1
    mock_port.write.assert_called_once_with(b"\x01")


def test_exchange_from_other_thread_waits(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    ch = LinkChannel()
    results: list[bytes] = []
    with ch.exclusive():
        worker = threading.Thread(target=lambda: results.append(ch.exchange(b"\x02")))
        worker.start()
        worker.join(timeout=0.2)
        assert worker.is_alive()
        mock_port.write.assert_not_called()
    worker.join(timeout=5)
    assert results == [b""]
    mock_port.write.assert_called_once_with(b"\x02")


def test_close_releases_handle(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    ch = LinkChannel()
    ch.reconfigure()
    ch.close()
    mock_port.close.assert_called_once()
    assert ch.handle is None
    ch.close()
    mock_port.close.assert_called_once()


def test_close_error_is_logged(serial_factory: MagicMock, mock_port: MagicMock, caplog: pytest.LogCaptureFixture) -> None:
    mock_port.close.side_effect = OSError("gone")
    ch = LinkChannel()
    ch.reconfigure()
    ch.close()
    assert ch.handle is None
    assert "Error closing serial port" in caplog.text


def test_context_manager(serial_factory: MagicMock, mock_port: MagicMock) -> None:
    with LinkChannel() as ch:
        assert ch.handle is mock_port
    mock_port.close.assert_called_once()
    assert ch.handle is None


def test_devices_in_attachment_order() -> None:
    ch = LinkChannel()
    a = Mercury230(ch, address=1)
    b = Mercury230(ch, address=2)
    ch.attach(a)
    assert ch.devices == [a, b]
    ch.detach(a)
    assert ch.devices == [b]


def test_devices_do_not_keep_meters_alive() -> None:
    ch = LinkChannel()
    dev = Mercury230(ch, address=7)
    assert ch.devices == [dev]
    del dev
    gc.collect()
    assert ch.devices == []


def test_describe() -> None:
    info = LinkChannel(port_name="/dev/ttyS0", baud_rate=4800).describe()
    assert info["port"] == "/dev/ttyS0"
    assert info["baud_rate"] == 4800
    assert info["open"] is False
