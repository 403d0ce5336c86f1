#!/usr/bin/env python3
"""Command-line interface for pymeterlink using Typer."""

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from . import __version__  # type: ignore
from . import codec
from .channel import DEFAULT_PORT, DEFAULT_READ_TIMEOUT, LinkChannel
from .device import DEFAULT_TARIFF, Mercury230
from .errors import DecodeError, TransportError
from .registry import DeviceRegistry
from .types import BaudRate, PollOutcome, Reading

app = typer.Typer(
    name="meterlink",
    help="Poll electricity meters over a shared serial line.",
    no_args_is_help=True,
)

logger = logging.getLogger(__name__)

# ============================================================================
# Shared options and helpers
# ============================================================================

PortOption = Annotated[
    str,
    typer.Option("--port", "-p", help="Serial port (e.g. /dev/ttyUSB0, COM3)", envvar="METERLINK_PORT"),
]
BaudOption = Annotated[
    int,
    typer.Option("--baud", "-b", help="Baud rate", envvar="METERLINK_BAUD"),
]
TimeoutOption = Annotated[
    float,
    typer.Option("--timeout", "-t", help="Read timeout in seconds", envvar="METERLINK_TIMEOUT"),
]
TariffOption = Annotated[
    int,
    typer.Option("--tariff", help="Tariff register to read"),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable debug logging"),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Output as JSON"),
]


def setup_logging(verbose: bool) -> None:
    """Configure logging based on verbose flag."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s" if not verbose else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def parse_byte(value: str, name: str = "value") -> int:
    """Parse a 0..255 integer, decimal or 0x hex."""
    v = value.strip()
    num = int(v, 16) if v.lower().startswith("0x") else int(v)
    if not 0 <= num <= 255:
        raise ValueError(f"{name} out of range 0..255: {num}")
    return num


def parse_hex_bytes(value: str) -> bytes:
    """Parse hex bytes, tolerating spaces, colons and an optional 0x prefix."""
    v = value.strip().replace(":", "").replace(" ", "")
    if v.lower().startswith("0x"):
        v = v[2:]
    try:
        return bytes.fromhex(v)
    except ValueError:
        raise ValueError(f"Invalid hex bytes: {value!r}") from None


def create_channel(port: str, baud: int, timeout: float) -> LinkChannel:
    """Create a LinkChannel; exits with code 2 on settings the channel rejects."""
    try:
        return LinkChannel(port_name=port, baud_rate=BaudRate(baud), read_timeout=timeout)
    except ValueError as e:
        typer.echo(f"Error: Invalid serial settings: {e}", err=True)
        raise typer.Exit(2)


def reading_to_dict(reading: Reading | None) -> dict[str, Any] | None:
    if reading is None:
        return None
    return {"tariff": reading.tariff_index, "value": reading.value, "unit": reading.unit}


def outcome_to_dict(outcome: PollOutcome) -> dict[str, Any]:
    out: dict[str, Any] = {
        "address": outcome.address,
        "id": outcome.identifier,
        "status": outcome.status.value,
        "reading": reading_to_dict(outcome.reading),
    }
    if outcome.error:
        out["error"] = outcome.error
    return out


def format_outcome(outcome: PollOutcome) -> str:
    """One text line per device: address=value unit, or address=status."""
    if outcome.reading is not None:
        r = outcome.reading
        return f"{outcome.address}=T{r.tariff_index}:{r.value:.3f}{r.unit}"
    return f"{outcome.address}={outcome.status.value}"


# ============================================================================
# Commands
# ============================================================================

@app.command()
def info(
    port: PortOption = DEFAULT_PORT,
    baud: BaudOption = int(BaudRate.B9600),
    timeout: TimeoutOption = DEFAULT_READ_TIMEOUT,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Show package version and the serial settings that would be used.

    Does not open the port.
    """
    setup_logging(verbose)
    channel = create_channel(port, baud, timeout)
    info_data = {"version": __version__, "channel": channel.describe()}

    if json_output:
        typer.echo(json.dumps(info_data, indent=2))
    else:
        settings = info_data["channel"]
        typer.echo(f"pymeterlink version: {info_data['version']}")
        typer.echo(f"Port:     {settings['port']}")
        typer.echo(f"Baud:     {settings['baud_rate']}")
        typer.echo(f"Framing:  {settings['data_bits']}{settings['parity']}{settings['stop_bits']}")
        typer.echo(f"Timeout:  {settings['read_timeout']}s")


@app.command()
def frame(
    address: Annotated[str, typer.Argument(help="Meter address (0..255, decimal or 0x hex)")],
    function: Annotated[int, typer.Option("--function", "-f", help="Function code")] = codec.FUNC_READ_CONSUMPTION,
    param: Annotated[Optional[int], typer.Option("--param", help="Raw 16-bit param (overrides --tariff)")] = None,
    tariff: TariffOption = DEFAULT_TARIFF,
    verbose: VerboseOption = False,
) -> None:
    """
    Print the request frame for an address as hex.

    No serial I/O; useful for checking what goes on the wire.
    """
    setup_logging(verbose)
    try:
        addr = parse_byte(address, "address")
        value = param if param is not None else codec.tariff_param(tariff)
        request = codec.build_request(addr, function, value)
    except ValueError as e:
        typer.echo(f"Error: Invalid input: {e}", err=True)
        raise typer.Exit(2)
    typer.echo(request.hex(" "))


@app.command()
def decode(
    request: Annotated[str, typer.Argument(help="Request frame as hex")],
    response: Annotated[str, typer.Argument(help="Response bytes as hex")],
    strict: Annotated[bool, typer.Option("--strict", help="Fail on function codes with no decoder")] = False,
    verbose: VerboseOption = False,
    json_output: JsonOption = False,
) -> None:
    """
    Decode a captured request/response pair offline.
    """
    setup_logging(verbose)
    try:
        reading = codec.decode_consumption(parse_hex_bytes(request), parse_hex_bytes(response), strict=strict)
    except ValueError as e:
        typer.echo(f"Error: Invalid input: {e}", err=True)
        raise typer.Exit(2)
    except DecodeError as e:
        typer.echo(f"Error: Decode failed: {e}", err=True)
        raise typer.Exit(2)

    if json_output:
        typer.echo(json.dumps({"reading": reading_to_dict(reading)}))
    elif reading is None:
        typer.echo("No reading (no decoder for this request)")
    else:
        typer.echo(f"Tariff: {reading.tariff_index} - Consumption: {reading.value} {reading.unit}")


@app.command()
def poll(
    addresses: Annotated[list[str], typer.Argument(help="Meter addresses to poll (decimal or 0x hex)")],
    port: PortOption = DEFAULT_PORT,
    baud: BaudOption = int(BaudRate.B9600),
    timeout: TimeoutOption = DEFAULT_READ_TIMEOUT,
    tariff: TariffOption = DEFAULT_TARIFF,
    verbose: VerboseOption = False,
    interval: Annotated[float, typer.Option("--interval", "-i", help="Seconds between polling passes")] = 60.0,
    once: Annotated[bool, typer.Option("--once", help="Run one pass and exit")] = False,
    format: Annotated[str, typer.Option("--format", help="Output format: text, json")] = "text",
) -> None:
    """
    Poll meters on one serial line.

    Each pass asks every meter for the consumption of one tariff, in the order given.
    Outputs format:
    - text: timestamp + address=value pairs (default)
    - json: NDJSON with {"timestamp": "...", "devices": [...]} per pass

    Use --once to poll once and exit.
    Press Ctrl+C to stop.
    """
    setup_logging(verbose)

    if format not in ("text", "json"):
        typer.echo(f"Error: Invalid format '{format}'. Must be text or json.", err=True)
        raise typer.Exit(2)

    if interval <= 0:
        typer.echo(f"Error: Interval must be positive, got {interval}", err=True)
        raise typer.Exit(2)

    try:
        parsed = [parse_byte(a, "address") for a in addresses]
        codec.tariff_param(tariff)
    except ValueError as e:
        typer.echo(f"Error: Invalid input: {e}", err=True)
        raise typer.Exit(2)

    channel = create_channel(port, baud, timeout)
    registry = DeviceRegistry()
    for addr in parsed:
        registry.attach(Mercury230(channel, address=addr))

    try:
        with channel:
            while True:
                outcomes = registry.poll_all(tariff)
                timestamp = datetime.now(timezone.utc).isoformat()
                if format == "json":
                    typer.echo(json.dumps({"timestamp": timestamp, "devices": [outcome_to_dict(o) for o in outcomes]}))
                else:
                    typer.echo(f"{timestamp} " + " ".join(format_outcome(o) for o in outcomes))

                if once:
                    break

                time.sleep(interval)
    except TransportError as e:
        typer.echo(f"Error: Serial port error: {e}", err=True)
        raise typer.Exit(3)
    except KeyboardInterrupt:
        typer.echo("\nStopped by user", err=True)
        raise typer.Exit(0)
    except Exception as e:
        typer.echo(f"Error: Unexpected error: {e}", err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        raise typer.Exit(4)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"pymeterlink {__version__}")
        raise typer.Exit(0)


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option("--version", callback=version_callback, is_eager=True, help="Show version and exit"),
    ] = None,
) -> None:
    """meterlink - poll electricity meters over a shared serial line."""
    pass


if __name__ == "__main__":
    app()
