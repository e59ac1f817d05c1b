"""Printer driver capability.

The fleet only needs a small surface from a driver: check that an endpoint
answers, confirm which command dialect (driver family) it speaks, and open a
handle that buffers lines and a paper cut before flushing them to the device.

`EscposPrinterDriver` implements that surface on top of python-escpos. Output
is rendered into an in-memory `Dummy` printer and sent to the device in one
write over a `Network` connection, so a job either reaches the printer whole
or fails as a unit.
"""

import asyncio
import logging
from abc import ABC, abstractmethod

from escpos.printer import Dummy, Network

from backend.app.services.network_utils import parse_endpoint, probe_tcp

logger = logging.getLogger(__name__)

FAMILY_EPSON = "epson"
FAMILY_STAR = "star"

# Handshake order during discovery: most common dialect first
DRIVER_FAMILIES = (FAMILY_EPSON, FAMILY_STAR)
DEFAULT_FAMILY = FAMILY_EPSON

# Star Line Mode commands
STAR_STATUS_REQUEST = b"\x1b\x06\x01"  # ESC ACK SOH, automatic status
STAR_PARTIAL_CUT = b"\x1b\x64\x03"  # ESC d 3, feed and partial cut


class PrinterDriverError(Exception):
    """Raised when a driver operation fails."""


class PrinterHandle(ABC):
    """Buffered connection to one printer."""

    def __init__(self, endpoint: str, family: str):
        self.endpoint = endpoint
        self.family = family

    @abstractmethod
    def write_line(self, text: str = "", *, align: str = "left", bold: bool = False, double: bool = False):
        """Append one line of text to the buffer."""

    @abstractmethod
    def cut(self):
        """Append a paper cut to the buffer."""

    @abstractmethod
    def clear(self):
        """Discard anything buffered."""

    @abstractmethod
    async def flush(self, timeout: float):
        """Send the buffer to the device and clear it.

        Raises:
            PrinterDriverError: if the device could not be written to.
            TimeoutError: if the write did not finish in time.
        """


class PrinterDriver(ABC):
    """Capability the fleet consumes to talk to printers."""

    families: tuple[str, ...] = DRIVER_FAMILIES

    async def test_reachable(self, endpoint: str, timeout: float) -> bool:
        """Check whether the endpoint accepts connections."""
        try:
            host, port = parse_endpoint(endpoint)
        except ValueError:
            logger.warning("Cannot check reachability of malformed endpoint %s", endpoint)
            return False
        return await probe_tcp(host, port, timeout)

    @abstractmethod
    async def handshake(self, endpoint: str, family: str, timeout: float) -> bool:
        """Return True if the endpoint answers a status query in the given dialect."""

    @abstractmethod
    def open(self, endpoint: str, family: str) -> PrinterHandle:
        """Create a handle for the endpoint. Does not touch the network."""


class EscposPrinterHandle(PrinterHandle):
    """Handle that renders through python-escpos and writes over TCP."""

    def __init__(self, endpoint: str, family: str):
        super().__init__(endpoint, family)
        self.host, self.port = parse_endpoint(endpoint)
        self._buffer = Dummy()

    def write_line(self, text: str = "", *, align: str = "left", bold: bool = False, double: bool = False):
        if self.family == FAMILY_STAR:
            # Star Line Mode does not share ESC/POS styling commands; print plain text
            self._buffer.text(f"{text}\n")
            return
        self._buffer.set(
            align=align,
            bold=bold,
            double_height=double,
            double_width=double,
            normal_textsize=not double,
        )
        self._buffer.text(f"{text}\n")

    def cut(self):
        if self.family == FAMILY_STAR:
            self._buffer._raw(STAR_PARTIAL_CUT)
        else:
            self._buffer.cut()

    def clear(self):
        self._buffer.clear()

    @property
    def pending(self) -> bytes:
        return self._buffer.output

    async def flush(self, timeout: float):
        data = self._buffer.output
        self._buffer.clear()
        if not data:
            return

        def _send():
            printer = Network(self.host, port=self.port, timeout=timeout)
            try:
                printer.open()
                printer._raw(data)
            finally:
                printer.close()

        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(loop.run_in_executor(None, _send), timeout=timeout)
        except TimeoutError:
            raise
        except Exception as e:
            raise PrinterDriverError(f"Failed to write to {self.endpoint}: {e}") from e


class EscposPrinterDriver(PrinterDriver):
    """Network thermal printer driver based on python-escpos."""

    async def handshake(self, endpoint: str, family: str, timeout: float) -> bool:
        try:
            host, port = parse_endpoint(endpoint)
        except ValueError:
            return False

        def _query() -> bool:
            printer = Network(host, port=port, timeout=timeout)
            try:
                printer.open()
                if family == FAMILY_STAR:
                    printer._raw(STAR_STATUS_REQUEST)
                    return bool(printer._read())
                return printer.is_online()
            finally:
                printer.close()

        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(loop.run_in_executor(None, _query), timeout=timeout)
        except Exception as e:
            logger.debug("%s handshake with %s failed: %s", family, endpoint, e)
            return False

    def open(self, endpoint: str, family: str) -> PrinterHandle:
        return EscposPrinterHandle(endpoint, family)
