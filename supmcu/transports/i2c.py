"""Linux I2C transport implementation using the i2c-dev character device."""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable

from supmcu.core.errors import (
    TransportConnectError,
    TransportReadError,
    TransportWriteError,
)

# From <linux/i2c-dev.h>
I2C_SLAVE = 0x0703
SCAN_FIRST_ADDRESS = 0x03
SCAN_LAST_ADDRESS = 0x77
LOGGER = logging.getLogger(__name__)


def _ioctl():
    try:
        import fcntl
    except ImportError as exc:
        raise TransportConnectError(
            "This Python build does not expose fcntl; I2C access needs Linux i2c-dev."
        ) from exc
    return fcntl.ioctl


def _open_bus(device: str) -> int:
    try:
        return os.open(device, os.O_RDWR)
    except OSError as exc:
        raise TransportConnectError(f"Could not open I2C device {device}: {exc}") from exc


def _select_address(fd: int, device: str, address: int) -> None:
    ioctl = _ioctl()
    try:
        ioctl(fd, I2C_SLAVE, address)
    except OSError as exc:
        raise TransportConnectError(
            f"Could not select address {address:#04x} on {device}: {exc}"
        ) from exc


class LinuxI2CTransport:
    def __init__(self, device: str, address: int) -> None:
        self.device = device
        self.address = address
        self._fd: int | None = _open_bus(device)
        try:
            _select_address(self._fd, device, address)
        except TransportConnectError:
            os.close(self._fd)
            self._fd = None
            raise

    def _require_fd(self) -> int:
        if self._fd is None:
            raise TransportConnectError(f"I2C device {self.device} ({self.address:#04x}) is closed")
        return self._fd

    def write(self, data: bytes) -> None:
        fd = self._require_fd()
        try:
            written = os.write(fd, data)
        except OSError as exc:
            raise TransportWriteError(f"I2C write to {self.address:#04x} failed: {exc}") from exc
        if written != len(data):
            raise TransportWriteError(
                f"I2C write to {self.address:#04x} was short: {written} of {len(data)} bytes"
            )

    def read(self, size: int) -> bytes:
        fd = self._require_fd()
        try:
            data = os.read(fd, size)
        except OSError as exc:
            raise TransportReadError(f"I2C read from {self.address:#04x} failed: {exc}") from exc
        if len(data) != size:
            raise TransportReadError(
                f"I2C read from {self.address:#04x} was short: {len(data)} of {size} bytes"
            )
        return data

    def close(self) -> None:
        if self._fd is None:
            return
        try:
            os.close(self._fd)
        finally:
            self._fd = None


def scan_bus(device: str, blacklist: Iterable[int] | None = None) -> list[int]:
    """Probe every 7-bit address with a one-byte read and return the ones that answer.

    Checks addresses between 0x03 and 0x77, inclusive.
    """
    skipped = set(blacklist or ())
    LOGGER.debug("scanning I2C bus %s", device)
    fd = _open_bus(device)
    ioctl = _ioctl()
    found: list[int] = []
    try:
        for address in range(SCAN_FIRST_ADDRESS, SCAN_LAST_ADDRESS + 1):
            try:
                ioctl(fd, I2C_SLAVE, address)
            except OSError:
                LOGGER.error("failed to set address %#04x", address)
                continue
            try:
                os.read(fd, 1)
            except OSError:
                continue
            if address in skipped:
                LOGGER.debug("skipping blacklisted address %#04x", address)
                continue
            LOGGER.debug("found valid address %#04x", address)
            found.append(address)
    finally:
        os.close(fd)
    return found
