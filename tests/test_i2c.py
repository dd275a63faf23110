from __future__ import annotations

import os
from types import SimpleNamespace

import pytest

from supmcu.core.errors import TransportConnectError, TransportReadError, TransportWriteError
from supmcu.transports import i2c
from supmcu.transports.i2c import LinuxI2CTransport, scan_bus


def _fake_os(monkeypatch: pytest.MonkeyPatch, **funcs) -> None:
    fake = SimpleNamespace(
        O_RDWR=os.O_RDWR,
        open=lambda path, flags: 11,
        close=lambda fd: None,
        read=lambda fd, size: bytes(size),
        write=lambda fd, data: len(data),
    )
    for name, fn in funcs.items():
        setattr(fake, name, fn)
    monkeypatch.setattr(i2c, "os", fake)


def test_missing_device_raises_clean_error(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail_open(path, flags):
        raise FileNotFoundError(2, "No such file or directory", path)

    _fake_os(monkeypatch, open=fail_open)
    with pytest.raises(TransportConnectError):
        LinuxI2CTransport("/dev/i2c-9", 0x52)


def test_address_select_failure_closes_device(monkeypatch: pytest.MonkeyPatch) -> None:
    closed = []

    def fail_ioctl(fd, request, address):
        raise OSError(16, "Device or resource busy")

    _fake_os(monkeypatch, close=closed.append)
    monkeypatch.setattr(i2c, "_ioctl", lambda: fail_ioctl)
    with pytest.raises(TransportConnectError):
        LinuxI2CTransport("/dev/i2c-1", 0x52)
    assert closed == [11]


def test_short_read_and_write_are_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    _fake_os(monkeypatch, read=lambda fd, size: b"\x01", write=lambda fd, data: 1)
    monkeypatch.setattr(i2c, "_ioctl", lambda: lambda fd, request, address: None)

    transport = LinuxI2CTransport("/dev/i2c-1", 0x52)
    with pytest.raises(TransportReadError):
        transport.read(13)
    with pytest.raises(TransportWriteError):
        transport.write(b"SUP:TEL? 0\n")
    transport.close()
    with pytest.raises(TransportConnectError):
        transport.read(13)


def test_scan_bus_reports_answering_addresses(monkeypatch: pytest.MonkeyPatch) -> None:
    selected = {}
    answering = {0x1C, 0x2A, 0x52}
    probed = []

    def fake_ioctl(fd, request, address):
        selected["address"] = address

    def fake_read(fd, size):
        probed.append(selected["address"])
        if selected["address"] not in answering:
            raise OSError(121, "Remote I/O error")
        return b"\x00"

    _fake_os(monkeypatch, read=fake_read)
    monkeypatch.setattr(i2c, "_ioctl", lambda: fake_ioctl)

    assert scan_bus("/dev/i2c-1", blacklist=[0x2A]) == [0x1C, 0x52]
    assert probed[0] == 0x03
    assert probed[-1] == 0x77
