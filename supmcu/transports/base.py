"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol


class Transport(Protocol):
    """A byte-oriented endpoint bound to one bus address at construction time."""

    def write(self, data: bytes) -> None:
        """Write all of ``data`` to the endpoint."""

    def read(self, size: int) -> bytes:
        """Read exactly ``size`` bytes from the endpoint."""

    def close(self) -> None:
        """Release the endpoint."""
