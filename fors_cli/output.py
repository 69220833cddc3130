from __future__ import annotations

import sys
from pathlib import Path
from typing import BinaryIO


class FileOutput:
    """A byte sink that writes into a file, or into stdout if no filename is given."""

    def __init__(self, filename: Path | str | None = None, fd: BinaryIO | None = None):
        self.filename = Path(filename) if filename else None
        self.fd = fd
        self.opened = False

    def open(self) -> FileOutput:
        if self.filename:
            self.filename.parent.mkdir(parents=True, exist_ok=True)
            self.fd = self.filename.open("wb")
        elif self.fd is None:
            self.fd = sys.stdout.buffer

        self.opened = True
        return self

    def write(self, data: bytes) -> None:
        self.fd.write(data)

    def flush(self) -> None:
        self.fd.flush()

    def close(self) -> None:
        if not self.opened:
            return
        if self.filename and self.fd is not None:
            self.fd.close()
        self.opened = False
