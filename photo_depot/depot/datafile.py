"""
Depot file access.
"""
import logging
from pathlib import Path
from typing import IO, Optional

from .. import config
from ..exceptions import DepotFormatError
from .records import RecordSet, dumps_record_set, loads_record_set


class DepotFile:
    """
    One directory's depot file. A read-modify-write sequence happens under
    a single open handle:

        with DepotFile(path) as depot:
            records = depot.read()
            ...
            depot.write(records)

    The file is only created when non-empty records are written, and is
    deleted when written empty.
    """

    def __init__(self, path):
        self.path = Path(path).absolute()
        if self.path.name.lower() != config.DEPOT_FILENAME:
            raise DepotFormatError(f"Expected depot filename '{config.DEPOT_FILENAME}' for '{path}'")
        self._handle: Optional[IO[str]] = None

    def open(self) -> "DepotFile":
        """Opens an existing depot for read/write; a missing one stays closed."""
        if self._handle is None and self.path.exists():
            self._handle = open(self.path, 'r+', encoding='utf-8')
        return self

    def close(self):
        if self._handle:
            self._handle.close()
            self._handle = None

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def exists(self) -> bool:
        return self._handle is not None

    def read(self) -> RecordSet:
        if self._handle is None:
            return {}
        self._handle.seek(0)
        records = loads_record_set(self._handle.read(), self.path)
        logging.debug(f"Read depot '{self.path}'")
        return records

    def write(self, records: RecordSet):
        if not records:
            self.erase()
            return
        if self._handle is None:
            self._handle = open(self.path, 'x+', encoding='utf-8')
            logging.debug(f"Created depot '{self.path}'")
        self._handle.seek(0)
        self._handle.truncate(0)
        self._handle.write(dumps_record_set(records))
        self._handle.flush()
        logging.debug(f"Wrote depot '{self.path}'")

    def erase(self):
        if self._handle is None:
            return
        self.close()
        self.path.unlink()
        logging.debug(f"Deleted depot '{self.path}'")
