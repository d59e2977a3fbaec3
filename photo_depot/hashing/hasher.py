import hashlib
import logging
import os
from pathlib import Path
from typing import BinaryIO, Optional

from .. import config
from ..exceptions import FileHashError, MediaFormatError
from ..models import Extent, FileStat, HashResult
from .strategies import resolve_extents, strategy_for


class ContentHasher:
    def calculate_hash(self, path) -> HashResult:
        """
        Computes the MD5 digest(s) of a file.

        Strategy:
        1. full_hash: every byte of the file.
        2. content_hash: only the extents chosen by the file type's strategy,
           i.e. excluding metadata which may be rewritten.
           -> If the extents are the whole file, reuse full_hash.
           -> If the file doesn't parse as its type, warn and reuse full_hash
              rather than skipping the file.
        """
        try:
            with open(path, 'rb') as f:
                file_size = os.fstat(f.fileno()).st_size
                full_hash = self._md5(path, f)
                content_hash = self._content_hash(path, f, file_size, full_hash)
        except FileHashError:
            raise
        except OSError as e:
            raise FileHashError(f"Failed to hash '{path}': {e}") from e

        extra = ", including content only hash" if content_hash != full_hash else ""
        logging.debug(f"Computed MD5 of '{path}'{extra}")
        return HashResult(config.CURRENT_HASH_VERSION, content_hash, full_hash)

    def is_hash_version_current(self, path, version: int) -> bool:
        """
        Not every version bump changes the output for every file type, so
        an older version may still be as good as the current one.
        """
        return version >= strategy_for(path).version_floor

    def stat_file(self, path) -> FileStat:
        try:
            st = os.stat(path)
        except OSError as e:
            raise FileHashError(f"Failed to stat '{path}': {e}") from e
        return FileStat(Path(path).name, st.st_size, int(st.st_mtime))

    def _content_hash(self, path, f: BinaryIO, file_size: int, full_hash: str) -> str:
        try:
            extents = resolve_extents(path, f, file_size)
            if not extents or extents == [Extent(0, file_size)]:
                return full_hash
            h = hashlib.md5()
            for extent in extents:
                if extent.end > file_size:
                    raise MediaFormatError(
                        f"Extent [{extent.position}, {extent.end}) is past end of '{path}' ({file_size})")
                f.seek(extent.position)
                self._update(path, h, f, extent.length)
            return h.hexdigest()
        except MediaFormatError as e:
            logging.warning(f"Unavailable content MD5 for '{path}', using full MD5: {e}")
            return full_hash

    def _md5(self, path, f: BinaryIO) -> str:
        h = hashlib.md5()
        f.seek(0)
        self._update(path, h, f)
        return h.hexdigest()

    def _update(self, path, h, f: BinaryIO, length: Optional[int] = None) -> None:
        """Feeds length bytes (or the rest of the file) into h in chunks."""
        if length is None:
            while chunk := f.read(config.HASH_CHUNK_SIZE):
                h.update(chunk)
            return
        remaining = length
        while remaining > 0:
            chunk = f.read(min(config.HASH_CHUNK_SIZE, remaining))
            if not chunk:
                raise MediaFormatError(f"Failed to read {remaining} bytes from '{path}' at {f.tell()}")
            h.update(chunk)
            remaining -= len(chunk)
