from dataclasses import dataclass, replace
from typing import Any, Dict, Optional

@dataclass(frozen=True)
class Extent:
    """A contiguous byte range within a file."""
    position: int
    length: int

    @property
    def end(self) -> int:
        return self.position + self.length


@dataclass(frozen=True)
class HashResult:
    version: int
    content_hash: str       # md5 over the stable payload only
    full_hash: str          # md5 over every byte of the file


@dataclass(frozen=True)
class FileStat:
    """
    The stat signature of a media file used to decide if a stored
    record is still fresh.
    """
    filename: str
    size: int
    mtime: int


@dataclass(frozen=True)
class HashRecord:
    """
    Represents the stored hash data for one media file in its depot.
    Records are replaced wholesale, never edited in place.
    """
    filename: str
    size: Optional[int]
    mtime: Optional[int]
    version: int
    content_hash: str
    full_hash: str

    @classmethod
    def from_result(cls, stat: FileStat, result: HashResult) -> "HashRecord":
        return cls(
            filename=stat.filename,
            size=stat.size,
            mtime=stat.mtime,
            version=result.version,
            content_hash=result.content_hash,
            full_hash=result.full_hash,
        )

    def with_stat(self, stat: FileStat) -> "HashRecord":
        return replace(self, filename=stat.filename, size=stat.size, mtime=stat.mtime)

    def to_json(self) -> Dict[str, Any]:
        # 'md5' is the content hash for historical reasons
        return {
            'filename': self.filename,
            'size': self.size,
            'mtime': self.mtime,
            'version': self.version,
            'full_md5': self.full_hash,
            'md5': self.content_hash,
        }

    @classmethod
    def from_json(cls, key: str, values: Dict[str, Any]) -> "HashRecord":
        """
        Builds a record from a depot JSON entry, filling in what older
        depots didn't store: version info arrived with version 2, so a
        missing version means 1.
        """
        full_hash = values.get('full_md5') or values.get('md5')
        content_hash = values.get('md5') or full_hash
        if not full_hash:
            raise ValueError(f"entry '{key}' has no md5 data")
        return cls(
            filename=values.get('filename', key),
            size=values.get('size'),
            mtime=values.get('mtime'),
            version=values.get('version', 1),
            content_hash=content_hash.lower(),
            full_hash=full_hash.lower(),
        )
