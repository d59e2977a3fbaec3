"""
Per file type rules for which bytes feed the content hash.

The content hash should survive edits that only rewrite metadata (dates,
tags, ratings...) so for each supported type we select the byte ranges
holding the actual image/audio/video payload. Types without a rule use
the whole file, making the content hash equal to the full hash.
"""
import logging
import struct
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List

from .. import config
from ..container.boxes import FileType
from ..container.extents import primary_item_extents
from ..container.reader import BoxReader
from ..exceptions import MediaFormatError, UnsupportedFeature
from ..models import Extent


class HashStrategy(Enum):
    WHOLE_FILE = 'whole_file'
    ISOBMFF = 'isobmff'
    QUICKTIME = 'quicktime'
    JPEG = 'jpeg'
    PNG = 'png'


@dataclass(frozen=True)
class StrategyInfo:
    strategy: HashStrategy
    # Last CURRENT_HASH_VERSION that changed the output for these types
    version_floor: int
    # Hash the top-level mdat payload when there's no primary item
    mdat_fallback: bool = False


WHOLE_FILE_INFO = StrategyInfo(HashStrategy.WHOLE_FILE, 0)


def _build_registry() -> Dict[str, StrategyInfo]:
    registry = {}
    for ext in config.HEIF_EXTS:
        registry[ext] = StrategyInfo(HashStrategy.ISOBMFF, 8)
    for ext in config.MP4_EXTS:
        registry[ext] = StrategyInfo(HashStrategy.ISOBMFF, 8, mdat_fallback=True)
    for ext in config.QUICKTIME_EXTS:
        registry[ext] = StrategyInfo(HashStrategy.QUICKTIME, 7)
    for ext in config.JPEG_EXTS:
        registry[ext] = StrategyInfo(HashStrategy.JPEG, 1)
    for ext in config.PNG_EXTS:
        registry[ext] = StrategyInfo(HashStrategy.PNG, 3)
    # TODO: TIFF based RAW (.cr2, .nef, .tif) could skip IFD metadata the
    # same way; until then they hash whole.
    return registry


STRATEGIES = _build_registry()

# Brands whose files can carry a meta/pitm primary item
ITEM_BRANDS = {'heic', 'heix', 'mif1', 'msf1', 'avif', 'mp41', 'mp42'}

# Brands whose mdat payload is the movie data (QTFF included)
MDAT_BRANDS = {'heic', 'isom', 'mp41', 'mp42', 'qt  '}

JPEG_SOI = 0xffd8
JPEG_SOS = 0xffda

PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'
PNG_TEXT_CHUNKS = {b'tEXt', b'zTXt', b'iTXt'}


def media_extension(path) -> str:
    """Lowercase extension of path, ignoring any backup suffix."""
    name = config.BACKUP_SUFFIX_RE.sub('', Path(path).name)
    return Path(name).suffix.lower()


def strategy_for(path) -> StrategyInfo:
    return STRATEGIES.get(media_extension(path), WHOLE_FILE_INFO)


def resolve_extents(path, fh: BinaryIO, file_size: int) -> List[Extent]:
    """
    Returns the extents to feed into the content hash, in order. An empty
    list means nothing format specific was found and the whole file should
    be used. Raises MediaFormatError (or a subclass) for files that don't
    have the structure their extension promises.
    """
    info = strategy_for(path)
    fh.seek(0)
    return _RESOLVERS[info.strategy](info, path, fh, file_size)


def _whole_file_extents(info, path, fh, file_size) -> List[Extent]:
    return [Extent(0, file_size)]


def _isobmff_extents(info, path, fh, file_size) -> List[Extent]:
    reader = BoxReader(fh, path, file_size)
    file_type = reader.read_file_type().payload

    if _is_item_brand(file_type) and reader.find_top_level('meta') is not None:
        extents = primary_item_extents(reader.parse_file(), path)
        if extents is not None:
            return extents

    if info.mdat_fallback:
        return _movie_data_extents(reader, file_type, path)
    if not _is_item_brand(file_type):
        raise UnsupportedFeature(f"Unexpected brand {_describe_brands(file_type)} for '{path}'")
    logging.debug(f"No primary item metadata in '{path}', using whole file")
    return []


def _quicktime_extents(info, path, fh, file_size) -> List[Extent]:
    return _mdat_extents(BoxReader(fh, path, file_size))


def _jpeg_extents(info, path, fh, file_size) -> List[Extent]:
    """
    Skips the metadata segments (APPn etc) which may change, taking
    everything from the Start of Scan to the end of the file.
    """
    data = fh.read(2)
    if len(data) < 2 or struct.unpack('>H', data)[0] != JPEG_SOI:
        raise MediaFormatError(f"File didn't start with JPEG SOI marker: '{path}'")

    tags = []
    while True:
        pos = fh.tell()
        data = fh.read(4)
        if len(data) < 4:
            raise MediaFormatError(
                f"Failed to read JPEG tag header from '{path}' at {pos} after {';'.join(tags)}")
        tag, size = struct.unpack('>HH', data)
        if tag == JPEG_SOS:
            start = pos + 4
            return [Extent(start, file_size - start)]
        if size < 2:
            raise MediaFormatError(f"Bad JPEG segment size {size} for tag {tag:04x} in '{path}' at {pos}")
        tags.append(f"{tag:04x},{size:04x}")
        fh.seek(pos + 2 + size)


def _png_extents(info, path, fh, file_size) -> List[Extent]:
    """
    Takes the type and data of every chunk except text chunks. Length and
    CRC are left out, the type and data are enough.
    """
    if fh.read(8) != PNG_SIGNATURE:
        raise MediaFormatError(f"File didn't start with PNG header: '{path}'")

    extents = []
    pos = 8
    while pos < file_size:
        fh.seek(pos)
        data = fh.read(8)
        if len(data) < 8:
            raise MediaFormatError(f"Failed to read PNG chunk header from '{path}' at {pos}")
        size, chunk_type = struct.unpack('>I4s', data)
        data_end = pos + 8 + size
        if data_end > file_size:
            raise MediaFormatError(
                f"PNG chunk {chunk_type!r} at {pos} runs past end of '{path}' ({data_end} > {file_size})")
        if chunk_type not in PNG_TEXT_CHUNKS:
            extents.append(Extent(pos + 4, 4 + size))
        pos = data_end + 4
    return extents


def _movie_data_extents(reader: BoxReader, file_type: FileType, path) -> List[Extent]:
    brand = file_type.major_brand
    # 'isom' means the first version of ISO Base Media and is not supposed
    # to be a major brand, but it happens.
    if brand == 'isom':
        others = [b for b in file_type.compatible_brands if b != 'isom']
        if len(others) == 1:
            brand = others[0]
    if brand not in MDAT_BRANDS:
        logging.warning(f"Unexpected brand {_describe_brands(file_type)} for '{path}', using whole file")
        return []
    return _mdat_extents(reader)


def _mdat_extents(reader: BoxReader) -> List[Extent]:
    header = reader.find_top_level('mdat')
    if header is None:
        logging.debug(f"No mdat box in '{reader.path}'")
        return []
    return [Extent(header.data_pos, header.data_size)]


def _is_item_brand(file_type: FileType) -> bool:
    return file_type.major_brand in ITEM_BRANDS


def _describe_brands(file_type: FileType) -> str:
    brand = f"'{file_type.major_brand}'"
    if file_type.compatible_brands:
        brand += " ('" + "', '".join(file_type.compatible_brands) + "')"
    return brand


_RESOLVERS: Dict[HashStrategy, Callable[..., List[Extent]]] = {
    HashStrategy.WHOLE_FILE: _whole_file_extents,
    HashStrategy.ISOBMFF: _isobmff_extents,
    HashStrategy.QUICKTIME: _quicktime_extents,
    HashStrategy.JPEG: _jpeg_extents,
    HashStrategy.PNG: _png_extents,
}
