"""
Reader for ISO/IEC Base Media File Format (ISOBMFF) box trees.

ISOBMFF was adopted from QuickTime and is used by MP4 (.mp4, .m4v, ...),
.3gp, and HEIF (.heic, .heif, .avif, ...). A file is a series of nested
size-prefixed boxes starting with 'ftyp'. Header reads work for QuickTime
(.mov) atoms as well, but full parsing doesn't: QTFF 'meta' has no
version/flags, for one.
"""
import logging
import os
import struct
from dataclasses import replace
from typing import BinaryIO, Callable, Optional, Tuple

from ..exceptions import MalformedBox, UnsupportedFeature
from .boxes import (
    Box, BoxHeader, FileType, Handler, ItemExtent, ItemInfoEntry,
    ItemLocation, ItemLocations, ItemReference, PrimaryItem, diag_name,
)

# Padding boxes that carry nothing worth parsing
PADDING_TYPES = {'free', 'skip', 'wide'}

# Boxes whose data is referenced from elsewhere (e.g. iloc) and has no
# pre-structured content of its own
OPAQUE_TYPES = {'mdat', 'idat', 'iprp'}

CONTAINER_TYPES = {'moov', 'dinf'}

ChildParser = Callable[[BoxHeader], Box]


class BoxReader:
    """
    Parses boxes from a binary file handle. The handle is expected to be
    positioned at a box boundary when any read_* / parse_* method is called.
    """

    def __init__(self, fh: BinaryIO, path, file_size: Optional[int] = None):
        self.fh = fh
        self.path = path
        if file_size is None:
            pos = fh.tell()
            file_size = fh.seek(0, os.SEEK_END)
            fh.seek(pos)
        self.file_size = file_size

    # --- Headers ---

    def read_header(self) -> BoxHeader:
        """
        Reads a box header and leaves the handle at the start of the data.
        A size of 0 means the box runs to the end of its parent, so no
        data size or end position is known at this level.
        """
        start = self.fh.tell()
        data = self.fh.read(8)
        if len(data) < 8:
            raise MalformedBox(f"Truncated box header in '{self.path}' at {start}")
        size, raw_type = struct.unpack('>I4s', data)
        box_type = raw_type.decode('latin-1')
        header_size = 8
        if size == 1:
            # 1 means the real size follows as 64 bits
            data = self.fh.read(8)
            if len(data) < 8:
                raise MalformedBox(f"Truncated extended size for '{box_type}' in '{self.path}' at {start}")
            (size,) = struct.unpack('>Q', data)
            header_size += 8
        if size == 0:
            return BoxHeader(box_type, start, start + header_size, None, None)
        if size < header_size:
            raise MalformedBox(f"Bad size {size} for box '{box_type}' in '{self.path}' at {start}")
        return BoxHeader(box_type, start, start + header_size, size - header_size, start + size)

    def read_file_type(self) -> Box:
        """Reads the 'ftyp' box which must come first in an ISOBMFF file."""
        header = self.read_header()
        if header.type != 'ftyp':
            raise MalformedBox(f"Expected 'ftyp' box but found '{header.type}' in '{self.path}'")
        size = header.data_size
        if size is None or size < 8 or size % 4 != 0:
            raise MalformedBox(f"Unexpected ftyp data size {size} for {diag_name(self.path, header)}")
        data = self._read(header, size)
        major, minor = struct.unpack('>4sI', data[:8])
        compatible = tuple(
            data[i:i + 4].decode('latin-1') for i in range(8, size, 4)
        )
        return Box(header, FileType(major.decode('latin-1'), minor, compatible))

    def find_top_level(self, box_type: str) -> Optional[BoxHeader]:
        """
        Walks top-level headers only (no parsing) looking for box_type.
        Works for both ISOBMFF and QTFF. An unbounded match gets its size
        from the end of the file.
        """
        self.fh.seek(0)
        while self.fh.tell() < self.file_size:
            header = self.read_header()
            if header.type == box_type:
                if header.end is None:
                    header = replace(header, end=self.file_size,
                                     data_size=self.file_size - header.data_pos)
                return header
            if header.end is None:
                return None
            self.fh.seek(header.end)
        return None

    # --- Trees ---

    def parse_file(self) -> Box:
        """
        Parses the whole file into a tree under a synthetic root box
        (type '') whose first child is 'ftyp'.
        """
        self.fh.seek(0)
        ftyp = self.read_file_type()
        self.fh.seek(ftyp.header.end)
        root = BoxHeader('', 0, 0, None, None)
        return Box(root, children=(ftyp,) + self.parse_children(root))

    def parse_children(self,
                       parent: BoxHeader,
                       count: Optional[int] = None,
                       parse_child: Optional[ChildParser] = None) -> Tuple[Box, ...]:
        """
        Reads consecutive child boxes until count is exhausted, the parent's
        end is reached, or (for an unbounded parent) the end of the file.
        """
        parse_child = parse_child or self.parse_box
        children = []
        remaining = count
        while remaining is None or remaining > 0:
            limit = parent.end if parent.end is not None else self.file_size
            if self.fh.tell() >= limit:
                break
            child = self.read_header()
            if child.end is not None:
                if parent.end is not None and child.end > parent.end:
                    raise MalformedBox(
                        f"Box extended past parent end ({parent.end}) for {diag_name(self.path, child)}")
            elif parent.end is not None:
                child = replace(child, end=parent.end, data_size=parent.end - child.data_pos)

            children.append(parse_child(child))
            if remaining is not None:
                remaining -= 1

            if child.end is None:
                break
            self.fh.seek(child.end)

        if remaining:
            raise MalformedBox(
                f"Failed to read all child boxes, {remaining} still remain for {diag_name(self.path, parent)}")
        return tuple(children)

    def parse_box(self, header: BoxHeader) -> Box:
        """Parses the data of a box whose header was just read."""
        t = header.type
        if t in CONTAINER_TYPES:
            return Box(header, children=self.parse_children(header))
        if t == 'meta':
            version, flags = self._version_and_flags(header, 0)
            return Box(header, version=version, flags=flags,
                       children=self.parse_children(header))
        if t == 'dref':
            version, flags = self._version_and_flags(header, 0)
            (count,) = self._unpack(header, '>I')
            return Box(header, version=version, flags=flags,
                       children=self.parse_children(header, count))
        if t == 'url ':
            version, flags = self._version_and_flags(header, 0)
            return Box(header, version=version, flags=flags)
        if t == 'hdlr':
            version, flags = self._version_and_flags(header, 0)
            (handler_type,) = self._unpack(header, '>4x4s')
            return Box(header, Handler(handler_type.decode('latin-1')), version, flags)
        if t == 'pitm':
            version, flags = self._version_and_flags(header, 1)
            (item_id,) = self._unpack(header, '>H' if version == 0 else '>I')
            return Box(header, PrimaryItem(item_id), version, flags)
        if t == 'iinf':
            version, flags = self._version_and_flags(header, 1)
            (count,) = self._unpack(header, '>H' if version == 0 else '>I')
            return Box(header, version=version, flags=flags,
                       children=self.parse_children(header, count))
        if t == 'infe':
            return self._parse_infe(header)
        if t == 'iloc':
            return self._parse_iloc(header)
        if t == 'iref':
            return self._parse_iref(header)
        if t not in OPAQUE_TYPES and t not in PADDING_TYPES:
            logging.debug(f"Unknown box type '{t}' for {diag_name(self.path, header)}")
        return Box(header)

    # --- Box specific parsing ---

    def _parse_infe(self, header: BoxHeader) -> Box:
        version, flags = self._version_and_flags(header, 3)
        if version < 2:
            item_id, protection = self._unpack(header, '>HH')
            name, content_type, encoding = self._read_strings(header, 3)
            entry = ItemInfoEntry(item_id, protection, item_name=name,
                                  content_type=content_type, content_encoding=encoding)
        else:
            fmt = '>HH4s' if version == 2 else '>IH4s'
            item_id, protection, raw_type = self._unpack(header, fmt)
            item_type = raw_type.decode('latin-1')
            if item_type == 'mime':
                name, content_type, encoding = self._read_strings(header, 3)
                entry = ItemInfoEntry(item_id, protection, item_type, name,
                                      content_type=content_type, content_encoding=encoding)
            elif item_type == 'uri ':
                name, uri_type = self._read_strings(header, 2)
                entry = ItemInfoEntry(item_id, protection, item_type, name, uri_type=uri_type)
            else:
                (name,) = self._read_strings(header, 1)
                entry = ItemInfoEntry(item_id, protection, item_type, name)
        return Box(header, entry, version, flags)

    def _parse_iloc(self, header: BoxHeader) -> Box:
        # offset_size, length_size etc. are only needed while parsing
        version, flags = self._version_and_flags(header, 2)
        sizes_a, sizes_b = self._unpack(header, '>BB')
        offset_size = sizes_a >> 4
        length_size = sizes_a & 0xf
        base_offset_size = sizes_b >> 4
        index_size = (sizes_b & 0xf) if version in (1, 2) else 0

        (item_count,) = self._unpack(header, '>H' if version < 2 else '>I')
        items = []
        for _ in range(item_count):
            (item_id,) = self._unpack(header, '>H' if version < 2 else '>I')
            construction_method = 0
            if version in (1, 2):
                (method_field,) = self._unpack(header, '>H')
                # 12 reserved bits then a 4-bit construction_method
                construction_method = method_field & 0xf
            (data_reference_index,) = self._unpack(header, '>H')
            base_offset = self._read_sized_int(header, base_offset_size)
            (extent_count,) = self._unpack(header, '>H')
            extents = []
            for _ in range(extent_count):
                index = self._read_sized_int(header, index_size) if index_size else None
                offset = self._read_sized_int(header, offset_size)
                length = self._read_sized_int(header, length_size)
                extents.append(ItemExtent(offset, length, index))
            items.append(ItemLocation(item_id, construction_method, data_reference_index,
                                      base_offset, tuple(extents)))
        return Box(header, ItemLocations(tuple(items)), version, flags)

    def _parse_iref(self, header: BoxHeader) -> Box:
        version, flags = self._version_and_flags(header, 1)
        id_fmt = 'H' if version == 0 else 'I'

        def parse_reference(child: BoxHeader) -> Box:
            from_id, ref_count = self._unpack(child, f'>{id_fmt}H')
            to_ids = self._unpack(child, f'>{ref_count}{id_fmt}')
            return Box(child, ItemReference(from_id, tuple(to_ids)))

        return Box(header, version=version, flags=flags,
                   children=self.parse_children(header, parse_child=parse_reference))

    # --- Data helpers ---

    def _read(self, header: BoxHeader, size: Optional[int] = None) -> bytes:
        """
        Reads size bytes (or the rest of the box) from within the data of
        the box, never past its end.
        """
        pos = self.fh.tell()
        if pos < header.data_pos:
            raise MalformedBox(f"Position {pos} is before start of data in {diag_name(self.path, header)}")
        if header.data_size is not None:
            remaining = header.data_pos + header.data_size - pos
            if size is None:
                size = remaining
            elif size > remaining:
                raise MalformedBox(
                    f"Can't read {size} bytes at {pos} from {diag_name(self.path, header)}: "
                    f"only {remaining} bytes left in box")
        elif size is None:
            raise UnsupportedFeature(f"Sizeless read in unbounded {diag_name(self.path, header)}")
        data = self.fh.read(size)
        if len(data) != size:
            raise MalformedBox(f"Failed to read {size} bytes at {pos} from {diag_name(self.path, header)}")
        return data

    def _unpack(self, header: BoxHeader, fmt: str) -> tuple:
        return struct.unpack(fmt, self._read(header, struct.calcsize(fmt)))

    def _version_and_flags(self, header: BoxHeader, max_version: Optional[int]) -> Tuple[int, int]:
        """Reads the version and flags which start the data of "full" boxes."""
        data = self._read(header, 4)
        version = data[0]
        flags = int.from_bytes(data[1:4], 'big')
        if max_version is not None and version > max_version:
            raise UnsupportedFeature(f"Unsupported version {version} for {diag_name(self.path, header)}")
        return version, flags

    def _read_sized_int(self, header: BoxHeader, byte_size: int) -> int:
        if byte_size == 0:
            return 0
        if byte_size == 4:
            return self._unpack(header, '>I')[0]
        if byte_size == 8:
            return self._unpack(header, '>Q')[0]
        raise MalformedBox(f"Unexpected integer size {byte_size} for {diag_name(self.path, header)}")

    def _read_strings(self, header: BoxHeader, count: int) -> Tuple[Optional[str], ...]:
        """Reads up to count NUL terminated strings from the rest of the box."""
        parts = self._read(header).split(b'\0')
        values = [p.decode('utf-8', errors='replace') for p in parts[:count]]
        values += [None] * (count - len(values))
        return tuple(values)
