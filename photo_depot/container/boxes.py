"""
Box tree model for ISOBMFF/QTFF containers.

A Box is a node with header data (type, positions, sizes), optional
version/flags for "full" boxes, a typed payload for the handful of box
types we interpret, and its child boxes. Boxes without a payload are
opaque (mdat, idat, free, unknown types...).
"""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union


@dataclass(frozen=True)
class BoxHeader:
    type: str                   # FourCC, '' for the synthetic root
    begin: int                  # position of the first header byte
    data_pos: int               # position of the first data byte
    data_size: Optional[int]    # None if the box runs to the end of its parent
    end: Optional[int]          # position just past the box, None if unknown

    @property
    def header_size(self) -> int:
        return self.data_pos - self.begin


# --- Payloads ---

@dataclass(frozen=True)
class FileType:
    major_brand: str
    minor_version: int
    compatible_brands: Tuple[str, ...]


@dataclass(frozen=True)
class Handler:
    handler_type: str


@dataclass(frozen=True)
class PrimaryItem:
    item_id: int


@dataclass(frozen=True)
class ItemExtent:
    offset: int
    length: int
    index: Optional[int] = None


@dataclass(frozen=True)
class ItemLocation:
    item_id: int
    construction_method: int
    data_reference_index: int
    base_offset: int
    extents: Tuple[ItemExtent, ...]


@dataclass(frozen=True)
class ItemLocations:
    items: Tuple[ItemLocation, ...]


@dataclass(frozen=True)
class ItemReference:
    """One child of 'iref': reference_type is the child's box type."""
    from_item_id: int
    to_item_ids: Tuple[int, ...]


@dataclass(frozen=True)
class ItemInfoEntry:
    item_id: int
    protection_index: int
    item_type: Optional[str] = None
    item_name: Optional[str] = None
    content_type: Optional[str] = None
    content_encoding: Optional[str] = None
    uri_type: Optional[str] = None


Payload = Union[FileType, Handler, PrimaryItem, ItemLocations,
                ItemReference, ItemInfoEntry]


@dataclass(frozen=True)
class Box:
    header: BoxHeader
    payload: Optional[Payload] = None
    version: Optional[int] = None
    flags: Optional[int] = None
    children: Tuple["Box", ...] = field(default_factory=tuple)

    @property
    def type(self) -> str:
        return self.header.type

    def first(self, box_type: str) -> Optional["Box"]:
        """The first child with the given type, or None."""
        for child in self.children:
            if child.type == box_type:
                return child
        return None

    def all(self, box_type: str) -> List["Box"]:
        return [c for c in self.children if c.type == box_type]

    def find(self, *path: str) -> Optional["Box"]:
        """Follows first-children by type, e.g. root.find('meta', 'pitm')."""
        box: Optional[Box] = self
        for box_type in path:
            if box is None:
                return None
            box = box.first(box_type)
        return box


def diag_name(path, header: BoxHeader) -> str:
    """Short box description to go alongside a filename in messages."""
    end = f"0x{header.end:08x}" if header.end is not None else "EOF"
    return f"'{path}' '{header.type}'@[0x{header.begin:08x}-{end})"
