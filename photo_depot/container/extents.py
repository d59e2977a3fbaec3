"""
Resolves the byte ranges of an ISOBMFF file's primary item.

NB: none of this works for QTFF (.mov), which doesn't carry item
references or locations.
"""
import logging
from collections import deque
from typing import Iterable, List, Optional

from ..exceptions import MalformedBox, UnsupportedFeature
from ..models import Extent
from .boxes import Box, ItemLocations, ItemReference, PrimaryItem, diag_name

# iloc construction methods
FILE_OFFSET = 0
IDAT_OFFSET = 1


def merge_adjacent_extents(extents: Iterable[Extent]) -> List[Extent]:
    """
    Joins contiguous spans (a.end == b.position) but doesn't do anything
    fancy with overlaps or reordering to force joins: the result should be
    exactly the bytes a straightforward reader would extract, in order.
    """
    merged: List[Extent] = []
    for extent in extents:
        if merged and merged[-1].end == extent.position:
            merged[-1] = Extent(merged[-1].position, merged[-1].length + extent.length)
        else:
            merged.append(extent)
    return merged


def resolve_item_references(meta: Box, item_id: int) -> List[int]:
    """
    Returns item_id plus every item ID reachable from it through meta/iref,
    in ascending order. Each ID is queued at most once, so reference
    cycles are harmless.
    """
    iref = meta.first('iref')
    references = [
        child.payload for child in iref.children
        if isinstance(child.payload, ItemReference)
    ] if iref else []
    seen = {item_id}
    queue = deque([item_id])
    while queue:
        current = queue.popleft()
        for ref in references:
            if ref.from_item_id != current:
                continue
            for to_id in ref.to_item_ids:
                if to_id not in seen:
                    seen.add(to_id)
                    queue.append(to_id)
    return sorted(seen)


def primary_item_extents(root: Box, path) -> Optional[List[Extent]]:
    """
    Gets the ordered, adjacency-merged list of extents holding the data of
    the primary item (meta/pitm) and everything it references.

    Returns None if the file has no item metadata at all, which is normal
    for plain video files.
    """
    meta = root.first('meta')
    pitm = meta.first('pitm') if meta else None
    if pitm is None or not isinstance(pitm.payload, PrimaryItem):
        return None

    iloc = meta.first('iloc')
    if iloc is None or not isinstance(iloc.payload, ItemLocations):
        raise MalformedBox(f"Primary item without item locations for {diag_name(path, meta.header)}")

    extents: List[Extent] = []
    for item_id in resolve_item_references(meta, pitm.payload.item_id):
        for item in iloc.payload.items:
            if item.item_id != item_id:
                continue
            if item.data_reference_index != 0:
                raise UnsupportedFeature(
                    f"Only iloc data_reference_index of 'this file' (0) is supported for "
                    f"{diag_name(path, iloc.header)}")
            if item.construction_method == FILE_OFFSET:
                for e in item.extents:
                    extents.append(Extent(item.base_offset + e.offset, e.length))
            elif item.construction_method == IDAT_OFFSET:
                idat = meta.first('idat')
                if idat is None or idat.header.data_size is None:
                    raise MalformedBox(f"idat_offset item {item_id} without idat for {diag_name(path, iloc.header)}")
                data_begin = idat.header.data_pos
                data_end = data_begin + idat.header.data_size
                for e in item.extents:
                    extent = Extent(data_begin + item.base_offset + e.offset, e.length)
                    if extent.position < data_begin or extent.end > data_end:
                        raise MalformedBox(
                            f"Extent range of pos={extent.position}, size={extent.length} out of idat bounds "
                            f"pos={data_begin}, size={idat.header.data_size} for {diag_name(path, iloc.header)}")
                    extents.append(extent)
            else:
                raise UnsupportedFeature(
                    f"Only iloc construction_method of file_offset (0) or idat_offset (1) "
                    f"is supported, not {item.construction_method}, for {diag_name(path, iloc.header)}")

    if not extents:
        raise MalformedBox(f"No data located for primary item {pitm.payload.item_id} in {diag_name(path, iloc.header)}")
    merged = merge_adjacent_extents(extents)
    logging.debug(f"Primary item of '{path}' resolved to {len(merged)} extent(s)")
    return merged
