"""
Byte builders for synthetic media files used across the tests.
"""
import struct
from typing import Iterable, Sequence, Tuple


def box(box_type: str, payload: bytes = b'') -> bytes:
    return struct.pack('>I4s', 8 + len(payload), box_type.encode('latin-1')) + payload


def large_box(box_type: str, payload: bytes = b'') -> bytes:
    """Box using the 64-bit extended size field."""
    return struct.pack('>I4sQ', 1, box_type.encode('latin-1'), 16 + len(payload)) + payload


def full_box(box_type: str, version: int, flags: int = 0, payload: bytes = b'') -> bytes:
    return box(box_type, bytes([version]) + flags.to_bytes(3, 'big') + payload)


def ftyp(major: str = 'heic', compatible: Sequence[str] = ('mif1', 'heic'), minor: int = 0) -> bytes:
    return box('ftyp', major.encode('latin-1') + struct.pack('>I', minor)
               + b''.join(b.encode('latin-1') for b in compatible))


def hdlr(handler_type: str = 'pict') -> bytes:
    return full_box('hdlr', 0, 0, b'\0' * 4 + handler_type.encode('latin-1') + b'\0' * 12 + b'\0')


def pitm(item_id: int) -> bytes:
    return full_box('pitm', 0, 0, struct.pack('>H', item_id))


def iloc(items: Iterable[Tuple], version: int = 0) -> bytes:
    """
    items: (item_id, base_offset, [(offset, length), ...]) tuples, with an
    optional 4th construction_method and 5th data_reference_index (v1/v2).
    All offsets and lengths are written as 4 byte integers.
    """
    items = list(items)
    payload = bytes([0x44, 0x40])
    payload += struct.pack('>H' if version < 2 else '>I', len(items))
    for item in items:
        item_id, base_offset, extents = item[:3]
        method = item[3] if len(item) > 3 else 0
        data_ref = item[4] if len(item) > 4 else 0
        payload += struct.pack('>H' if version < 2 else '>I', item_id)
        if version in (1, 2):
            payload += struct.pack('>H', method)
        payload += struct.pack('>HIH', data_ref, base_offset, len(extents))
        for offset, length in extents:
            payload += struct.pack('>II', offset, length)
    return full_box('iloc', version, 0, payload)


def iref(references: Iterable[Tuple[str, int, Sequence[int]]]) -> bytes:
    """references: (reference_type, from_id, to_ids) tuples (version 0)."""
    children = b''
    for ref_type, from_id, to_ids in references:
        children += box(ref_type, struct.pack(f'>HH{len(to_ids)}H', from_id, len(to_ids), *to_ids))
    return full_box('iref', 0, 0, children)


def infe_v2(item_id: int, item_type: str, name: str = '') -> bytes:
    return full_box('infe', 2, 0, struct.pack('>HH4s', item_id, 0, item_type.encode('latin-1'))
                    + name.encode() + b'\0')


def iinf(*entries: bytes) -> bytes:
    return full_box('iinf', 0, 0, struct.pack('>H', len(entries)) + b''.join(entries))


def meta(*children: bytes) -> bytes:
    return full_box('meta', 0, 0, b''.join(children))


def pad_to(data: bytes, position: int) -> bytes:
    """Appends a 'free' box so the result is exactly position bytes long."""
    gap = position - len(data)
    assert gap >= 8, "not enough room for a free box"
    return data + box('free', b'\0' * (gap - 8))


def heif_file(mdat_payload: bytes = bytes(range(64)), item_offset: int = 100, item_length: int = 50,
              major: str = 'heic', compatible: Sequence[str] = ('mif1', 'heic')) -> bytes:
    """
    ftyp, meta{pitm 1, iloc item 1 at item_offset/item_length}, free
    padding, and an mdat box starting exactly at item_offset.
    """
    head = ftyp(major, compatible) + meta(pitm(1), iloc([(1, item_offset, [(0, item_length)])]))
    return pad_to(head, item_offset) + box('mdat', mdat_payload)


def jpeg_file(app_payload: bytes = b'Exif\0\0metadata', scan: bytes = b'\x01\x02\x03pixels\xff\xd9') -> bytes:
    """SOI, an APP1 segment, then SOS (with a 12 byte header) and scan data."""
    app1 = b'\xff\xe1' + struct.pack('>H', 2 + len(app_payload)) + app_payload
    sos = b'\xff\xda' + struct.pack('>H', 12) + b'\x03\x01\x00\x02\x11\x03\x11\x00\x3f\x00'
    return b'\xff\xd8' + app1 + sos + scan


def png_chunk(chunk_type: bytes, data: bytes) -> bytes:
    # CRC isn't checked by anything here
    return struct.pack('>I4s', len(data), chunk_type) + data + b'\0\0\0\0'


def png_file(text: bytes = b'Comment\0hello') -> bytes:
    return (b'\x89PNG\r\n\x1a\n'
            + png_chunk(b'IHDR', b'\0\0\0\x01\0\0\0\x01\x08\x00\x00\x00\x00')
            + png_chunk(b'tEXt', text)
            + png_chunk(b'IDAT', b'pixeldata')
            + png_chunk(b'IEND', b''))
