"""
Duplicate detection over depot records.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from functools import cmp_to_key
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from . import config
from .depot.cache import DepotCache
from .exceptions import FileHashError
from .metadata.extract import MetadataExtractor
from .models import HashRecord
from .scanning.traversal import default_is_dir_wanted, default_is_file_wanted


class Match(Enum):
    FULL = 'full'           # every byte
    CONTENT = 'content'     # payload only, metadata differs
    NONE = 'none'
    UNKNOWN = 'unknown'     # missing hash data for one side


@dataclass
class DupeEntry:
    path: Path
    cached_record: Optional[HashRecord] = None
    # Filled in by populate_group
    exists: bool = False
    record: Optional[HashRecord] = None
    date_taken: Optional[datetime] = None
    matches: List[Match] = field(default_factory=list)


def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def compare_path_with_ext_order(a: Path, b: Path, reverse_ext_order: bool = False) -> int:
    """
    Orders by directory (ancestors first, case-insensitive), then base name,
    then extension order so primary files (RAW, HEIC, MP4) precede their
    sidecars.
    """
    dirs_a = [p.lower() for p in a.parent.parts]
    dirs_b = [p.lower() for p in b.parent.parts]
    c = _cmp(dirs_a, dirs_b)
    if c:
        return c

    c = _cmp(a.stem.lower(), b.stem.lower())
    if c:
        return c

    direction = -1 if reverse_ext_order else 1
    ext_a, ext_b = a.suffix.lower(), b.suffix.lower()
    c = _cmp(config.EXT_ORDER.get(ext_a, 0), config.EXT_ORDER.get(ext_b, 0))
    if c:
        return direction * c
    return direction * _cmp(ext_a, ext_b)


def find_dupe_groups(depot: DepotCache, roots: Iterable[str] = ()) -> List[List[DupeEntry]]:
    """
    Groups the depot records under roots by content hash, keeping only
    groups with more than one file, most important first.
    """
    by_hash: Dict[str, List[DupeEntry]] = defaultdict(list)

    def collect(path: Path, record: HashRecord):
        by_hash[record.content_hash].append(DupeEntry(path, cached_record=record))

    depot.find(default_is_dir_wanted, default_is_file_wanted, collect, roots)

    file_count = sum(len(entries) for entries in by_hash.values())
    entry_key = cmp_to_key(lambda x, y: compare_path_with_ext_order(x.path, y.path))
    groups = [sorted(entries, key=entry_key) for entries in by_hash.values() if len(entries) > 1]

    # This is the order groups get processed, so extension order matters here too
    groups.sort(key=cmp_to_key(lambda x, y: compare_path_with_ext_order(x[0].path, y[0].path, True)))
    logging.info(f"Found {file_count} files and {len(groups)} groups of duplicate files")
    return groups


def populate_group(depot: DepotCache, group: List[DupeEntry], extractor: MetadataExtractor):
    """
    Refreshes each entry's record (verifying the cached one is still up to
    date), reads its date taken, and fills in the pairwise match matrix.
    """
    for entry in group:
        candidate = entry.record or entry.cached_record
        entry.exists = entry.path.exists()
        entry.record = None
        entry.date_taken = None
        if not entry.exists:
            continue
        try:
            entry.record = depot.resolve(entry.path, candidate=candidate)
        except FileHashError as e:
            logging.warning(f"Couldn't hash {entry.path}: {e}")
        entry.date_taken = extractor.get_date_taken(entry.path)

    for entry in group:
        entry.matches = [Match.UNKNOWN] * len(group)
    for i, a in enumerate(group):
        a.matches[i] = Match.FULL
        for j in range(i + 1, len(group)):
            b = group[j]
            match = _match(a.record, b.record)
            a.matches[j] = match
            b.matches[i] = match


def _match(a: Optional[HashRecord], b: Optional[HashRecord]) -> Match:
    if a is None or b is None:
        return Match.UNKNOWN
    if a.full_hash == b.full_hash:
        return Match.FULL
    if a.content_hash == b.content_hash:
        return Match.CONTENT
    return Match.NONE
