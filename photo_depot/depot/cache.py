"""
The depot cache: per-directory hash records kept alongside the media.

Every directory of media files has a depot file (.orphdat) holding a
HashRecord per file. resolve() gets a file's record as cheaply as
possible, recomputing and persisting it only when the stored one is
missing or stale.
"""
import copy
import logging
from dataclasses import fields, replace
from pathlib import Path
from typing import Callable, Iterable, Optional, Tuple

from .. import config
from ..exceptions import InconsistentHashError, KeyCollisionError, ResolutionAborted
from ..hashing.hasher import ContentHasher
from ..models import FileStat, HashRecord
from ..scanning.traversal import PathPredicate, iter_files
from .conflicts import ConflictPolicy, ConflictResolution, skip_conflicts
from .datafile import DepotFile
from .records import RecordSet, record_key

RecordCallback = Callable[[Path, HashRecord], None]


class DirectoryRecordCache:
    """
    Remembers the record set of the last depot read or written. Only one
    directory is held at a time: traversal is grouped by directory, so
    consecutive lookups nearly always hit the same depot.
    """

    def __init__(self):
        self.depot_path: Optional[Path] = None
        self._records: RecordSet = {}

    def holds(self, depot_path: Path) -> bool:
        return self.depot_path == depot_path

    def get(self, key: str) -> Optional[HashRecord]:
        return self._records.get(key)

    def update(self, depot_path: Path, records: RecordSet):
        self.depot_path = depot_path
        self._records = copy.deepcopy(records)

    def clear(self):
        self.depot_path = None
        self._records = {}


class DepotCache:
    def __init__(self,
                 hasher: Optional[ContentHasher] = None,
                 memory: Optional[DirectoryRecordCache] = None,
                 conflict_policy: Optional[ConflictPolicy] = None):
        self.hasher = hasher or ContentHasher()
        self.memory = memory if memory is not None else DirectoryRecordCache()
        self.conflict_policy = conflict_policy or skip_conflicts

    def depot_location(self, path) -> Tuple[Path, str]:
        """The depot path and record key for a media file path."""
        path = Path(path).absolute()
        return path.parent / config.DEPOT_FILENAME, record_key(path)

    # --- Lookup ---

    def resolve(self,
                path,
                add_only: bool = False,
                force_recalc: bool = False,
                candidate: Optional[HashRecord] = None) -> Optional[HashRecord]:
        """
        Gets the up to date record for a file, computing and persisting it
        if no cached one is usable.

        Cache tiers, in order: the caller supplied candidate, the in-memory
        copy of the last depot touched (only if it is this file's depot),
        then the depot file itself.

        add_only: any cached record is accepted without staleness checks.
        force_recalc: skips all the caches; the hash is always computed.

        Returns None if a conflict was skipped.
        """
        depot_path, key = self.depot_location(path)
        stat = self.hasher.stat_file(path)

        if not force_recalc:
            if candidate is not None:
                hit = self.check_cached(path, add_only, 'Caller', candidate, stat)
                if hit:
                    return hit
            if self.memory.holds(depot_path):
                hit = self.check_cached(path, add_only, 'Memory', self.memory.get(key), stat)
                if hit:
                    return hit
            else:
                logging.debug(f"Memory cache miss for '{path}', cache was '{self.memory.depot_path}'")

        with DepotFile(depot_path) as depot:
            records = self._read(depot)
            old = records.get(key)
            if not force_recalc:
                hit = self.check_cached(path, add_only, 'File', old, stat)
                if hit:
                    return hit

            new = HashRecord.from_result(stat, self.hasher.calculate_hash(path))
            if old is not None:
                if old.content_hash == new.content_hash:
                    # Still persist below so size/mtime/version give a cache
                    # hit next time
                    logging.debug(f"Verified MD5 for '{path}'")
                elif old.full_hash == new.full_hash:
                    # Only expected when the content hash calculation changed
                    if self.hasher.is_hash_version_current(path, old.version):
                        raise InconsistentHashError(
                            f"Unexpected state: full MD5 match and content MD5 mismatch for '{path}'\n"
                            f"             version  full_md5                          md5\n"
                            f"  Expected:  {old.version:<7}  {old.full_hash}  {old.content_hash}\n"
                            f"    Actual:  {new.version:<7}  {new.full_hash}  {new.content_hash}")
                    logging.info(
                        f"Content MD5 calculation has changed, upgrading from version "
                        f"{old.version} to {new.version} for '{path}'")
                else:
                    resolution = self.conflict_policy(str(path), old, new)
                    if resolution is ConflictResolution.KEEP_OLD:
                        return old.with_stat(stat)
                    if resolution is ConflictResolution.SKIP:
                        return None
                    if resolution is ConflictResolution.ABORT:
                        raise ResolutionAborted(f"Aborted on MD5 mismatch for '{path}'")

            self._store(depot, records, key, new, path)
            return new

    def check_cached(self,
                     path,
                     add_only: bool,
                     cache_type: str,
                     cached: Optional[HashRecord],
                     stat: FileStat) -> Optional[HashRecord]:
        """
        Returns the cached record (with current stat data) if it can be used
        for the file without computing its hash, else None.
        """
        if cached is None:
            logging.debug(f"{cache_type} cache miss for '{path}', lookup failed")
            return None

        if add_only:
            logging.debug(f"{cache_type} cache hit for '{path}', add-only mode")
        else:
            delta = []
            if not self.hasher.is_hash_version_current(path, cached.version):
                delta.append('version')
            if stat.filename.lower() != cached.filename.lower():
                delta.append('name')
            if cached.size != stat.size:
                delta.append('size')
            if cached.mtime != stat.mtime:
                delta.append('mtime')
            if delta:
                logging.debug(f"{cache_type} cache miss for '{path}', different {'/'.join(delta)}")
                return None
            logging.debug(f"{cache_type} cache hit for '{path}', version/name/size/mtime match")

        return cached.with_stat(stat)

    def find(self,
             is_dir_wanted: PathPredicate,
             is_file_wanted: PathPredicate,
             callback: RecordCallback,
             roots: Iterable[str] = ()):
        """
        For each record in each depot under roots, calls callback(path, record)
        if the file the record is for passes is_file_wanted.
        """
        def is_depot(path, root, filename):
            return filename.lower() == config.DEPOT_FILENAME

        for depot_path, root in iter_files(roots, is_dir_wanted, is_depot):
            with DepotFile(depot_path) as depot:
                records = self._read(depot)
            for record in sorted(records.values(), key=lambda r: r.filename.lower()):
                path = depot_path.parent / record.filename
                if is_file_wanted(path, root, record.filename):
                    callback(path, record)

    # --- Mutation ---

    def write(self, path, record: Optional[HashRecord]) -> Optional[HashRecord]:
        """
        Stores the record for path, or removes it if record is None.
        Returns the previous record if there was one.
        """
        if record is None:
            return self.move(path, None)
        depot_path, key = self.depot_location(path)
        with DepotFile(depot_path) as depot:
            records = self._read(depot)
            old = records.get(key)
            self._store(depot, records, key, record, path)
        return old

    def move(self, source, target=None) -> Optional[HashRecord]:
        """
        Moves the record for source to the depot of target (under target's
        filename), or just removes it if target is None. A source depot
        left empty is deleted. Returns the moved record if there was one.
        """
        source_depot_path, source_key = self.depot_location(source)
        with DepotFile(source_depot_path) as source_depot:
            if not source_depot.exists:
                logging.debug(f"Can't move/remove record for '{source_key}' from missing '{source_depot_path}'")
                return None
            source_records = self._read(source_depot)
            source_record = source_records.get(source_key)
            if source_record is None:
                logging.debug(f"Can't move/remove missing record for '{source_key}' from '{source_depot_path}'")
                return None

            if target is None:
                message = f"Removed depot entry for '{source}'"
            else:
                target = Path(target)
                moved = replace(source_record, filename=target.name)
                target_depot_path, target_key = self.depot_location(target)
                if target_depot_path == source_depot_path:
                    if target_key == source_key:
                        # Only the case of the filename changed
                        self._store(source_depot, source_records, source_key, moved, target)
                        return source_record
                    message, _ = self._move_into(source_records, target_key, moved, source, target)
                else:
                    with DepotFile(target_depot_path) as target_depot:
                        target_records = self._read(target_depot)
                        message, changed = self._move_into(target_records, target_key, moved, source, target)
                        if changed:
                            self._write(target_depot, target_records)

            del source_records[source_key]
            self._write(source_depot, source_records)

        logging.info(message)
        return source_record

    def append(self, target_depot_path, *source_depot_paths) -> int:
        """
        Merges the records of the source depots into the target depot.
        Identical records under the same key are fine; different ones raise
        KeyCollisionError without writing anything. Returns the number of
        records added.
        """
        with DepotFile(target_depot_path) as target_depot:
            target_records = self._read(target_depot)
            old_count = len(target_records)
            for source_depot_path in source_depot_paths:
                with DepotFile(source_depot_path) as source_depot:
                    source_records = self._read(source_depot)
                for key, record in source_records.items():
                    existing = target_records.get(key)
                    if existing is None:
                        target_records[key] = record
                    elif existing != record:
                        raise KeyCollisionError(
                            f"Can't append records from '{source_depot_path}' to '{target_depot_path}' "
                            f"due to key collision for '{key}'")

            added = len(target_records) - old_count
            if added:
                self._write(target_depot, target_records)
                sources = ', '.join(f"'{p}'" for p in source_depot_paths)
                logging.info(f"Added {added} records to '{target_depot_path}' from {sources}")
            else:
                logging.debug(f"Skipping no-op append of depot '{target_depot_path}'")
        return added

    # --- Helpers ---

    def _move_into(self, records: RecordSet, key: str, moved: HashRecord,
                   source, target) -> Tuple[str, bool]:
        """Sets records[key] unless already identical. Returns (message, changed)."""
        existing = records.get(key)
        if existing == moved:
            return (f"Removed depot entry for '{source}' "
                    f"(up to date entry already exists for '{target}')"), False
        records[key] = moved
        message = f"Moved depot entry for '{source}' to '{target}'"
        if existing is not None:
            message += " overwriting existing value"
        return message, True

    def _store(self, depot: DepotFile, records: RecordSet, key: str, record: HashRecord, path):
        """Sets records[key] and rewrites the depot, unless nothing changed."""
        old = records.get(key)
        if old == record:
            logging.debug(f"Skipping no-op update of depot for '{path}'")
            return
        records[key] = record
        self._write(depot, records)
        if old is not None:
            changed = sorted(f.name for f in fields(HashRecord)
                             if getattr(old, f.name) != getattr(record, f.name))
            logging.info(f"Updated depot entry for '{path}': {', '.join(changed)}")
        else:
            logging.info(f"Added depot entry for '{path}'")

    def _read(self, depot: DepotFile) -> RecordSet:
        records = depot.read()
        self.memory.update(depot.path, records)
        return records

    def _write(self, depot: DepotFile, records: RecordSet):
        depot.write(records)
        self.memory.update(depot.path, records)
