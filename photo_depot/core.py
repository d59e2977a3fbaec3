import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from tqdm import tqdm

from .depot.cache import DepotCache
from .duplicates import DupeEntry, find_dupe_groups, populate_group
from .exceptions import DepotFormatError, FileHashError
from .metadata.extract import MetadataExtractor
from .models import HashRecord
from .scanning.traversal import default_is_dir_wanted, default_is_file_wanted, iter_files


@dataclass
class CheckSummary:
    checked: int = 0
    skipped: int = 0
    errors: List[Tuple[Path, str]] = field(default_factory=list)


@dataclass
class VerifyProblem:
    path: Path
    reason: str


class MediaLibrary:
    """The maintenance verbs, run over the files matched by glob patterns."""

    def __init__(self,
                 depot: Optional[DepotCache] = None,
                 extractor: Optional[MetadataExtractor] = None):
        self.depot = depot or DepotCache()
        self.extractor = extractor or MetadataExtractor()

    def check_hash(self,
                   roots: Iterable[str] = (),
                   add_only: bool = False,
                   force_recalc: bool = False) -> CheckSummary:
        """
        Makes sure every media file has an up to date depot record,
        computing hashes where needed.
        """
        paths = [path for path, _ in iter_files(roots)]
        summary = CheckSummary()
        for path in tqdm(paths, desc="Checking hashes"):
            try:
                record = self.depot.resolve(path, add_only=add_only, force_recalc=force_recalc)
            except FileHashError as e:
                logging.error(f"Failed to hash {path}: {e}")
                summary.errors.append((path, str(e)))
                continue
            except DepotFormatError as e:
                logging.error(f"Skipping {path}: {e}")
                summary.errors.append((path, str(e)))
                continue
            if record is None:
                summary.skipped += 1
            else:
                summary.checked += 1
        logging.info(f"Checked {summary.checked} files, skipped {summary.skipped}, "
                     f"{len(summary.errors)} errors")
        return summary

    def verify_hash(self, roots: Iterable[str] = ()) -> List[VerifyProblem]:
        """
        Compares every depot record against the file on disk (size, mtime,
        full hash). Nothing is written.
        """
        entries = self._collect(roots, default_is_file_wanted)
        hasher = self.depot.hasher
        problems = []
        for path, record in tqdm(entries, desc="Verifying hashes"):
            if not path.exists():
                logging.error(f"Missing file: '{path}'")
                problems.append(VerifyProblem(path, "missing file"))
                continue
            try:
                stat = hasher.stat_file(path)
                result = hasher.calculate_hash(path)
            except FileHashError as e:
                logging.error(f"Failed to hash {path}: {e}")
                problems.append(VerifyProblem(path, str(e)))
                continue

            mismatched = []
            if record.size != stat.size:
                mismatched.append('size')
            if record.mtime != stat.mtime:
                mismatched.append('mtime')
            if record.full_hash != result.full_hash:
                mismatched.append('md5')
            if mismatched:
                logging.error(f"MD5 mismatch for '{path}': different {'/'.join(mismatched)}")
                problems.append(VerifyProblem(path, f"different {'/'.join(mismatched)}"))
            else:
                logging.debug(f"Verified MD5 for '{path}'")
        logging.info(f"Verified {len(entries) - len(problems)} of {len(entries)} files")
        return problems

    def prune_depot(self, roots: Iterable[str] = ()) -> int:
        """Removes the records of files that no longer exist. Returns the count."""
        entries = self._collect(roots, lambda path, root, filename: True)
        missing = [path for path, _ in entries if not path.exists()]
        for path in tqdm(missing, desc="Pruning depots"):
            self.depot.move(path, None)
        logging.info(f"Pruned {len(missing)} records")
        return len(missing)

    def find_dupe_files(self, roots: Iterable[str] = ()) -> List[List[DupeEntry]]:
        groups = find_dupe_groups(self.depot, roots)
        for group in tqdm(groups, desc="Comparing duplicates"):
            populate_group(self.depot, group, self.extractor)
        return groups

    def _collect(self, roots: Iterable[str], is_file_wanted) -> List[Tuple[Path, HashRecord]]:
        entries: List[Tuple[Path, HashRecord]] = []
        self.depot.find(default_is_dir_wanted, is_file_wanted,
                        lambda path, record: entries.append((path, record)), roots)
        return entries
