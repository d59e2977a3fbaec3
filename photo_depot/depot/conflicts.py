"""
What to do when a freshly computed hash disagrees with the stored one.
"""
import logging
from enum import Enum
from typing import Callable

from ..models import HashRecord


class ConflictResolution(Enum):
    KEEP_OLD = 'keep_old'   # keep the stored hashes (current stat data)
    KEEP_NEW = 'keep_new'   # replace the stored record
    SKIP = 'skip'           # leave the depot alone, return nothing
    ABORT = 'abort'         # stop the whole process


ConflictPolicy = Callable[[str, HashRecord, HashRecord], ConflictResolution]


def skip_conflicts(path, old: HashRecord, new: HashRecord) -> ConflictResolution:
    """Non-interactive policy: report and leave the stored record alone."""
    logging.warning(
        f"MD5 mismatch for '{path}': stored {old.full_hash} (v{old.version}), "
        f"computed {new.full_hash} (v{new.version}); skipping")
    return ConflictResolution.SKIP
