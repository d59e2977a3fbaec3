import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .core import MediaLibrary
from .depot.cache import DepotCache
from .depot.conflicts import ConflictResolution
from .duplicates import DupeEntry, Match
from .exceptions import InconsistentHashError, ResolutionAborted
from .models import HashRecord

MATCH_SYMBOLS = {Match.FULL: 'F', Match.CONTENT: 'c', Match.NONE: '-', Match.UNKNOWN: '?'}


def setup_logging(verbose: bool, log_file: Optional[Path] = None):
    """Sets up logging to the console and optionally a file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )

    # Silence chatty libraries
    logging.getLogger("exifread").setLevel(logging.ERROR)


def console_conflict_prompt(path, old: HashRecord, new: HashRecord) -> ConflictResolution:
    """Asks the user what to do about a stored hash that no longer matches."""
    print(f"MISMATCH OF MD5 for '{path}'")
    print("Ver  Full MD5                          Content MD5                       Modified    Size")
    for r in (old, new):
        print(f"{r.version:3d}  {r.full_hash:<32}  {r.content_hash:<32}  {r.mtime!s:<10}  {r.size}")
    print("[I]gnore new calculated hash and use cached value\n"
          "[O]verwrite cached value with new data\n"
          "[S]kip using either conflicting value\n"
          "[Q]uit")
    choices = {
        'i': ConflictResolution.KEEP_OLD,
        'o': ConflictResolution.KEEP_NEW,
        's': ConflictResolution.SKIP,
        'q': ConflictResolution.ABORT,
    }
    while True:
        answer = input("i/o/s/q? ").strip().lower()
        if answer in choices:
            return choices[answer]
        logging.warning(f"Unrecognized command: '{answer}'")


def print_dupe_groups(groups: List[List[DupeEntry]]):
    for n, group in enumerate(groups, 1):
        print(f"[{n}/{len(groups)}]")
        for i, entry in enumerate(group):
            matches = ''.join(MATCH_SYMBOLS[m] for m in entry.matches)
            taken = entry.date_taken.isoformat(sep=' ') if entry.date_taken else '-'
            state = '' if entry.exists else ' (missing)'
            print(f"  {i}. [{matches}] {taken}  {entry.path}{state}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        prog="photo-depot",
        description="Photo Depot: content hashes and duplicate checks for a media library")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--log-file", type=Path, default=None, help="Also write the log to this file")

    sub = p.add_subparsers(dest="verb", required=True)

    check = sub.add_parser("check-hash", help="Add or refresh depot records for media files")
    check.add_argument("--add-only", action="store_true",
                       help="Only hash files without a record; don't verify existing ones")
    check.add_argument("--force-recalc", action="store_true",
                       help="Recompute every hash, ignoring stored records")

    sub.add_parser("verify-hash", help="Check files still match their depot records (read only)")
    sub.add_parser("prune-depot", help="Remove depot records for files that no longer exist")
    sub.add_parser("find-dupe-files", help="List groups of files with the same content")

    for parser in sub.choices.values():
        parser.add_argument("patterns", nargs="*", help="Glob patterns (default: current directory)")

    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    library = MediaLibrary(DepotCache(conflict_policy=console_conflict_prompt))

    try:
        if args.verb == "check-hash":
            summary = library.check_hash(args.patterns, args.add_only, args.force_recalc)
            return 1 if summary.errors else 0
        if args.verb == "verify-hash":
            problems = library.verify_hash(args.patterns)
            for problem in problems:
                print(f"ERROR: {problem.reason}: '{problem.path}'")
            return 1 if problems else 0
        if args.verb == "prune-depot":
            library.prune_depot(args.patterns)
            return 0
        if args.verb == "find-dupe-files":
            print_dupe_groups(library.find_dupe_files(args.patterns))
            return 0
    except ResolutionAborted as e:
        logging.warning(str(e))
        return 0
    except InconsistentHashError:
        logging.exception("Fatal error: hash calculation is inconsistent.")
        return 1
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        return 1
    return 1


if __name__ == "__main__":
    sys.exit(main())
