import glob
import logging
import os
from pathlib import Path
from typing import Callable, Iterable, Iterator, Tuple

from .. import config

# (path, root, filename) -> wanted?
PathPredicate = Callable[[Path, Path, str], bool]


def default_is_dir_wanted(path: Path, root: Path, filename: str) -> bool:
    return filename.lower() != config.TRASH_DIR_NAME


def default_is_file_wanted(path: Path, root: Path, filename: str) -> bool:
    return (filename.lower() != config.DEPOT_FILENAME
            and config.MEDIA_FILENAME_RE.search(filename) is not None)


def expand_roots(patterns: Iterable[str]) -> list[Path]:
    """Expands glob patterns, defaulting to the current directory."""
    patterns = list(patterns)
    if not patterns:
        return [Path('.')]
    roots = []
    for pattern in patterns:
        matches = sorted(glob.glob(pattern))
        if not matches:
            logging.warning(f"No match for '{pattern}'")
        roots.extend(Path(m) for m in matches)
    return roots


def iter_files(patterns: Iterable[str],
               is_dir_wanted: PathPredicate = default_is_dir_wanted,
               is_file_wanted: PathPredicate = default_is_file_wanted) -> Iterator[Tuple[Path, Path]]:
    """
    Yields (path, root) for every wanted file under the roots matched by
    patterns. A directory's files come before its subdirectories, so all
    of one directory is visited together.

    Never looks inside .git or any directory containing an .orphignore
    file (opt out), and skips "._*" AppleDouble files.

    Overlapping patterns can yield a file more than once.
    """
    for root in expand_roots(patterns):
        if root.is_dir():
            if _is_dir_skipped(root) or not is_dir_wanted(root, root, root.name):
                continue
            yield from _walk(root, is_dir_wanted, is_file_wanted)
        elif root.is_file():
            if not _is_file_skipped(root.name) and is_file_wanted(root, root, root.name):
                yield root, root


def _walk(root: Path, is_dir_wanted: PathPredicate, is_file_wanted: PathPredicate) -> Iterator[Tuple[Path, Path]]:
    """Depth-first walker using os.scandir for speed."""
    stack = [root]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = list(it)
        except OSError as e:
            logging.warning(f"Can't read directory {current}: {e}")
            continue

        # Sort for stable traversal order
        entries.sort(key=lambda e: e.name.lower())

        dirs = []
        for e in entries:
            path = Path(e.path)
            if e.is_dir(follow_symlinks=False):
                if not _is_dir_skipped(path) and is_dir_wanted(path, root, e.name):
                    dirs.append(path)
            elif e.is_file(follow_symlinks=False):
                if not _is_file_skipped(e.name) and is_file_wanted(path, root, e.name):
                    yield path, root

        # Push dirs to stack (reversed so we process A before Z)
        for d in reversed(dirs):
            stack.append(d)


def _is_dir_skipped(path: Path) -> bool:
    return path.name.lower() == '.git' or (path / config.IGNORE_FILENAME).exists()


def _is_file_skipped(filename: str) -> bool:
    # MacOS puts alternate stream data in "._" prefixed files when copying
    # to volumes that don't support them
    return filename.startswith('._') or filename.lower() == config.IGNORE_FILENAME
