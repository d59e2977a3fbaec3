import os
from datetime import datetime
from functools import cmp_to_key
from pathlib import Path

import pytest

from photo_depot.duplicates import Match, compare_path_with_ext_order, find_dupe_groups, populate_group

from media_builders import jpeg_file

TAKEN = datetime(2021, 6, 1, 9, 30)


class FixedDateExtractor:
    def __init__(self):
        self.paths = []

    def get_date_taken(self, path):
        self.paths.append(path)
        return TAKEN


def make_photo(path: Path, data: bytes) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    os.utime(path, (1600000000, 1600000000))
    return path


@pytest.fixture
def library(tmp_path, depot):
    """
    a/IMG_1.jpg and b/IMG_1.jpg are identical, b/copy.jpg only differs in
    metadata, a/unique.jpg has its own content.
    """
    original = jpeg_file(app_payload=b'Exif\0\0camera')
    files = [
        make_photo(tmp_path / 'a' / 'IMG_1.jpg', original),
        make_photo(tmp_path / 'b' / 'IMG_1.jpg', original),
        make_photo(tmp_path / 'b' / 'copy.jpg', jpeg_file(app_payload=b'Exif\0\0edited by app')),
        make_photo(tmp_path / 'a' / 'unique.jpg', jpeg_file(scan=b'something else entirely')),
    ]
    for f in files:
        depot.resolve(f)
    return tmp_path


@pytest.mark.parametrize("a, b, expected", [
    ('a/x.jpg', 'b/a.jpg', -1),
    ('a/x.jpg', 'a/sub/a.jpg', -1),
    ('A/y.jpg', 'a/x.jpg', 1),
    ('a/x.jpg', 'a/x.heic', 1),
    ('a/x.cr2', 'a/x.jpg', -1),
    ('a/x.jpg', 'a/x.png', -1),
    ('a/x.jpg', 'a/x.jpg', 0),
])
def test_compare_path_with_ext_order(a, b, expected):
    assert compare_path_with_ext_order(Path(a), Path(b)) == expected


def test_reverse_ext_order():
    assert compare_path_with_ext_order(Path('x.heic'), Path('x.jpg'), True) == 1
    assert compare_path_with_ext_order(Path('x.jpg'), Path('x.png'), True) == 1
    names = sorted([Path('x.jpg'), Path('x.heic'), Path('x.png')],
                   key=cmp_to_key(lambda p, q: compare_path_with_ext_order(p, q)))
    assert [n.suffix for n in names] == ['.heic', '.jpg', '.png']


def test_find_dupe_groups(library, depot):
    groups = find_dupe_groups(depot, [str(library)])
    assert len(groups) == 1
    assert [e.path.relative_to(library).as_posix() for e in groups[0]] == [
        'a/IMG_1.jpg', 'b/copy.jpg', 'b/IMG_1.jpg',
    ]
    assert all(e.cached_record is not None for e in groups[0])
    assert all(e.record is None for e in groups[0])


def test_populate_group_match_matrix(library, depot, hasher):
    group = find_dupe_groups(depot, [str(library)])[0]
    hashed = len(hasher.calls)
    extractor = FixedDateExtractor()

    populate_group(depot, group, extractor)

    # Cached records were fresh, nothing rehashed
    assert len(hasher.calls) == hashed
    assert [e.exists for e in group] == [True, True, True]
    assert [e.date_taken for e in group] == [TAKEN] * 3
    assert extractor.paths == [e.path for e in group]
    assert [e.matches for e in group] == [
        [Match.FULL, Match.CONTENT, Match.FULL],
        [Match.CONTENT, Match.FULL, Match.CONTENT],
        [Match.FULL, Match.CONTENT, Match.FULL],
    ]


def test_populate_group_with_missing_file(library, depot):
    group = find_dupe_groups(depot, [str(library)])[0]
    (library / 'b' / 'copy.jpg').unlink()

    populate_group(depot, group, FixedDateExtractor())

    assert [e.exists for e in group] == [True, False, True]
    assert group[1].record is None
    assert group[1].date_taken is None
    assert group[0].matches == [Match.FULL, Match.UNKNOWN, Match.FULL]
    assert group[1].matches == [Match.UNKNOWN, Match.FULL, Match.UNKNOWN]


def test_no_duplicates(tmp_path, depot):
    make_photo(tmp_path / 'one.jpg', jpeg_file(scan=b'one'))
    make_photo(tmp_path / 'two.jpg', jpeg_file(scan=b'two'))
    depot.resolve(tmp_path / 'one.jpg')
    depot.resolve(tmp_path / 'two.jpg')
    assert find_dupe_groups(depot, [str(tmp_path)]) == []
