import builtins
import os
from datetime import datetime

import pytest

from photo_depot import main as cli
from photo_depot.core import MediaLibrary
from photo_depot.depot.cache import DepotCache
from photo_depot.depot.conflicts import ConflictResolution
from photo_depot.depot.datafile import DepotFile
from photo_depot.duplicates import Match
from photo_depot.exceptions import FileHashError
from photo_depot.metadata.extract import MetadataExtractor
from photo_depot.models import HashRecord

from media_builders import heif_file, jpeg_file


class NoDateExtractor:
    def get_date_taken(self, path):
        return None


def make_photo(path, data, mtime=1600000000):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    os.utime(path, (mtime, mtime))
    return path


def read_depot(directory):
    with DepotFile(directory / '.orphdat') as depot:
        return depot.read()


@pytest.fixture
def photos(tmp_path):
    make_photo(tmp_path / 'IMG_0001.jpg', jpeg_file())
    make_photo(tmp_path / 'IMG_0002.HEIC', heif_file())
    make_photo(tmp_path / '2020' / 'clip.mov', b'not really a movie')
    (tmp_path / 'notes.txt').write_text('not media')
    return tmp_path


@pytest.fixture
def library(depot):
    return MediaLibrary(depot, NoDateExtractor())


def test_check_hash(photos, library, hasher):
    summary = library.check_hash([str(photos)])
    assert (summary.checked, summary.skipped, summary.errors) == (3, 0, [])
    assert len(hasher.calls) == 3
    assert set(read_depot(photos)) == {'img_0001.jpg', 'img_0002.heic'}
    assert set(read_depot(photos / '2020')) == {'clip.mov'}

    summary = library.check_hash([str(photos)])
    assert summary.checked == 3
    assert len(hasher.calls) == 3

    library.check_hash([str(photos)], force_recalc=True)
    assert len(hasher.calls) == 6


def test_check_hash_records_errors(photos, library, hasher, monkeypatch):
    def boom(path):
        raise FileHashError(f"Failed to hash '{path}': unreadable")

    monkeypatch.setattr(hasher, 'calculate_hash', boom)
    summary = library.check_hash([str(photos / '2020')])
    assert summary.checked == 0
    assert [p.name for p, _ in summary.errors] == ['clip.mov']


def test_check_hash_continues_past_broken_depot(tmp_path, library):
    make_photo(tmp_path / 'a' / 'x.jpg', jpeg_file())
    make_photo(tmp_path / 'b' / 'y.jpg', jpeg_file())
    (tmp_path / 'a' / '.orphdat').write_text("this is not a depot\n")

    summary = library.check_hash([str(tmp_path)])
    assert summary.checked == 1
    assert [p.name for p, _ in summary.errors] == ['x.jpg']
    assert set(read_depot(tmp_path / 'b')) == {'y.jpg'}
    assert (tmp_path / 'a' / '.orphdat').read_text() == "this is not a depot\n"

    assert cli.main(['check-hash', str(tmp_path)]) == 1


def test_check_hash_counts_skipped_conflicts(photos, library):
    library.check_hash([str(photos)])
    make_photo(photos / 'IMG_0001.jpg', jpeg_file(scan=b'new pixels'))
    summary = library.check_hash([str(photos)])
    assert (summary.checked, summary.skipped) == (2, 1)


def test_verify_hash(photos, library, depot):
    library.check_hash([str(photos)])
    assert library.verify_hash([str(photos)]) == []

    make_photo(photos / 'IMG_0001.jpg', jpeg_file(scan=b'changed'))
    (photos / '2020' / 'clip.mov').unlink()
    before = read_depot(photos)

    problems = library.verify_hash([str(photos)])
    assert [(p.path.name, p.reason) for p in problems] == [
        ('IMG_0001.jpg', 'different size/md5'),
        ('clip.mov', 'missing file'),
    ]
    # Read only
    assert read_depot(photos) == before


def test_prune_depot(photos, library):
    library.check_hash([str(photos)])
    (photos / 'IMG_0002.HEIC').unlink()
    (photos / '2020' / 'clip.mov').unlink()

    assert library.prune_depot([str(photos)]) == 2
    assert set(read_depot(photos)) == {'img_0001.jpg'}
    assert not (photos / '2020' / '.orphdat').exists()
    assert library.prune_depot([str(photos)]) == 0


def test_find_dupe_files(tmp_path, library):
    make_photo(tmp_path / 'a' / 'IMG_0001.jpg', jpeg_file(app_payload=b'Exif\0\0one'))
    make_photo(tmp_path / 'b' / 'IMG_0001.jpg', jpeg_file(app_payload=b'Exif\0\0two'))
    library.check_hash([str(tmp_path)])

    groups = library.find_dupe_files([str(tmp_path)])
    assert len(groups) == 1
    assert groups[0][0].matches == [Match.FULL, Match.CONTENT]


def test_cli_check_and_verify(photos, monkeypatch, capsys):
    monkeypatch.chdir(photos)
    assert cli.main(['check-hash']) == 0
    assert (photos / '.orphdat').exists()
    assert cli.main(['verify-hash', '*.jpg', '2020']) == 0

    (photos / 'IMG_0001.jpg').unlink()
    assert cli.main(['verify-hash']) == 1
    assert "ERROR: missing file:" in capsys.readouterr().out

    assert cli.main(['prune-depot']) == 0
    assert cli.main(['verify-hash']) == 0


def test_cli_find_dupe_files(tmp_path, monkeypatch, capsys):
    taken = datetime(2022, 3, 4, 5, 6, 7)
    monkeypatch.setattr(MetadataExtractor, "get_date_taken", lambda self, p: taken)
    make_photo(tmp_path / 'x.jpg', jpeg_file())
    make_photo(tmp_path / 'y.jpg', jpeg_file())
    make_photo(tmp_path / 'z.jpg', jpeg_file(scan=b'different'))
    assert cli.main(['check-hash', str(tmp_path)]) == 0
    capsys.readouterr()

    assert cli.main(['find-dupe-files', str(tmp_path)]) == 0
    out = capsys.readouterr().out.splitlines()
    assert out[0] == "[1/1]"
    assert out[1] == f"  0. [FF] 2022-03-04 05:06:07  {tmp_path / 'x.jpg'}"
    assert out[2] == f"  1. [FF] 2022-03-04 05:06:07  {tmp_path / 'y.jpg'}"
    assert len(out) == 3


@pytest.mark.parametrize("answers, expected", [
    (['o'], ConflictResolution.KEEP_NEW),
    (['I'], ConflictResolution.KEEP_OLD),
    (['what', ' s '], ConflictResolution.SKIP),
    (['q'], ConflictResolution.ABORT),
])
def test_console_conflict_prompt(answers, expected, monkeypatch, capsys):
    replies = iter(answers)
    monkeypatch.setattr(builtins, 'input', lambda prompt: next(replies))
    old = HashRecord('a.jpg', 1, 2, 7, 'a' * 32, 'b' * 32)
    new = HashRecord('a.jpg', 3, 4, 7, 'c' * 32, 'd' * 32)

    assert cli.console_conflict_prompt('a.jpg', old, new) is expected
    out = capsys.readouterr().out
    assert "MISMATCH OF MD5 for 'a.jpg'" in out
    assert 'b' * 32 in out and 'd' * 32 in out


def test_cli_quit_on_conflict(photos, monkeypatch):
    assert cli.main(['check-hash', str(photos)]) == 0
    make_photo(photos / 'IMG_0001.jpg', jpeg_file(scan=b'new pixels'))
    monkeypatch.setattr(builtins, 'input', lambda prompt: 'q')
    before = (photos / '.orphdat').read_bytes()

    assert cli.main(['check-hash', str(photos)]) == 0
    assert (photos / '.orphdat').read_bytes() == before


def test_cli_inconsistent_hash_fails(photos):
    p = photos / 'IMG_0001.jpg'
    full = DepotCache().hasher.calculate_hash(p).full_hash
    DepotCache().write(p, HashRecord('IMG_0001.jpg', 1, 1, 7, 'c' * 32, full))
    assert cli.main(['check-hash', str(photos)]) == 1


def test_parse_args():
    args = cli.parse_args(['-v', 'check-hash', '--add-only', 'a', 'b*'])
    assert args.verbose
    assert args.verb == 'check-hash'
    assert args.add_only and not args.force_recalc
    assert args.patterns == ['a', 'b*']
    assert cli.parse_args(['find-dupe-files']).patterns == []
    with pytest.raises(SystemExit):
        cli.parse_args([])
