"""
Serialization of a directory's record set (the contents of a depot file).

Depot files are JSON objects keyed by lowercase filename. Very old depots
are plain text with one "name: md5" line per file, from before anything
but the full file MD5 was stored; those still load, as version 0 records.
"""
import json
import re
from pathlib import Path
from typing import Dict

from ..exceptions import DepotFormatError
from ..models import HashRecord

RecordSet = Dict[str, HashRecord]

LEGACY_LINE_RE = re.compile(r'^([^:]+):\s*([0-9a-fA-F]{32})$')


def record_key(path) -> str:
    """The key of a media file's record within its directory's depot."""
    return Path(path).name.lower()


def loads_record_set(text: str, path) -> RecordSet:
    """
    Parses depot file content. If the first non-whitespace character is an
    open curly brace it's JSON, otherwise the legacy line format.
    """
    if text.lstrip().startswith('{'):
        return _loads_json(text, path)
    return _loads_legacy(text, path)


def dumps_record_set(records: RecordSet) -> str:
    data = {key: record.to_json() for key, record in records.items()}
    return json.dumps(data, indent=3, sort_keys=True) + '\n'


def _loads_json(text: str, path) -> RecordSet:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise DepotFormatError(f"Invalid JSON in '{path}': {e}") from e
    if not isinstance(data, dict):
        raise DepotFormatError(f"Expected a JSON object in '{path}'")

    records: RecordSet = {}
    for key, values in data.items():
        if not isinstance(values, dict):
            raise DepotFormatError(f"Expected an object for '{key}' in '{path}'")
        try:
            records[key.lower()] = HashRecord.from_json(key, values)
        except ValueError as e:
            raise DepotFormatError(f"Bad record in '{path}': {e}") from e
    return records


def _loads_legacy(text: str, path) -> RecordSet:
    records: RecordSet = {}
    for line in text.splitlines():
        line = line.rstrip()
        if not line:
            continue
        m = LEGACY_LINE_RE.match(line)
        if not m:
            raise DepotFormatError(f"Unexpected line in '{path}': {line}")
        filename, md5 = m.group(1), m.group(2).lower()
        records[filename.lower()] = HashRecord(
            filename=filename,
            size=None,
            mtime=None,
            version=0,
            content_hash=md5,
            full_hash=md5,
        )
    return records
