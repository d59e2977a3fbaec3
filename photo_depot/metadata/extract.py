import json
import logging
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import exifread
from pymediainfo import MediaInfo

from .. import config
from ..hashing.strategies import media_extension

# EXIF tags holding the capture time, best first
EXIF_DATE_TAGS = ['EXIF DateTimeOriginal', 'EXIF DateTimeDigitized', 'Image DateTime']

# exiftool tags for video capture time, best first
EXIFTOOL_DATE_TAGS = ['DateTimeOriginal', 'CreationDate', 'CreateDate', 'MediaCreateDate']


class MetadataExtractor:
    """
    Reads the date a photo or video was taken, for display alongside
    duplicates.

    Strategies:
      - Images: Uses 'exifread' (fast, Python-native).
      - Video: Uses 'pymediainfo' (fast wrapper) -> falls back to 'exiftool' (robust).
    """

    def get_date_taken(self, path) -> Optional[datetime]:
        path = Path(path)
        if media_extension(path) in config.VIDEO_EXTS:
            return self._video_date_taken(path)
        return self._image_date_taken(path)

    def _image_date_taken(self, path: Path) -> Optional[datetime]:
        try:
            with path.open('rb') as f:
                # details=False speeds up processing significantly
                tags = exifread.process_file(f, details=False)
        except Exception as e:
            logging.warning(f"ExifRead failed for {path}: {e}")
            return None

        for tag in EXIF_DATE_TAGS:
            if tag in tags:
                dt = self._parse_flexible_date(str(tags[tag]))
                if dt:
                    return dt
        logging.debug(f"No EXIF date in {path}")
        return None

    def _video_date_taken(self, path: Path) -> Optional[datetime]:
        # Strategy 1: Try MediaInfo (Fastest, usually sufficient)
        try:
            dt = self._mediainfo_date(path)
            if dt:
                return dt
        except Exception as e:
            logging.debug(f"MediaInfo failed for {path}: {e}")

        # Strategy 2: Try ExifTool (Robust fallback, requires system install)
        try:
            return self._exiftool_date(path)
        except (OSError, subprocess.CalledProcessError, ValueError) as e:
            # Only log at debug level to avoid spamming console if tool is missing
            logging.debug(f"ExifTool failed for {path}: {e}")
        return None

    # --- Internal Extraction Helpers ---

    def _mediainfo_date(self, path: Path) -> Optional[datetime]:
        mi = MediaInfo.parse(str(path))
        for track in mi.tracks:
            if track.track_type != "General":
                continue
            # Priority: Original -> Encoded -> Tagged
            for field in ("recorded_date", "encoded_date", "tagged_date"):
                val = getattr(track, field, None)
                if val:
                    dt = self._parse_flexible_date(val)
                    if dt:
                        return dt
        return None

    def _exiftool_date(self, path: Path) -> Optional[datetime]:
        """
        Wraps the 'exiftool' command line utility.
        Must be installed and on the system PATH.
        """
        # -j = JSON output
        cmd = ["exiftool", "-j", str(path)]
        out = subprocess.check_output(cmd, stderr=subprocess.DEVNULL, text=True)
        data_list = json.loads(out)
        if not data_list:
            return None

        tags: Dict[str, Any] = data_list[0]
        for field in EXIFTOOL_DATE_TAGS:
            if tags.get(field):
                dt = self._parse_flexible_date(str(tags[field]))
                if dt:
                    return dt
        return None

    def _parse_flexible_date(self, dt_str: str) -> Optional[datetime]:
        """
        Handles various date formats (ISO, UTC suffixes, Exiftool quirks).
        Returns a naive datetime object.
        """
        if not dt_str:
            return None

        clean = dt_str.replace("UTC", "").strip()

        # 1. Try ISO format (e.g. 2020-01-01T12:00:00)
        try:
            return datetime.fromisoformat(clean).replace(tzinfo=None)
        except ValueError:
            pass

        # 2. Try Standard EXIF style "YYYY:MM:DD HH:MM:SS"
        try:
            clean_exif = clean.replace(":", "-", 2)
            # Drop sub-seconds and zone offsets which strptime hates
            clean_exif = clean_exif[:19]
            return datetime.strptime(clean_exif, "%Y-%m-%d %H:%M:%S")
        except ValueError:
            pass

        return None
