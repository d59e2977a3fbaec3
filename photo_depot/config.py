"""
Configuration constants for photo depot.
"""
import re

# --- Reserved Names ---
# Per-directory hash database; one per folder of media files
DEPOT_FILENAME = '.orphdat'
# Subdirectory holding the trash for its parent
TRASH_DIR_NAME = '.orphtrash'
# Any folder containing this file is skipped during traversal (opt out)
IGNORE_FILENAME = '.orphignore'

# --- File Type Definitions ---
HEIF_EXTS = {'.heic', '.heif', '.avif'}
MP4_EXTS = {'.mp4', '.m4v'}
QUICKTIME_EXTS = {'.mov'}
JPEG_EXTS = {'.jpg', '.jpeg'}
PNG_EXTS = {'.png'}
RAW_EXTS = {'.crw', '.cr2', '.cr3', '.nef', '.raf'}
TIFF_EXTS = {'.tif', '.tiff'}
OTHER_MEDIA_EXTS = {'.avi', '.m2ts', '.mts', '.mp3', '.mpg', '.psb', '.psd'}

MEDIA_EXTS = (HEIF_EXTS | MP4_EXTS | QUICKTIME_EXTS | JPEG_EXTS | PNG_EXTS
              | RAW_EXTS | TIFF_EXTS | OTHER_MEDIA_EXTS)

VIDEO_EXTS = MP4_EXTS | QUICKTIME_EXTS | {'.avi', '.m2ts', '.mts', '.mpg'}

# Display/processing order within a group of related files. Primary files
# (RAW, HEIC, MP4) sort before their sidecars (JPEG previews etc).
EXT_ORDER = {ext: -1 for ext in RAW_EXTS | {'.heic', '.mp4'}}

# Backups like "IMG_0001.jpg_bak", "IMG_0001.jpg.original" or
# "IMG_0001.jpg_20200101T120000Z~" are still classified by the real extension
BACKUP_SUFFIX = r'[._](?i:bak|original|\d{8}T\d{6}Z~)\d*'
BACKUP_SUFFIX_RE = re.compile(BACKUP_SUFFIX + r'$')

MEDIA_FILENAME_RE = re.compile(
    r'\.(?i:' + '|'.join(sorted(e.lstrip('.') for e in MEDIA_EXTS)) + r')'
    + r'(?:' + BACKUP_SUFFIX + r')?$'
)

# --- Hashing ---
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading

# !!! Bump whenever the extents selected for any file type change, and
# raise that type's floor in hashing/strategies.py to the new value.
# 8: primary item hashing for .heif/.avif, the mif1/heix/msf1/avif brands,
#    and .mp4/.m4v files carrying a primary item
CURRENT_HASH_VERSION = 8
