import fnmatch
import io
import logging
import os
import zipfile
from typing import Any, List

import orjson

from streamstats.models import RawEvent

logger = logging.getLogger(__name__)

# Security limits
MAX_EXTRACTED_SIZE = 1024 * 1024 * 1024  # 1GB max total extracted size
STREAMING_HISTORY_PATTERN = '*Streaming_History_Audio_*.json'


class ParseError(Exception):
    """Raised when parsing fails."""
    pass


def parse_records(records: List[Any]) -> List[RawEvent]:
    """
    Build RawEvents from already-decoded export objects.

    Every entry is kept, in order. Dropping or deduplicating plays is not
    the parser's job.

    Raises:
        ParseError: If an entry is not a JSON object or has a bad ms_played
    """
    events = []
    for index, entry in enumerate(records):
        if not isinstance(entry, dict):
            raise ParseError(f"Record {index}: expected an object")
        try:
            events.append(RawEvent.from_dict(entry))
        except (TypeError, ValueError) as e:
            raise ParseError(f"Record {index}: {e}")
    return events


def parse_history_json(file_content: bytes) -> List[RawEvent]:
    """
    Parse a single Spotify extended streaming history JSON file.

    Args:
        file_content: Raw bytes of the JSON file

    Returns:
        List of RawEvent objects in file order

    Raises:
        ParseError: If JSON is malformed or data is invalid
    """
    try:
        data = orjson.loads(file_content)
    except orjson.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON: {e}")

    if not isinstance(data, list):
        raise ParseError("Expected JSON array of listening events")

    return parse_records(data)


def parse_history_zip(zip_bytes: bytes) -> List[RawEvent]:
    """
    Parse a Spotify data export ZIP file.

    Args:
        zip_bytes: Raw bytes of the ZIP file

    Returns:
        List of RawEvent objects, in archive order

    Raises:
        ParseError: If ZIP is invalid or contains security issues
    """
    bytes_io = io.BytesIO(zip_bytes)

    if not zipfile.is_zipfile(bytes_io):
        raise ParseError("Invalid ZIP file")

    all_events = []
    parsed_files = 0
    total_extracted = 0

    with zipfile.ZipFile(bytes_io, 'r') as zf:
        for info in zf.infolist():
            # Security: skip directories
            if info.is_dir():
                continue

            # Security: check for path traversal
            filename = info.filename
            if '..' in filename or filename.startswith('/'):
                raise ParseError(f"Invalid file path in ZIP: {filename}")

            # Security: check extracted size limit
            total_extracted += info.file_size
            if total_extracted > MAX_EXTRACTED_SIZE:
                raise ParseError("ZIP file too large when extracted")

            # Nested export folders are common, so match on the basename
            basename = os.path.basename(filename)
            if not fnmatch.fnmatch(basename, STREAMING_HISTORY_PATTERN):
                continue

            try:
                events = parse_history_json(zf.read(info.filename))
            except ParseError as e:
                logger.warning(f"Skipping {filename}: {e}")
                continue

            all_events.extend(events)
            parsed_files += 1

    if parsed_files == 0:
        raise ParseError("No valid streaming history files found in ZIP")

    logger.debug(f"Parsed {len(all_events)} events from {parsed_files} history files")
    return all_events
