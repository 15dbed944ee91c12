"""
Streaming decoder for bulk catalog artifacts.

Both supported containers are consumed as a lazy, forward-only generator of
``dict`` records; neither ever loads the artifact as a whole:

- Line-delimited: one JSON document per line, blank lines ignored.
- Array: a single top-level ``[ {...}, {...} ]``. ``ArrayObjectScanner`` walks
  the text chunk by chunk and cuts out the exact source text of each
  top-level object, which is then handed to ``json.loads``. Memory is bounded
  by one object plus the chunk being scanned, whatever the file size.

Resumption works by re-scanning from the start and discarding the first
``skip`` records instead of delivering them.
"""

import enum
import json
import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from core.exceptions import DecodeError
from ingestion.extractors.format_detector import DataFormat

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

# Characters that can change scanner state; everything else is skipped in bulk
_STRUCTURAL = re.compile(r'[\[\]{}"\\]')


class ScanState(enum.Enum):
    OUTSIDE = "outside"
    IN_STRING = "in_string"
    ESCAPED = "escaped"


class ArrayObjectScanner:
    """
    Incremental splitter of a JSON array into its top-level object texts.

    State is an explicit ``ScanState`` plus a brace ``depth`` counter, so
    ``feed`` can be called with arbitrarily sized chunks and an object (or an
    escape sequence) may span any number of them. Braces inside strings are
    ignored; an escaped quote does not terminate a string.
    """

    def __init__(self):
        self.started = False
        self.finished = False
        self.state = ScanState.OUTSIDE
        self.depth = 0
        self._pending: List[str] = []

    @property
    def pending_chars(self) -> int:
        """Characters buffered for the object currently being scanned"""
        return sum(len(part) for part in self._pending)

    def feed(self, chunk: str) -> List[str]:
        """Scan ``chunk`` and return the texts of the objects it completes."""
        objects: List[str] = []
        if self.finished or not chunk:
            return objects

        start: Optional[int] = 0 if self.depth > 0 else None
        escaped_at = -1

        if self.state is ScanState.ESCAPED:
            # Escape started at the end of the previous chunk
            self.state = ScanState.IN_STRING
            escaped_at = 0

        for match in _STRUCTURAL.finditer(chunk):
            i = match.start()
            if i == escaped_at:
                continue
            ch = match.group()

            if not self.started:
                if ch == "[":
                    self.started = True
                continue

            if self.state is ScanState.IN_STRING:
                if ch == "\\":
                    if i + 1 < len(chunk):
                        escaped_at = i + 1
                    else:
                        self.state = ScanState.ESCAPED
                elif ch == '"':
                    self.state = ScanState.OUTSIDE
                continue

            if ch == '"':
                self.state = ScanState.IN_STRING
            elif ch == "{":
                if self.depth == 0:
                    start = i
                self.depth += 1
            elif ch == "}":
                if self.depth == 0:
                    raise DecodeError(
                        "Unbalanced '}' in array content",
                        context={"chunk_offset": i}
                    )
                self.depth -= 1
                if self.depth == 0:
                    self._pending.append(chunk[start:i + 1])
                    objects.append("".join(self._pending))
                    self._pending = []
                    start = None
            elif ch == "]" and self.depth == 0:
                self.finished = True
                break

        if self.depth > 0 and start is not None:
            self._pending.append(chunk[start:])

        return objects

    def close(self) -> None:
        """
        Signal end of input.

        Raises:
            DecodeError: If the array never opened, or input stopped inside
                an object, a string or before the closing bracket
        """
        if not self.started:
            raise DecodeError("No JSON array found", context={"state": self.state.value})
        if self.depth > 0 or self.state is not ScanState.OUTSIDE or not self.finished:
            raise DecodeError(
                "Unexpected end of input: array is truncated",
                context={"depth": self.depth, "state": self.state.value}
            )


def _iter_array_texts(path: Path, chunk_size: int) -> Iterator[Tuple[Optional[int], str]]:
    scanner = ArrayObjectScanner()
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                for text in scanner.feed(chunk):
                    yield None, text
                if scanner.finished:
                    break
        scanner.close()
    except DecodeError as e:
        e.context["file_path"] = str(path)
        raise
    except UnicodeDecodeError as e:
        raise DecodeError("Artifact is not valid UTF-8", context={"file_path": str(path)}, original_exception=e)


def _iter_line_texts(path: Path) -> Iterator[Tuple[Optional[int], str]]:
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                yield line_number, line
    except UnicodeDecodeError as e:
        raise DecodeError("Artifact is not valid UTF-8", context={"file_path": str(path)}, original_exception=e)


def _parse(text: str, path: Path, record_index: int, line_number: Optional[int]) -> Dict[str, Any]:
    context = {"file_path": str(path), "record_index": record_index}
    if line_number is not None:
        context["line_number"] = line_number

    try:
        record = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError("Malformed record", context=context, original_exception=e)

    if not isinstance(record, dict):
        context["value_type"] = type(record).__name__
        raise DecodeError("Record is not a JSON object", context=context)

    return record


def iter_records(
    path: Union[str, Path],
    fmt: Union[DataFormat, str],
    skip: int = 0,
    progress_every: int = 20000,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    on_skipped: Optional[Callable[[Dict[str, Any]], None]] = None,
    on_progress: Optional[Callable[[int], None]] = None,
) -> Iterator[Dict[str, Any]]:
    """
    Lazily decode the records of an artifact.

    Args:
        path: Local artifact path
        fmt: Container format, as returned by ``detect_format``
        skip: Number of leading records to decode but not deliver
        progress_every: Log (and report) progress every N scanned records; 0 disables
        chunk_size: Characters read per chunk in array mode
        on_skipped: Receives every skipped record
        on_progress: Receives the scanned-record count at each progress tick

    Yields:
        One ``dict`` per record, starting with record ``skip + 1``

    Raises:
        DecodeError: On the first malformed record; there is no recovery
    """
    path = Path(path)
    fmt = DataFormat(fmt)

    if fmt is DataFormat.ARRAY:
        texts = _iter_array_texts(path, chunk_size)
    else:
        texts = _iter_line_texts(path)

    if skip:
        logger.info(f"[stream] {path.name}: resuming, skipping first {skip:,} records")

    seen = 0
    for line_number, text in texts:
        seen += 1
        try:
            record = _parse(text, path, seen, line_number)
        except DecodeError:
            logger.error(f"[stream] {path.name}: decode failed at record {seen:,}")
            raise

        if seen > skip:
            yield record
        elif on_skipped is not None:
            on_skipped(record)

        if progress_every and seen % progress_every == 0:
            logger.info(f"[stream] {path.name}: scanned {seen:,} records ({max(seen - skip, 0):,} delivered)")
            if on_progress is not None:
                on_progress(seen)

    logger.info(f"[stream] {path.name}: finished, {seen:,} records scanned ({max(seen - skip, 0):,} delivered)")
