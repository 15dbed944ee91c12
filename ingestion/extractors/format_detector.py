"""
Classify a downloaded artifact as a JSON array or JSON Lines from its prefix.
"""

import enum
import logging
from pathlib import Path
from typing import Union

from core.exceptions import UnknownFormatError

logger = logging.getLogger(__name__)

PREFIX_BYTES = 4096


class DataFormat(str, enum.Enum):
    """Container formats the streaming decoder understands"""
    ARRAY = "array"
    LINE_DELIMITED = "line-delimited"


def detect_format(path: Union[str, Path]) -> DataFormat:
    """
    Peek at the first few KB of ``path``.

    Only the first non-whitespace character is inspected: ``[`` means a
    bracketed array, ``{`` means one object per line. Malformed content past
    that character is caught later, by the decoder.

    Raises:
        UnknownFormatError: For any other leading character or an empty file
    """
    with open(path, "rb") as f:
        prefix = f.read(PREFIX_BYTES)

    text = prefix.decode("utf-8", errors="ignore").lstrip("\ufeff").lstrip()
    first_char = text[:1]

    if first_char == "[":
        fmt = DataFormat.ARRAY
    elif first_char == "{":
        fmt = DataFormat.LINE_DELIMITED
    else:
        raise UnknownFormatError(
            f"Unknown bulk file format for {path}",
            context={"file_path": str(path), "first_char": repr(first_char)}
        )

    logger.debug(f"Detected {fmt.value} format for {path}")
    return fmt
