"""Fixed-size part planning for multipart transfers.

Files are split into contiguous byte ranges of a configured size; the
final part may be shorter. Part numbers start at 1.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class Part:
    """A byte range of a file, tagged with its sequence number."""

    number: int
    offset: int
    length: int

    @property
    def end(self) -> int:
        """Offset one past the last byte of this part."""
        return self.offset + self.length


def plan_parts(file_size: int, part_size: int) -> list[Part]:
    """Split a file size into sequence-numbered parts.

    Args:
        file_size: Total size in bytes.
        part_size: Maximum size of each part in bytes.

    Returns:
        Parts in ascending order. Empty for an empty file.

    Raises:
        ValueError: If part_size is not positive.
    """
    if part_size <= 0:
        raise ValueError(f"part_size must be positive, got {part_size}")

    parts = []
    offset = 0
    number = 1
    while offset < file_size:
        length = min(part_size, file_size - offset)
        parts.append(Part(number=number, offset=offset, length=length))
        offset += length
        number += 1
    return parts


def read_part(path: Path, part: Part) -> bytes:
    """Read the bytes of one part from disk.

    Raises:
        OSError: If the file cannot be read.
    """
    with open(path, "rb") as f:
        f.seek(part.offset)
        return f.read(part.length)


def iter_parts(path: Path, part_size: int) -> Iterator[tuple[Part, bytes]]:
    """Yield each planned part of a file with its data."""
    path = Path(path)
    for part in plan_parts(path.stat().st_size, part_size):
        yield part, read_part(path, part)
