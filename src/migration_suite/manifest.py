"""Container image list parsing and export file naming."""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .constants import ENCODED_SUFFIX
from .errors import ManifestError

_IMAGE_RE = re.compile(
    r"^(?P<project>[A-Za-z0-9._/-]+)/(?P<name>[A-Za-z0-9._-]+):(?P<tag>[A-Za-z0-9.-]+)$"
)


@dataclass(frozen=True)
class ImageRef:
    """One 'project/name:tag' entry from the image list."""

    project: str
    name: str
    tag: str

    @property
    def reference(self) -> str:
        return f"{self.project}/{self.name}:{self.tag}"

    @property
    def export_filename(self) -> str:
        return export_filename(self.name, self.tag)


def parse_image_line(line: str) -> ImageRef:
    match = _IMAGE_RE.match(line)
    if not match:
        raise ValueError(f"expected 'project/name:tag', got '{line}'")
    return ImageRef(match["project"], match["name"], match["tag"])


def parse_image_list(lines: Iterable[str]) -> list[ImageRef]:
    """Parses image list lines, ignoring blanks and '#' comments.

    Raises:
        ManifestError: On the first malformed line, with its line number.
    """
    images = []
    for lineno, raw in enumerate(lines, start=1):
        line = raw.replace("\r", "").strip()
        if not line or line.startswith("#"):
            continue
        try:
            images.append(parse_image_line(line))
        except ValueError as e:
            raise ManifestError(f"Line {lineno}: {e}") from e
    return images


def read_image_list(path: Path) -> list[ImageRef]:
    if not path.is_file():
        raise ManifestError(f"Image list not found: {path}")
    return parse_image_list(path.read_text(encoding="utf-8").splitlines())


def export_filename(name: str, tag: str) -> str:
    """'webapp', 'v1.2.3' -> 'webapp_v1.2.3.tar.gz.txt'"""
    return f"{name}_{tag}{ENCODED_SUFFIX}"


def parse_export_filename(filename: str) -> tuple[str, str]:
    """Splits an export filename back into (name, tag).

    The split happens on the last underscore. Image names may contain
    underscores; tags never do, since the image list rejects them.

    Raises:
        ManifestError: If the filename does not follow the export pattern.
    """
    if not filename.endswith(ENCODED_SUFFIX):
        raise ManifestError(f"Not an image export file: {filename}")
    base = filename[: -len(ENCODED_SUFFIX)]
    name, sep, tag = base.rpartition("_")
    if not sep or not name or not tag:
        raise ManifestError(f"Cannot determine image name and tag from: {filename}")
    return name, tag
