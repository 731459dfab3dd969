"""Discovery of delivered CRAM files from an object-store listing.

Every listing record that names a product CRAM and carries its MD5 becomes a
:class:`CandidateFile`.  Files are keyed by their logical name (the file
name, which is derived from run, lane and tag).  When the same logical name
turns up under more than one remote path, typically because a file was
re-delivered into a later date prefix, every copy is demoted into a
:class:`Duplicate` entry and none of them is reported.
"""
from __future__ import annotations

import base64
import binascii
import logging
import re
import subprocess
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, Iterator

from cram_reporter.exceptions import ListingError

log = logging.getLogger(__name__)

# .../<sample>/<run>/<run>[_<lane>[-<lane>...]]#<tag>.cram ... Hash (md5): <base64>
LISTING_RE = re.compile(
    r"(?P<path>\S*/(?P<sample>[^/\s]+)/(?P<run>\d+)/"
    r"(?P<file_name>(?P=run)(?:_(?P<lane>\d+)(?:-\d+)*)?#(?P<tag>\d+)\.cram))(?![\w.])"
    r".*?Hash \(md5\):\s*(?P<md5>[A-Za-z0-9+/]+={0,2})"
)


@dataclass(frozen=True)
class CandidateFile:
    file_name: str
    path: str
    md5: str
    run_id: int
    lane: int | None
    tag_index: int
    sample: str


@dataclass
class Unique:
    candidate: CandidateFile


@dataclass
class Duplicate:
    paths: list[str] = field(default_factory=list)


def decode_md5(value: str) -> str | None:
    """Base64 MD5 as reported by the object store -> lowercase hex, None if invalid."""
    try:
        raw = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None
    if len(raw) != 16:
        return None
    return raw.hex()


def parse_line(line: str) -> CandidateFile | None:
    match = LISTING_RE.search(line)
    if match is None:
        return None
    md5 = decode_md5(match.group("md5"))
    if md5 is None:
        log.debug("Skipping listing line with undecodable MD5: %s", line.rstrip())
        return None
    lane = match.group("lane")
    return CandidateFile(
        file_name=match.group("file_name"),
        path=match.group("path"),
        md5=md5,
        run_id=int(match.group("run")),
        lane=int(lane) if lane is not None else None,
        tag_index=int(match.group("tag")),
        sample=match.group("sample"),
    )


class Discovery:
    """Logical file name -> Unique | Duplicate."""

    def __init__(self) -> None:
        self.entries: dict[str, Unique | Duplicate] = {}

    def add(self, candidate: CandidateFile) -> None:
        entry = self.entries.get(candidate.file_name)
        if entry is None:
            self.entries[candidate.file_name] = Unique(candidate)
        elif isinstance(entry, Unique):
            if entry.candidate.path == candidate.path:
                return
            self.entries[candidate.file_name] = Duplicate([entry.candidate.path, candidate.path])
        elif candidate.path not in entry.paths:
            entry.paths.append(candidate.path)

    @property
    def candidates(self) -> dict[str, CandidateFile]:
        return {
            name: entry.candidate
            for name, entry in self.entries.items()
            if isinstance(entry, Unique)
        }

    @property
    def duplicates(self) -> dict[str, list[str]]:
        return {
            name: list(entry.paths)
            for name, entry in self.entries.items()
            if isinstance(entry, Duplicate)
        }


def fold_listing(lines: Iterable[str]) -> Iterator[str]:
    """Join each object's indented detail lines onto its path line.

    A long listing prints the object path flush left and one indented
    ``Key: value`` line per attribute below it.
    """
    record: list[str] = []
    for line in lines:
        if not line.strip():
            continue
        if line[0].isspace() and record:
            record.append(line.strip())
            continue
        if record:
            yield " ".join(record)
        record = [line.strip()]
    if record:
        yield " ".join(record)


def discover(lines: Iterable[str]) -> Discovery:
    discovery = Discovery()
    for record in fold_listing(lines):
        candidate = parse_line(record)
        if candidate is not None:
            discovery.add(candidate)
    return discovery


def date_prefixes(url: str, days: int, today: date | None = None) -> list[str]:
    """One recursive prefix per day, oldest first, ending with today."""
    today = today or date.today()
    url = url.rstrip("/")
    return [
        f"{url}/{(today - timedelta(days=offset)):%Y%m%d}/**"
        for offset in range(days - 1, -1, -1)
    ]


def build_listing_command(template: list[str], prefixes: list[str]) -> list[str]:
    cmd = []
    for part in template:
        if part == "{prefixes}":
            cmd.extend(prefixes)
        else:
            cmd.append(part)
    return cmd


def run_listing(cmd: list[str]) -> Iterator[str]:
    """Stream the listing command's stdout line by line.

    A non-zero exit status is only logged: the client exits non-zero when any
    prefix is missing, after listing all the prefixes that do exist.
    """
    log.info("Listing remote files: %s", " ".join(cmd))
    try:
        proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, text=True)
    except OSError as e:
        raise ListingError(f"Could not run listing command {cmd[0]!r}: {e}") from e

    with proc:
        yield from proc.stdout

    if proc.returncode != 0:
        log.warning(
            "Listing command exited with status %s; the listing may be incomplete",
            proc.returncode,
        )
