"""Manifest building and upload."""
from __future__ import annotations

import csv
import io
import logging
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Iterable

from cram_reporter.exceptions import UploadError
from cram_reporter.validate import EnrichedFile

log = logging.getLogger(__name__)


def manifest_rows(files: Iterable[EnrichedFile]) -> list[list[str]]:
    return [
        [f.sample, f.plate_barcode, f.library_id, f.path, f.md5]
        for f in sorted(files, key=lambda f: f.file_name)
    ]


def build_manifest(files: Iterable[EnrichedFile], header: list[str]) -> str:
    """Tab-separated manifest, sorted by file name.  Always has the header."""
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter="\t", lineterminator="\n")
    writer.writerow(header)
    writer.writerows(manifest_rows(files))
    return buf.getvalue()


def manifest_name(prefix: str, suffix: str | None = None, now: datetime | None = None) -> str:
    now = now or datetime.now()
    name = f"{prefix}_{now:%Y%m%d_%H%M%S}"
    if suffix:
        name += f"_{suffix}"
    return name + ".tsv"


def write_manifest(
    files: Iterable[EnrichedFile],
    directory: Path,
    prefix: str,
    header: list[str],
    suffix: str | None = None,
    now: datetime | None = None,
) -> Path:
    path = Path(directory) / manifest_name(prefix, suffix, now)
    path.write_text(build_manifest(files, header), encoding="utf-8")
    log.info("Wrote manifest %s", path)
    return path


def upload_manifest(path: Path, destination: str, command: list[str]) -> None:
    cmd = [part.format(source=str(path), destination=destination) for part in command]
    log.info("Uploading manifest: %s", " ".join(cmd))
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except subprocess.CalledProcessError as e:
        raise UploadError(
            f"upload of {path.name} exited with status {e.returncode}: {(e.stderr or '').strip()}"
        ) from e
    except OSError as e:
        raise UploadError(f"could not run upload command {cmd[0]!r}: {e}") from e
