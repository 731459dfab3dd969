"""Checksums recorded in the local staging area when files were archived."""
from __future__ import annotations

import glob
import logging
import re

from cram_reporter.exceptions import ChecksumMismatch, ChecksumNotFound

log = logging.getLogger(__name__)

MD5_RE = re.compile(r"^[0-9a-f]{32}$")


class StagingChecksums:
    def __init__(self, pattern: str):
        self.pattern = pattern

    def lookup(self, run_id: int, file_name: str) -> str:
        pattern = self.pattern.format(run_id=run_id, file_name=glob.escape(file_name))
        matches = sorted(glob.glob(pattern, recursive=True))
        if not matches:
            raise ChecksumNotFound(f"no staged checksum for {file_name} of run {run_id}")
        if len(matches) > 1:
            raise ChecksumNotFound(f"{len(matches)} staged checksums for {file_name}: {matches}")

        try:
            with open(matches[0], encoding="utf-8") as f:
                content = f.read().split()
        except (OSError, UnicodeDecodeError) as e:
            raise ChecksumNotFound(f"cannot read {matches[0]}: {e}") from e

        md5 = content[0].lower() if content else ""
        if not MD5_RE.match(md5):
            raise ChecksumNotFound(f"{matches[0]} does not contain an MD5")
        return md5

    def verify(self, run_id: int, file_name: str, remote_md5: str) -> str:
        staged = self.lookup(run_id, file_name)
        if staged != remote_md5.lower():
            raise ChecksumMismatch(
                f"{file_name}: remote MD5 {remote_md5} does not match staged MD5 {staged}"
            )
        log.debug("%s: staged checksum matches", file_name)
        return staged
