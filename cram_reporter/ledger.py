"""Per-file reporting ledger.

One document per remote path.  The claim and finalize operations are the
only multi-record writes and each runs in a single MongoDB transaction; the
unique index on ``path`` makes two overlapping claims conflict, so at most
one run ever owns a given file.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Iterable, Mapping

from pymongo import ASCENDING
from pymongo.errors import PyMongoError
from pymongo.read_concern import ReadConcern
from pymongo.write_concern import WriteConcern

from cram_reporter.exceptions import ClaimError, FinalizeError, LedgerError

log = logging.getLogger(__name__)

# An absent record is UNSET.  ANNULLED is only ever set by hand.
UNSET       = "UNSET"
IN_PROGRESS = "IN_PROGRESS"
SUCCESS     = "SUCCESS"
FAIL        = "FAIL"
ANNULLED    = "ANNULLED"

STATUSES = {UNSET, IN_PROGRESS, SUCCESS, FAIL, ANNULLED}

# Records in these states are never claimed again.
REPORTED_STATUSES = [IN_PROGRESS, SUCCESS, ANNULLED]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Ledger:
    def __init__(self, client, db, cfg):
        self.client = client
        self.collection = db[cfg.LEDGER_COLLECTION]

    def ensure_indexes(self) -> None:
        try:
            self.collection.create_index([("path", ASCENDING)], unique=True)
        except PyMongoError as e:
            raise LedgerError(f"cannot create ledger index: {e}") from e

    def unreported(self, paths: Iterable[str], session=None) -> set[str]:
        """Paths with no record, or a record in UNSET or FAIL.

        Inside a transaction driver errors are left to with_transaction, which
        retries the whole callback on transient errors.
        """
        paths = sorted(set(paths))
        if not paths:
            return set()
        try:
            cursor = self.collection.find(
                {"path": {"$in": paths}, "status": {"$in": REPORTED_STATUSES}},
                {"path": 1, "_id": 0},
                session=session,
            )
            reported = {doc["path"] for doc in cursor}
        except PyMongoError as e:
            if session is not None:
                raise
            raise LedgerError(f"ledger query failed: {e}") from e
        return set(paths) - reported

    def claim(self, files: Mapping[str, str]) -> set[str]:
        """Move every unreported path of files (path -> file name) to IN_PROGRESS.

        The eligibility check and the writes share one transaction.  Either
        every eligible path is claimed or, on any error, none is.
        """
        def claim_all(session):
            eligible = self.unreported(files, session=session)
            now = _now()
            for path in sorted(eligible):
                self.collection.update_one(
                    {"path": path},
                    {
                        "$set": {"status": IN_PROGRESS, "status_changed": now},
                        "$setOnInsert": {"file_name": files[path], "created": now},
                    },
                    upsert=True,
                    session=session,
                )
            return eligible

        try:
            with self.client.start_session() as session:
                claimed = session.with_transaction(
                    claim_all,
                    read_concern=ReadConcern("snapshot"),
                    write_concern=WriteConcern("majority"),
                )
        except PyMongoError as e:
            raise ClaimError(f"claim transaction failed, nothing claimed: {e}") from e

        log.info("Claimed %d file(s)", len(claimed))
        return claimed

    def mark_failed(self, path: str) -> None:
        """Single-record FAIL for a file dropped during validation."""
        try:
            result = self.collection.update_one(
                {"path": path, "status": IN_PROGRESS},
                {"$set": {"status": FAIL, "status_changed": _now()}},
            )
        except PyMongoError as e:
            raise LedgerError(f"cannot mark {path} as {FAIL}: {e}") from e
        if result.matched_count != 1:
            raise LedgerError(f"{path} is no longer {IN_PROGRESS}, not marked {FAIL}")

    def finalize(self, files: Iterable, succeeded: bool) -> str:
        """Move every enriched file from IN_PROGRESS to SUCCESS or FAIL.

        files are EnrichedFile-like: path, md5, sample, plate_barcode,
        library_id.  A file that is no longer IN_PROGRESS aborts the whole
        transaction.
        """
        status = SUCCESS if succeeded else FAIL
        files = list(files)

        def finalize_all(session):
            now = _now()
            for f in files:
                result = self.collection.update_one(
                    {"path": f.path, "status": IN_PROGRESS},
                    {
                        "$set": {
                            "status": status,
                            "status_changed": now,
                            "md5": f.md5,
                            "sample": f.sample,
                            "plate_barcode": f.plate_barcode,
                            "library_id": f.library_id,
                        }
                    },
                    session=session,
                )
                if result.matched_count != 1:
                    raise FinalizeError(f"{f.path} is not {IN_PROGRESS}")

        try:
            with self.client.start_session() as session:
                session.with_transaction(
                    finalize_all,
                    read_concern=ReadConcern("snapshot"),
                    write_concern=WriteConcern("majority"),
                )
        except (PyMongoError, FinalizeError) as e:
            raise FinalizeError(
                f"finalize transaction failed, {len(files)} file(s) left {IN_PROGRESS}: {e}"
            ) from e

        log.info("Finalized %d file(s) as %s", len(files), status)
        return status
