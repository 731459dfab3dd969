"""One reporting run: gather, filter, claim, validate, build/upload, finalize, report.

Only the claim failure short-circuits the run, after a header-only manifest
has been sent so that the receiving side still sees a heartbeat.  Every
other failure is either confined to one file (validation) or changes the
outcome recorded by the finalize step (upload).
"""
from __future__ import annotations

import logging
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable

from cram_reporter.checksums import StagingChecksums
from cram_reporter.exceptions import (
    FinalizeError,
    LedgerError,
    ListingError,
    ReporterError,
    UploadError,
    WarehouseError,
)
from cram_reporter.ledger import Ledger
from cram_reporter.listing import CandidateFile, discover
from cram_reporter.manifest import upload_manifest, write_manifest
from cram_reporter.validate import EnrichedFile, Validator
from cram_reporter.warehouse import Warehouse

log = logging.getLogger(__name__)


@dataclass
class RunOptions:
    destination: str
    dry_run: bool = True
    send_empty: bool = False
    check_staging: bool = True
    require_qc_complete: bool = True
    suffix: str | None = None
    workdir: Path | None = None


@dataclass
class RunReport:
    candidates: int = 0
    duplicates: dict[str, list[str]] = field(default_factory=dict)
    claimed: set[str] = field(default_factory=set)
    failures: dict[str, str] = field(default_factory=dict)
    reported: list[EnrichedFile] = field(default_factory=list)
    manifest_path: Path | None = None
    uploaded: bool = False
    final_status: str | None = None
    errors: list[str] = field(default_factory=list)
    exit_code: int = 0


class Reporter:
    def __init__(
        self,
        cfg,
        ledger: Ledger,
        warehouse: Warehouse,
        options: RunOptions,
        checksums: StagingChecksums | None = None,
        transport: Callable[[Path, str], None] | None = None,
    ):
        self.cfg = cfg
        self.ledger = ledger
        self.warehouse = warehouse
        self.options = options
        self.checksums = checksums if options.check_staging else None
        if transport is None:
            def transport(path, destination):
                upload_manifest(path, destination, cfg.UPLOAD_COMMAND)
        self.transport = transport

    def run(self, lines: Iterable[str]) -> RunReport:
        report = RunReport()
        if self.options.dry_run:
            log.info("Dry run: the ledger will not be changed and nothing will be uploaded")

        # GATHER
        try:
            discovery = discover(lines)
        except ListingError as e:
            return self._abort(report, e)
        candidates = discovery.candidates
        report.candidates = len(candidates)
        report.duplicates = discovery.duplicates
        log.info(
            "Found %d candidate file(s) and %d duplicated file name(s)",
            len(candidates), len(report.duplicates),
        )

        # FILTER
        if self.options.require_qc_complete:
            candidates = self._qc_complete(candidates, report)

        # CLAIM
        by_path = {c.path: c for c in candidates.values()}
        try:
            if self.options.dry_run:
                claimed = self.ledger.unreported(by_path)
            else:
                self.ledger.ensure_indexes()
                claimed = self.ledger.claim({path: c.file_name for path, c in by_path.items()})
        except LedgerError as e:
            return self._abort(report, e)
        report.claimed = set(claimed)
        batch = {by_path[path].file_name: by_path[path] for path in claimed}

        if not batch:
            log.info("No unreported files found")
            self._send(report, [])
            return self._finish(report)

        # VALIDATE
        validator = Validator(
            self.warehouse,
            checksums=self.checksums,
            on_failure=None if self.options.dry_run else self._record_failure(report),
        )
        enriched, report.failures = validator.validate_batch(batch)
        report.reported = enriched
        if not enriched:
            report.errors.append(f"all {len(report.failures)} claimed file(s) failed validation")

        # BUILD/UPLOAD
        self._send(report, enriched)

        # FINALIZE
        if enriched and not self.options.dry_run:
            try:
                report.final_status = self.ledger.finalize(enriched, succeeded=report.uploaded)
            except FinalizeError as e:
                log.error("%s", e)
                report.errors.append(str(e))

        return self._finish(report)

    def _qc_complete(self, candidates: dict[str, CandidateFile], report: RunReport) -> dict[str, CandidateFile]:
        run_ids = {c.run_id for c in candidates.values()}
        try:
            complete = self.warehouse.qc_complete_runs(run_ids)
        except WarehouseError as e:
            log.error("Cannot determine QC-complete runs, nothing will be reported: %s", e)
            report.errors.append(str(e))
            complete = set()
        skipped = sorted(run_ids - complete)
        if skipped:
            log.info("Skipping runs that are not QC complete: %s", ", ".join(map(str, skipped)))
        return {name: c for name, c in candidates.items() if c.run_id in complete}

    def _record_failure(self, report: RunReport):
        def record(candidate: CandidateFile, error: ReporterError) -> None:
            try:
                self.ledger.mark_failed(candidate.path)
            except LedgerError as e:
                log.error("%s", e)
                report.errors.append(str(e))
        return record

    def _send(self, report: RunReport, files: list[EnrichedFile], heartbeat: bool = False) -> None:
        """Write the manifest and upload it.

        An empty manifest is only uploaded with send_empty, or as the
        heartbeat of an aborted run.
        Manifests are kept in workdir, or in one shared directory under the
        system temp dir, for inspection after the run.
        """
        try:
            workdir = self.options.workdir or Path(tempfile.gettempdir()) / "cram_reporter"
            workdir.mkdir(parents=True, exist_ok=True)
            report.manifest_path = write_manifest(
                files, workdir, self.cfg.MANIFEST_PREFIX, self.cfg.MANIFEST_HEADER, self.options.suffix,
            )
        except OSError as e:
            log.error("Cannot write manifest: %s", e)
            report.errors.append(f"cannot write manifest: {e}")
            return
        if self.options.dry_run:
            log.info("Dry run: not uploading %s (%d file(s))", report.manifest_path, len(files))
            return
        if not files and not (heartbeat or self.options.send_empty):
            log.info("Not sending an empty manifest")
            return
        try:
            self.transport(report.manifest_path, self.options.destination)
        except UploadError as e:
            log.error("%s", e)
            report.errors.append(str(e))
            return
        report.uploaded = True
        log.info("Sent manifest with %d file(s) to %s", len(files), self.options.destination)

    def _abort(self, report: RunReport, error: ReporterError) -> RunReport:
        """The batch cannot be computed: send a header-only manifest and fail."""
        log.error("%s", error)
        report.errors.append(str(error))
        report.claimed = set()
        self._send(report, [], heartbeat=True)
        return self._finish(report)

    def _finish(self, report: RunReport) -> RunReport:
        for name, paths in sorted(report.duplicates.items()):
            log.warning("Duplicate file %s found at: %s", name, ", ".join(paths))
        if report.errors:
            report.exit_code = self.cfg.EXIT_ERROR
        elif report.duplicates:
            report.exit_code = self.cfg.EXIT_DUPLICATES
        else:
            report.exit_code = self.cfg.EXIT_OK
        log.info(
            "Run finished: %d reported, %d failed, %d duplicated, exit code %d",
            len(report.reported),
            len(report.failures), len(report.duplicates), report.exit_code,
        )
        return report
