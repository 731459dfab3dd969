"""Per-file validation and LIMS enrichment of claimed files."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from cram_reporter.checksums import StagingChecksums
from cram_reporter.exceptions import ReporterError, SampleMismatch
from cram_reporter.listing import CandidateFile
from cram_reporter.warehouse import Warehouse

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrichedFile:
    file_name: str
    path: str
    md5: str
    run_id: int
    lane: int | None
    tag_index: int
    sample: str
    plate_barcode: str
    library_id: str


class Validator:
    """Checks one file at a time; a failure never affects the other files.

    on_failure is called with the failed candidate and the error right
    away, before the next file is looked at.
    """

    def __init__(
        self,
        warehouse: Warehouse,
        checksums: StagingChecksums | None = None,
        on_failure: Callable[[CandidateFile, ReporterError], None] | None = None,
    ):
        self.warehouse = warehouse
        self.checksums = checksums
        self.on_failure = on_failure

    def enrich(self, candidate: CandidateFile) -> EnrichedFile:
        md5 = candidate.md5
        if self.checksums is not None:
            md5 = self.checksums.verify(candidate.run_id, candidate.file_name, candidate.md5)

        lineage = self.warehouse.lineage(candidate.run_id, candidate.lane, candidate.tag_index)
        if lineage.sample != candidate.sample:
            raise SampleMismatch(
                f"{candidate.path}: sample {candidate.sample!r} in the path, "
                f"{lineage.sample!r} in the LIMS"
            )

        return EnrichedFile(
            file_name=candidate.file_name,
            path=candidate.path,
            md5=md5,
            run_id=candidate.run_id,
            lane=candidate.lane,
            tag_index=candidate.tag_index,
            sample=lineage.sample,
            plate_barcode=lineage.plate_barcode,
            library_id=lineage.library_id,
        )

    def validate_batch(self, batch: dict[str, CandidateFile]) -> tuple[list[EnrichedFile], dict[str, str]]:
        """Enrich every file in batch, removing the ones that fail from it.

        Returns the enriched files and a file name -> failure reason map.
        """
        enriched = []
        failures = {}
        for name in sorted(batch):
            candidate = batch[name]
            try:
                enriched.append(self.enrich(candidate))
            except ReporterError as e:
                log.error("%s failed validation: %s", candidate.path, e)
                failures[name] = str(e)
                del batch[name]
                if self.on_failure is not None:
                    self.on_failure(candidate, e)
        return enriched, failures
