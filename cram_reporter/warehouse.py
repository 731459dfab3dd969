"""Run-tracking and LIMS lookups against the warehouse collections."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from pymongo.errors import PyMongoError

from cram_reporter.exceptions import LineageError, WarehouseError

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Lineage:
    sample: str
    plate_barcode: str
    library_id: str


class Warehouse:
    def __init__(self, db, cfg):
        self.run_status = db[cfg.RUN_STATUS_COLLECTION]
        self.products = db[cfg.PRODUCT_METRICS_COLLECTION]
        self.libraries = db[cfg.LIBRARY_COLLECTION]
        self.qc_complete_status = cfg.QC_COMPLETE_STATUS

    def qc_complete_runs(self, run_ids: Iterable[int]) -> set[int]:
        """Subset of run_ids whose current run status is QC complete."""
        run_ids = sorted(set(run_ids))
        if not run_ids:
            return set()
        try:
            cursor = self.run_status.find(
                {
                    "run_id": {"$in": run_ids},
                    "iscurrent": True,
                    "description": self.qc_complete_status,
                },
                {"run_id": 1, "_id": 0},
            )
            return {doc["run_id"] for doc in cursor}
        except PyMongoError as e:
            raise WarehouseError(f"run status query failed: {e}") from e

    def lineage(self, run_id: int, lane: int | None, tag_index: int) -> Lineage:
        """Resolve run/lane/tag -> library -> plate -> sample.

        A file merged across lanes (lane is None) must resolve to the same
        library on every lane.  Any missing or ambiguous link raises
        LineageError.
        """
        query = {"run_id": run_id, "tag_index": tag_index}
        if lane is not None:
            query["position"] = lane
        product = f"run {run_id} lane {lane if lane is not None else '*'} tag {tag_index}"

        try:
            library_ids = {
                doc.get("library_id")
                for doc in self.products.find(query, {"library_id": 1, "_id": 0})
            }
            if not library_ids:
                raise LineageError(f"no product found for {product}")
            if None in library_ids or "" in library_ids:
                raise LineageError(f"no library recorded for {product}")
            if len(library_ids) > 1:
                raise LineageError(
                    f"{product} maps to several libraries: {sorted(map(str, library_ids))}"
                )
            library_id = library_ids.pop()
            library = self.libraries.find_one({"library_id": library_id})
        except PyMongoError as e:
            raise WarehouseError(f"lineage query failed for {product}: {e}") from e

        if library is None:
            raise LineageError(f"library {library_id} of {product} is not in the LIMS")
        plate_barcode = library.get("plate_barcode")
        if not plate_barcode:
            raise LineageError(f"library {library_id} of {product} has no plate")
        sample = library.get("sample_name")
        if not sample:
            raise LineageError(f"plate {plate_barcode} of {product} has no sample")

        return Lineage(sample=str(sample), plate_barcode=str(plate_barcode), library_id=str(library_id))
