from __future__ import annotations

import pytest

from cram_reporter.exceptions import LineageError, WarehouseError
from cram_reporter.warehouse import Lineage

MD5 = "0123456789abcdef0123456789abcdef"


def test_qc_complete_runs(warehouse, add_product) -> None:
    add_product(45123, 1, 1, "UKB1", MD5)
    add_product(45124, 1, 1, "UKB2", MD5, qc_complete=False)
    assert warehouse.qc_complete_runs([45123, 45124, 45125]) == {45123}


def test_qc_complete_runs_empty(warehouse) -> None:
    assert warehouse.qc_complete_runs([]) == set()


def test_qc_complete_runs_wraps_database_errors(warehouse, db, cfg) -> None:
    db[cfg.RUN_STATUS_COLLECTION].fail_reads = True
    with pytest.raises(WarehouseError):
        warehouse.qc_complete_runs([45123])


def test_lineage(warehouse, add_product) -> None:
    add_product(45123, 2, 5, "UKB1", MD5, library_id="LIB9", plate="PL77")
    assert warehouse.lineage(45123, 2, 5) == Lineage(sample="UKB1", plate_barcode="PL77", library_id="LIB9")


def test_lineage_merged_lanes(warehouse, add_product) -> None:
    add_product(45123, None, 5, "UKB1", MD5, library_id="LIB9")
    assert warehouse.lineage(45123, None, 5).library_id == "LIB9"


def test_lineage_merged_lanes_must_agree(warehouse, db, cfg, add_product) -> None:
    add_product(45123, None, 5, "UKB1", MD5, library_id="LIB9")
    db[cfg.PRODUCT_METRICS_COLLECTION].insert_many(
        [{"run_id": 45123, "position": 3, "tag_index": 5, "library_id": "LIB10"}]
    )
    with pytest.raises(LineageError, match="several libraries"):
        warehouse.lineage(45123, None, 5)


def test_lineage_missing_product(warehouse) -> None:
    with pytest.raises(LineageError, match="no product"):
        warehouse.lineage(45123, 1, 1)


def test_lineage_missing_library(warehouse, db, cfg) -> None:
    db[cfg.PRODUCT_METRICS_COLLECTION].insert_many(
        [{"run_id": 45123, "position": 1, "tag_index": 1, "library_id": "LIB1"}]
    )
    with pytest.raises(LineageError, match="not in the LIMS"):
        warehouse.lineage(45123, 1, 1)


@pytest.mark.parametrize(
    "library,message",
    [
        ({"library_id": "LIB1", "sample_name": "UKB1"}, "no plate"),
        ({"library_id": "LIB1", "plate_barcode": "PL1"}, "no sample"),
    ],
)
def test_lineage_broken_chain(warehouse, db, cfg, library, message) -> None:
    db[cfg.PRODUCT_METRICS_COLLECTION].insert_many(
        [{"run_id": 45123, "position": 1, "tag_index": 1, "library_id": "LIB1"}]
    )
    db[cfg.LIBRARY_COLLECTION].insert_many([library])
    with pytest.raises(LineageError, match=message):
        warehouse.lineage(45123, 1, 1)


def test_lineage_wraps_database_errors(warehouse, db, cfg) -> None:
    db[cfg.PRODUCT_METRICS_COLLECTION].fail_reads = True
    with pytest.raises(WarehouseError):
        warehouse.lineage(45123, 1, 1)
