from __future__ import annotations

import base64
import copy
import logging
from pathlib import Path
from types import SimpleNamespace

import pytest
from pymongo.errors import OperationFailure, PyMongoError

import cram_reporter.config as default_config
from cram_reporter.checksums import StagingChecksums
from cram_reporter.exceptions import UploadError
from cram_reporter.ledger import Ledger
from cram_reporter.warehouse import Warehouse

BUCKET = "gs://ukb-product-delivery"


def _matches(doc: dict, query: dict) -> bool:
    for key, expected in query.items():
        value = doc.get(key)
        if isinstance(expected, dict) and "$in" in expected:
            if value not in expected["$in"]:
                return False
        elif value != expected:
            return False
    return True


class FakeCollection:
    """The subset of pymongo's Collection the reporter uses."""

    def __init__(self):
        self.docs: list[dict] = []
        self.indexes: list = []
        self.updates = 0
        self.fail_update_at: int | None = None
        self.fail_reads = False
        self.transient_read_failures = 0

    def insert_many(self, docs):
        self.docs.extend(copy.deepcopy(d) for d in docs)

    def create_index(self, keys, unique=False):
        self.indexes.append((keys, unique))

    def find(self, query=None, projection=None, session=None):
        if self.fail_reads:
            raise OperationFailure("read failed")
        if session is not None and self.transient_read_failures:
            self.transient_read_failures -= 1
            raise OperationFailure(
                "WriteConflict", code=112, details={"errorLabels": ["TransientTransactionError"]}
            )
        return [copy.deepcopy(d) for d in self.docs if _matches(d, query or {})]

    def find_one(self, query=None, projection=None, session=None):
        found = self.find(query, projection, session)
        return found[0] if found else None

    def update_one(self, query, update, upsert=False, session=None):
        if self.fail_update_at is not None and self.updates >= self.fail_update_at:
            raise OperationFailure("WriteConflict")
        self.updates += 1
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(update.get("$set", {}))
                return SimpleNamespace(matched_count=1, upserted_id=None)
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.update(update.get("$setOnInsert", {}))
            doc.update(update.get("$set", {}))
            self.docs.append(doc)
            return SimpleNamespace(matched_count=0, upserted_id=len(self.docs))
        return SimpleNamespace(matched_count=0, upserted_id=None)

    def by_path(self, path):
        return next((d for d in self.docs if d.get("path") == path), None)


class FakeDatabase:
    def __init__(self):
        self.collections: dict[str, FakeCollection] = {}

    def __getitem__(self, name):
        return self.collections.setdefault(name, FakeCollection())


class FakeSession:
    """Transactions restore every collection when the callback raises.

    Like the driver, the callback is run again after a transient error.
    """

    def __init__(self, db: FakeDatabase):
        self.db = db
        self.transactions = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def with_transaction(self, callback, read_concern=None, write_concern=None):
        while True:
            self.transactions += 1
            snapshot = {name: copy.deepcopy(c.docs) for name, c in self.db.collections.items()}
            try:
                return callback(self)
            except Exception as e:
                for name, docs in snapshot.items():
                    self.db.collections[name].docs = docs
                if isinstance(e, PyMongoError) and e.has_error_label("TransientTransactionError"):
                    continue
                raise


class FakeClient:
    def __init__(self, db: FakeDatabase):
        self.db = db
        self.sessions: list[FakeSession] = []
        self.closed = False

    def __getitem__(self, name):
        return self.db

    def start_session(self):
        session = FakeSession(self.db)
        self.sessions.append(session)
        return session

    def close(self):
        self.closed = True


class FakeTransport:
    def __init__(self, fail=False):
        self.fail = fail
        self.uploads: list[tuple[Path, str, str]] = []

    def __call__(self, path: Path, destination: str):
        if self.fail:
            raise UploadError(f"upload of {path.name} failed")
        self.uploads.append((path, destination, path.read_text()))


def md5_b64(md5_hex: str) -> str:
    return base64.b64encode(bytes.fromhex(md5_hex)).decode()


def listing_line(path: str, md5_hex: str) -> str:
    return f"{path}:    Creation time: Mon, 05 Oct 2026 10:00:00 GMT    Hash (md5): {md5_b64(md5_hex)}\n"


def long_listing_record(path: str, md5_hex: str) -> str:
    """One object as printed by a long listing: path, then indented details."""
    return (
        f"{path}:\n"
        "        Creation time:          Thu, 15 Oct 2026 09:12:44 GMT\n"
        "        Content-Length:         18234411932\n"
        "        Hash (crc32c):          n7YhWQ==\n"
        f"        Hash (md5):             {md5_b64(md5_hex)}\n"
        "        ETag:                   CJ6m8c2n4/kCEAE=\n"
    )


def cram_path(sample, run_id, lane, tag, day="20261015"):
    lane_part = f"_{lane}" if lane is not None else ""
    return f"{BUCKET}/{day}/{sample}/{run_id}/{run_id}{lane_part}#{tag}.cram"


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    logging.getLogger("cram_reporter").handlers.clear()


@pytest.fixture
def cfg():
    return default_config


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def client(db):
    return FakeClient(db)


@pytest.fixture
def ledger(client, db, cfg):
    return Ledger(client, db, cfg)


@pytest.fixture
def ledger_docs(db, cfg):
    return db[cfg.LEDGER_COLLECTION]


@pytest.fixture
def warehouse(db, cfg):
    return Warehouse(db, cfg)


@pytest.fixture
def staging(tmp_path):
    root = tmp_path / "staging"
    root.mkdir()
    return root


@pytest.fixture
def checksums(staging):
    return StagingChecksums(str(staging) + "/{run_id}/**/{file_name}.md5")


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def add_product(db, cfg, staging):
    """Register one product in the warehouse and its staged checksum."""

    def add(run_id, lane, tag, sample, md5_hex, library_id=None, plate="PLATE1",
            qc_complete=True, staged_md5=None):
        library_id = library_id or f"LIB{run_id}{lane or 0}{tag}"
        lanes = [lane] if lane is not None else [1, 2]
        db[cfg.PRODUCT_METRICS_COLLECTION].insert_many(
            [{"run_id": run_id, "position": p, "tag_index": tag, "library_id": library_id} for p in lanes]
        )
        if db[cfg.LIBRARY_COLLECTION].find_one({"library_id": library_id}) is None:
            db[cfg.LIBRARY_COLLECTION].insert_many(
                [{"library_id": library_id, "plate_barcode": plate, "sample_name": sample}]
            )
        if db[cfg.RUN_STATUS_COLLECTION].find_one({"run_id": run_id}) is None:
            db[cfg.RUN_STATUS_COLLECTION].insert_many([
                {"run_id": run_id, "description": "run complete", "iscurrent": not qc_complete},
                {"run_id": run_id, "description": "qc complete", "iscurrent": qc_complete},
            ])
        path = cram_path(sample, run_id, lane, tag)
        file_name = path.rsplit("/", 1)[1]
        run_dir = staging / str(run_id) / "archive"
        run_dir.mkdir(parents=True, exist_ok=True)
        (run_dir / f"{file_name}.md5").write_text(f"{staged_md5 or md5_hex}  {file_name}\n")
        return listing_line(path, md5_hex)

    return add
