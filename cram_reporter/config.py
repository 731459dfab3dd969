# ---------------------------------------------------------------------------
# Destination
# ---------------------------------------------------------------------------
# Product CRAM files are delivered into date-partitioned prefixes of a
# bucket, one prefix per day:
#
#   gs://<bucket>/<YYYYMMDD>/<sample>/<run>/<run>_<lane>#<tag>.cram
#
# The reporter lists the last LISTING_DAYS prefixes on every run and drops
# the finished manifest into MANIFEST_DESTINATION.
# ---------------------------------------------------------------------------

LISTING_URL          = "gs://ukb-product-delivery"
LISTING_DAYS         = 14
MANIFEST_DESTINATION = "gs://ukb-product-delivery/manifests"

# ---------------------------------------------------------------------------
# External commands
# ---------------------------------------------------------------------------
# Listing and upload shell out to the storage command line client.  Every
# element is formatted with str.format before the command is run.
#
#   LISTING_COMMAND  {prefixes} is expanded into one argument per prefix
#   UPLOAD_COMMAND   {source} / {destination}
#
# The listing command prints each object path flush left, followed by
# indented detail lines; the base64 MD5 is the one after "Hash (md5):".
# Indented lines are folded onto the path above them, so a listing with one
# object per line is read the same way.  A non-zero exit from the
# listing command only produces a warning: prefixes for days with no
# deliveries do not exist and make the client fail after listing the rest.
# ---------------------------------------------------------------------------

LISTING_COMMAND = ["gsutil", "ls", "-L", "{prefixes}"]
UPLOAD_COMMAND  = ["gsutil", "-q", "cp", "{source}", "{destination}"]

# ---------------------------------------------------------------------------
# Staging checksums
# ---------------------------------------------------------------------------
# Checksums computed when the files were staged locally, before upload.
# Globbed with {run_id} and {file_name}; exactly one match is required.
# ---------------------------------------------------------------------------

STAGING_CHECKSUM_GLOB = "/staging/*/*_{run_id}_*/Latest_Summary/archive/**/{file_name}.md5"

# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------

MANIFEST_HEADER = ["ukb_sample_id", "plate_id", "library_id", "path", "md5"]
MANIFEST_PREFIX = "ukb_cram_manifest"

# ---------------------------------------------------------------------------
# Run tracking
# ---------------------------------------------------------------------------
# A run passes the QC-completeness filter when its current status
# description is QC_COMPLETE_STATUS.
# ---------------------------------------------------------------------------

QC_COMPLETE_STATUS = "qc complete"

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK         = 0
EXIT_ERROR      = 1
EXIT_DUPLICATES = 277

# ---------------------------------------------------------------------------
# MongoDB config
# ---------------------------------------------------------------------------
# The ledger and the warehouse collections live in the same database.
# Claims run in multi-document transactions, so the server must be a
# replica set member.
# ---------------------------------------------------------------------------

MONGO_URI = "mongodb://localhost:27017/?replicaSet=rs0"
MONGO_DB  = "ukb_reporting"

LEDGER_COLLECTION          = "cram_ledger"
RUN_STATUS_COLLECTION      = "run_status"
PRODUCT_METRICS_COLLECTION = "product_metrics"
LIBRARY_COLLECTION         = "libraries"

# Names an alternate --config module has to define.
REQUIRED_SETTINGS = (
    "LISTING_URL", "LISTING_DAYS", "MANIFEST_DESTINATION",
    "LISTING_COMMAND", "UPLOAD_COMMAND", "STAGING_CHECKSUM_GLOB",
    "MANIFEST_HEADER", "MANIFEST_PREFIX", "QC_COMPLETE_STATUS",
    "MONGO_URI", "MONGO_DB", "LEDGER_COLLECTION", "RUN_STATUS_COLLECTION",
    "PRODUCT_METRICS_COLLECTION", "LIBRARY_COLLECTION",
)
