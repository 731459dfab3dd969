"""Exception classes for the CRAM manifest reporter."""


class ReporterError(Exception):
    """Base exception for all reporter errors."""


class ConfigurationError(ReporterError):
    """Raised when an alternate config module is unusable."""


class ListingError(ReporterError):
    """Raised when the remote listing cannot be produced at all."""


class WarehouseError(ReporterError):
    """Raised when a run-tracking or LIMS query fails."""


class LedgerError(ReporterError):
    """Raised when a ledger read or single-record update fails."""


class ClaimError(LedgerError):
    """Raised when the batch claim transaction fails; nothing was claimed."""


class FinalizeError(LedgerError):
    """Raised when the finalize transaction fails; the batch stays IN_PROGRESS."""


class UploadError(ReporterError):
    """Raised when the manifest could not be transported."""


class ValidationError(ReporterError):
    """A single file failed validation.  Fatal for that file only."""


class ChecksumNotFound(ValidationError):
    pass


class ChecksumMismatch(ValidationError):
    pass


class LineageError(ValidationError):
    """Raised when a link of the run/lane/tag -> library -> plate -> sample chain is missing."""


class SampleMismatch(ValidationError):
    pass
