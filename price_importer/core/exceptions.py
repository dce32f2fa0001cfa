"""Exception hierarchy for the record-import core and the batch driver.

- ImporterError: base for all importer errors
- InvalidInputError: a composite record or natural key failed validation
- SequenceUnknownError: the named database sequence does not exist
- BackendError: the database rejected or failed a statement
- ConcurrentUpdateError: a fact insert collided with a concurrent writer
- JobLaunchError: a launch was refused (exit code 3)
"""


class ImporterError(Exception):
    """Base exception for all importer errors."""


class InvalidInputError(ImporterError):
    """Raised before any SQL when a record or natural key is unusable."""


class SequenceUnknownError(ImporterError):
    """Raised when the allocator is asked for a sequence the backend lacks."""


class BackendError(ImporterError):
    """Raised when a database call fails for reasons other than validation."""


class ConcurrentUpdateError(BackendError):
    """Raised when the fact natural-key index rejects an insert."""


class JobLaunchError(ImporterError):
    """Base for refused job launches."""


class JobAlreadyRunningError(JobLaunchError):
    """Raised when an execution of the same job instance is still active."""


class JobInstanceAlreadyCompleteError(JobLaunchError):
    """Raised when the job instance already finished with COMPLETED."""


class JobRestartNotAllowedError(JobLaunchError):
    """Raised when a non-restartable job instance is launched again."""
