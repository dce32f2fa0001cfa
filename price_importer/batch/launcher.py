"""Map job launches to process exit codes.

    0  COMPLETED
    1  FAILED
    2  STOPPED
    3  launch refused (already running, already complete, restart not allowed)
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from price_importer.core.enums import BatchStatus
from price_importer.core.exceptions import JobLaunchError
from price_importer.core.models.records import CompositeRecord
from price_importer.core.utils.logging_config import get_logger

from .driver import BatchDriver

logger = get_logger("batch.launcher")

EXIT_CODES: dict[BatchStatus, int] = {
    BatchStatus.COMPLETED: 0,
    BatchStatus.FAILED: 1,
    BatchStatus.STOPPED: 2,
}
LAUNCH_REFUSED_EXIT_CODE = 3


def exit_code_for(status: BatchStatus) -> int:
    # an execution that never left CREATED/STARTED did not finish cleanly
    return EXIT_CODES.get(status, EXIT_CODES[BatchStatus.FAILED])


def launch_import(
    driver: BatchDriver,
    parameters: Mapping[str, Any],
    records: Iterable[CompositeRecord],
) -> int:
    """Launch the driver's job, wait for it and return the exit code."""
    try:
        handle = driver.launch(parameters, records, wait=True)
    except JobLaunchError as exc:
        logger.error(
            "job_launch_refused",
            job_name=driver.job.name,
            reason=type(exc).__name__,
            error=str(exc),
        )
        return LAUNCH_REFUSED_EXIT_CODE

    execution = handle.wait()
    return exit_code_for(execution.status)
