"""JobExecutor Protocol: the unit of work a client runs once its job is admitted.

The repository copy itself (read the source tree, write blobs, trees, the
commit and the ref on the destination) lives outside the queue. The queue
only needs a success/failure outcome, which is expressed as "returns" or
"raises".
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class JobExecutor(Protocol):
    """Protocol for admitted remix jobs."""

    async def execute(self, source_ref: str, target_ref: str) -> None:
        """Copy ``source_ref`` onto ``target_ref``.

        Raises:
            Exception: any exception marks the job as failed; RemixExecutionError
                is the conventional one
        """
        ...
