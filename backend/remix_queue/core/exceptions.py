class RemixQueueError(Exception):
    """Base exception for the remix queue service."""

    pass


class TransientStoreError(RemixQueueError):
    """Raised when the job store is briefly unavailable. Callers retry on their own interval."""

    pass


class InvalidActionError(RemixQueueError):
    """Raised when a queue request names an unknown action or omits a required field."""

    pass


class QueueEntryExpiredError(RemixQueueError):
    """Raised by the client poller when the service no longer knows the queue entry."""

    def __init__(self, queue_id: str):
        self.queue_id = queue_id
        super().__init__(f"Queue entry '{queue_id}' expired or was never created")


class RemixExecutionError(RemixQueueError):
    """Raised by a job executor when the repository copy fails."""

    pass
