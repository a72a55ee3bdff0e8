"""Client side of the remix queue: join, poll until admitted, execute, release.

RemixQueueClient speaks the action-dispatch HTTP contract. run_remix wires
it to a JobExecutor and releases the slot with done or error once the
executor finishes. Releases retry on transient failures; the server
treats repeated done/error as no-ops.
"""

import asyncio
import time

import httpx
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from remix_queue.core.config import get_settings
from remix_queue.core.exceptions import QueueEntryExpiredError, RemixQueueError, TransientStoreError
from remix_queue.queue.executor import JobExecutor
from remix_queue.queue.schemas import NOT_FOUND, FinishResult, JoinResult, PollResult

logger = structlog.get_logger(__name__)

QUEUE_PATH = "/api/remix-queue"


class RemixQueueClient:
    """Async HTTP client for the remix queue endpoint."""

    def __init__(self, http: httpx.AsyncClient, path: str = QUEUE_PATH):
        """Initialize with an httpx client whose base_url points at the service.

        Args:
            http: Configured httpx.AsyncClient (caller owns its lifecycle)
            path: Queue endpoint path
        """
        self.http = http
        self.path = path

    async def _call(self, payload: dict) -> dict:
        try:
            response = await self.http.post(self.path, json=payload)
        except httpx.TransportError as exc:
            raise TransientStoreError(f"Queue service unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise TransientStoreError(f"Queue service returned {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            # e.g. an HTML error page from a proxy in front of the service
            raise RemixQueueError(
                f"Queue request failed ({response.status_code}): response is not JSON"
            ) from exc
        if not isinstance(data, dict):
            raise RemixQueueError(f"Queue request failed ({response.status_code}): unexpected response body")

        if response.status_code >= 400 or not data.get("success", False):
            raise RemixQueueError(data.get("error") or f"Queue request failed ({response.status_code})")
        return data

    async def join(self, source_repo: str, target_repo: str, payment_id: str | None = None) -> JoinResult:
        payload = {"action": "join", "source_repo": source_repo, "target_repo": target_repo}
        if payment_id:
            payload["payment_id"] = payment_id
        data = await self._call(payload)
        return JoinResult(queue_id=data["queue_id"], position=data["position"])

    async def position(self, queue_id: str) -> PollResult:
        data = await self._call({"action": "position", "queue_id": queue_id})
        return PollResult(
            status=data["status"],
            position=data.get("position", 0),
            can_start=data.get("can_start", False),
        )

    @retry(
        retry=retry_if_exception_type(TransientStoreError),
        stop=stop_after_attempt(4),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=8),
        reraise=True,
        before_sleep=lambda rs: logger.warning(
            "remix_queue_release_retrying",
            attempt=rs.attempt_number,
            sleep_seconds=rs.next_action.sleep,
        ),
    )
    async def _release(self, action: str, queue_id: str) -> FinishResult:
        """Send done/error. Retried on transient failures since a lost release
        keeps the slot occupied until the sweeper removes the row.
        """
        data = await self._call({"action": action, "queue_id": queue_id})
        return FinishResult(ok=data.get("ok", True), status=data.get("status", action))

    async def done(self, queue_id: str) -> FinishResult:
        return await self._release("done", queue_id)

    async def error(self, queue_id: str) -> FinishResult:
        return await self._release("error", queue_id)

    async def wait_for_slot(
        self,
        queue_id: str,
        interval: float | None = None,
        timeout: float | None = None,
        on_update=None,
    ) -> PollResult:
        """Poll until the job may start.

        Polls immediately, then every ``interval`` seconds. Transient failures
        are logged and retried on the same interval.

        Args:
            queue_id: Id returned by join
            interval: Seconds between polls (default: settings.poll_interval_seconds)
            timeout: Give up after this many seconds (None waits forever)
            on_update: Optional callable receiving each PollResult

        Returns:
            The PollResult with can_start=True

        Raises:
            QueueEntryExpiredError: the service no longer knows the job, or it
                already finished
            TimeoutError: ``timeout`` elapsed first
        """
        if interval is None:
            interval = get_settings().poll_interval_seconds
        deadline = time.monotonic() + timeout if timeout is not None else None
        log = logger.bind(queue_id=queue_id)

        while True:
            try:
                result = await self.position(queue_id)
            except TransientStoreError as exc:
                log.warning("remix_queue_poll_retry", error=str(exc))
            else:
                if on_update is not None:
                    on_update(result)
                if result.can_start:
                    return result
                if result.status == NOT_FOUND or result.status in ("done", "error"):
                    raise QueueEntryExpiredError(queue_id)
                log.debug("remix_queue_waiting", position=result.position)

            if deadline is not None and time.monotonic() + interval > deadline:
                raise TimeoutError(f"Queue entry {queue_id} not admitted within {timeout}s")
            await asyncio.sleep(interval)


async def run_remix(
    client: RemixQueueClient,
    executor: JobExecutor,
    source_repo: str,
    target_repo: str,
    payment_id: str | None = None,
    interval: float | None = None,
    timeout: float | None = None,
) -> FinishResult:
    """Join the queue, wait for admission, run the executor, release the slot.

    Any way out other than success releases the entry with ``error``: a
    timed-out wait, a failing executor, or cancellation. Otherwise the
    abandoned entry would be promoted later and hold the slot until the
    sweeper removes it.

    Returns:
        The FinishResult of the done call

    Raises:
        QueueEntryExpiredError: the entry was swept before admission
        TimeoutError: not admitted within ``timeout``, after the entry is marked error
        BaseException: whatever the executor raised (including cancellation),
            after the entry is marked error
    """
    joined = await client.join(source_repo, target_repo, payment_id=payment_id)
    log = logger.bind(queue_id=joined.queue_id)
    log.info("remix_queue_joined", position=joined.position)

    try:
        await client.wait_for_slot(joined.queue_id, interval=interval, timeout=timeout)
        log.info("remix_queue_admitted")
        await executor.execute(source_repo, target_repo)
    except QueueEntryExpiredError:
        raise
    except BaseException as exc:
        log.warning("remix_job_abandoned", error=str(exc), error_type=type(exc).__name__)
        await _release_with_error(client, joined.queue_id, log)
        raise

    return await client.done(joined.queue_id)


async def _release_with_error(client: RemixQueueClient, queue_id: str, log) -> None:
    """Mark an abandoned entry as error without masking the original exception."""
    try:
        await client.error(queue_id)
    except Exception as exc:
        log.error("remix_queue_release_failed", error=str(exc), error_type=type(exc).__name__)
