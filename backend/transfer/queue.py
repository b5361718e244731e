"""
Send queue.

Jobs are drained one at a time, in the order they were enqueued, by a
single background task. Adapters may rely on never seeing two jobs in
flight at once.
"""

import asyncio
import logging
import time
from collections import deque

from config import JOB_HISTORY_SIZE
from transfer.models import Job, JobKind, JobStatus

logger = logging.getLogger(__name__)


class SendQueue:
    """FIFO of jobs with a single, self-rearming processor."""

    def __init__(self, get_adapter, history_size: int = JOB_HISTORY_SIZE) -> None:
        self._get_adapter = get_adapter  # returns the adapter active right now
        self._jobs: list[Job] = []
        self._history: deque[Job] = deque(maxlen=history_size)
        self._processing = False
        self._task: asyncio.Task | None = None

    def __len__(self) -> int:
        return len(self._jobs)

    @property
    def processing(self) -> bool:
        return self._processing

    def enqueue(self, job: Job) -> Job:
        """Append a job and make sure the processor is running."""
        self._jobs.append(job)
        logger.debug(f"Queued {job.kind.value} job {job.id} ({len(self._jobs)} pending)")
        if not self._processing:
            # Flag is set before the task exists so re-entrant enqueues see it.
            self._processing = True
            self._task = asyncio.create_task(self._process())
        return job

    def get_job(self, job_id: str) -> Job | None:
        for job in self._jobs:
            if job.id == job_id:
                return job
        for job in self._history:
            if job.id == job_id:
                return job
        return None

    async def join(self) -> None:
        """Wait until the current processor run has drained the queue."""
        if self._task is not None:
            await asyncio.shield(self._task)

    async def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._processing = False

    async def _process(self) -> None:
        try:
            while self._jobs:
                job = self._jobs[0]
                await self._run(job)
                self._jobs.pop(0)
                self._history.append(job)
        finally:
            self._processing = False

    async def _run(self, job: Job) -> None:
        adapter = self._get_adapter()
        try:
            if job.kind == JobKind.TEXT:
                await adapter.send_text(job.payload, job.meta)
            else:
                await adapter.send_file(job.payload_path, job.meta)
        except Exception as e:
            job.status = JobStatus.ERROR
            job.error = str(e) or type(e).__name__
            logger.warning(f"Job {job.id} failed on {adapter.id}: {job.error}")
        else:
            job.status = JobStatus.SENT
            logger.info(f"Job {job.id} sent via {adapter.id}")
        job.finished_at = time.time()
