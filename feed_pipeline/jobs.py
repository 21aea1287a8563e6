"""
Jobs - Named in-process queues with retrying workers.

Provides:
- JobQueue: waiting/delayed/active/completed/failed bookkeeping per queue
- Worker: claims up to `concurrency` jobs at a time and reports outcomes
- JobService: the fixed set of queues, their workers, and orderly shutdown

Jobs live in memory only; anything still waiting when the process exits is lost.
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable

from .exceptions import JobAbandoned, JobExhausted

logger = logging.getLogger(__name__)


class JobType(str, Enum):
    INGEST = "FEED_INGEST"
    REFRESH = "FEED_REFRESH"
    SUMMARIZE = "ARTICLE_SUMMARIZE"
    CLEANUP = "CACHE_CLEANUP"
    EMAIL = "EMAIL_SEND"


class JobState(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


QUEUE_FOR_JOB = {
    JobType.INGEST: "feed-ingest",
    JobType.REFRESH: "feed-refresh",
    JobType.SUMMARIZE: "article-summarize",
    JobType.CLEANUP: "cache-cleanup",
    JobType.EMAIL: "email-send",
}
if set(QUEUE_FOR_JOB) != set(JobType):
    raise RuntimeError(f"Job types without a queue: {set(JobType) - set(QUEUE_FOR_JOB)}")

QUEUE_NAMES = list(dict.fromkeys(QUEUE_FOR_JOB.values()))


@dataclass(frozen=True)
class Backoff:
    type: str = "exponential"  # or "fixed"
    delay: float = 2.0         # seconds

    def delay_for(self, attempts_made: int) -> float:
        """Seconds to wait before the retry that follows attempt `attempts_made`."""
        if self.type == "fixed":
            return self.delay
        return self.delay * 2 ** (attempts_made - 1)


@dataclass(frozen=True)
class Retention:
    """How many finished jobs to keep, and for how long (seconds)."""
    count: int | None = None
    age: float | None = None


@dataclass(frozen=True)
class JobOptions:
    delay: float = 0
    attempts: int = 3
    backoff: Backoff = Backoff()
    remove_on_complete: Retention = Retention(count=100, age=86400)
    remove_on_fail: Retention = Retention(count=500, age=604800)


@dataclass
class Job:
    id: str
    type: JobType
    queue: str
    payload: dict
    options: JobOptions
    state: JobState = JobState.WAITING
    attempts_made: int = 0
    created_at: float = field(default_factory=time.time)
    processed_at: float | None = None  # start of the latest attempt
    finished_at: float | None = None
    failed_reason: str | None = None
    return_value: Any = None
    run_at: float | None = None  # queue clock reading, for DELAYED jobs
    _done: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def duration_ms(self) -> int | None:
        if self.processed_at is None or self.finished_at is None:
            return None
        return int((self.finished_at - self.processed_at) * 1000)

    @property
    def is_finished(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)

    async def wait(self) -> Any:
        """
        Wait for a terminal state.

        Returns the processor's return value, or raises JobExhausted if every
        attempt failed. Raises JobAbandoned if the queue closed first.
        """
        await self._done.wait()
        if not self.is_finished:
            raise JobAbandoned(self)
        if self.state == JobState.FAILED:
            raise JobExhausted(self)
        return self.return_value

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "queue": self.queue,
            "state": self.state.value,
            "payload": self.payload,
            "attempts_made": self.attempts_made,
            "max_attempts": self.options.attempts,
            "created_at": self.created_at,
            "processed_at": self.processed_at,
            "finished_at": self.finished_at,
            "failed_reason": self.failed_reason,
            "return_value": self.return_value,
        }


class JobQueue:
    """A single named queue. All state changes happen under one condition."""

    def __init__(self, name: str, clock: Callable[[], float] = time.monotonic):
        self.name = name
        self._clock = clock
        self._ids = itertools.count(1)
        self._jobs: dict[str, Job] = {}
        self._waiting: deque[str] = deque()
        self._delayed: dict[str, Job] = {}
        self._active: set[str] = set()
        self._completed: deque[str] = deque()
        self._failed: deque[str] = deque()
        self._cond = asyncio.Condition()
        self._paused = False
        self._closed = False

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def add(self, job_type: JobType, payload: dict, options: JobOptions) -> Job:
        if self._closed:
            raise RuntimeError(f"Queue {self.name} is closed")

        job = Job(
            id=str(next(self._ids)),
            type=job_type,
            queue=self.name,
            payload=payload,
            options=options,
        )

        async with self._cond:
            self._jobs[job.id] = job
            if options.delay > 0:
                self._schedule(job, options.delay)
            else:
                self._waiting.append(job.id)
            self._cond.notify_all()

        return job

    async def claim(self) -> Job | None:
        """
        Wait for the next runnable job and mark it active.

        Returns None once the queue is closed. Nothing is handed out while the
        queue is paused.
        """
        async with self._cond:
            while True:
                if self._closed:
                    return None

                self._promote_due()
                if not self._paused and self._waiting:
                    job = self._jobs[self._waiting.popleft()]
                    job.state = JobState.ACTIVE
                    job.attempts_made += 1
                    job.processed_at = time.time()
                    self._active.add(job.id)
                    return job

                try:
                    await asyncio.wait_for(self._cond.wait(), timeout=self._next_due_in())
                except asyncio.TimeoutError:
                    pass

    async def complete(self, job: Job, return_value: Any = None) -> None:
        async with self._cond:
            self._active.discard(job.id)
            job.state = JobState.COMPLETED
            job.finished_at = time.time()
            job.return_value = return_value
            self._completed.append(job.id)
            self._trim(self._completed, job.options.remove_on_complete)
            self._cond.notify_all()
        job._done.set()

    async def fail(self, job: Job, error: BaseException | str) -> bool:
        """Record a failed attempt. Returns True if the job will be retried."""
        async with self._cond:
            self._active.discard(job.id)
            job.failed_reason = str(error)
            retrying = job.attempts_made < job.options.attempts

            if retrying:
                self._schedule(job, job.options.backoff.delay_for(job.attempts_made))
            else:
                job.state = JobState.FAILED
                job.finished_at = time.time()
                self._failed.append(job.id)
                self._trim(self._failed, job.options.remove_on_fail)
            self._cond.notify_all()

        # A retry scheduled after close will never run
        if not retrying or self._closed:
            job._done.set()
        return retrying

    async def pause(self) -> None:
        async with self._cond:
            self._paused = True

    async def resume(self) -> None:
        async with self._cond:
            self._paused = False
            self._cond.notify_all()

    async def clean(self, grace: float, limit: int = 100, state: JobState = JobState.COMPLETED) -> list[str]:
        """Remove up to `limit` jobs in `state` that finished more than `grace` seconds ago."""
        if state not in (JobState.COMPLETED, JobState.FAILED):
            raise ValueError(f"Cannot clean jobs in state {state.value}")

        ids = self._completed if state == JobState.COMPLETED else self._failed
        cutoff = time.time() - grace
        removed = []

        async with self._cond:
            for job_id in list(ids):
                if len(removed) >= limit:
                    break
                job = self._jobs.get(job_id)
                if job and job.finished_at is not None and job.finished_at <= cutoff:
                    ids.remove(job_id)
                    del self._jobs[job_id]
                    removed.append(job_id)

        return removed

    def counts(self) -> dict[str, int]:
        stats = {
            "waiting": len(self._waiting),
            "active": len(self._active),
            "completed": len(self._completed),
            "failed": len(self._failed),
            "delayed": len(self._delayed),
        }
        stats["total"] = sum(stats.values())
        return stats

    def get_job(self, job_id: str) -> Job | None:
        return self._jobs.get(job_id)

    async def close(self) -> None:
        """Stop handing out jobs. Waiters on unfinished jobs are released with JobAbandoned."""
        async with self._cond:
            self._closed = True
            unfinished = [job for job in self._jobs.values() if job.state in (JobState.WAITING, JobState.DELAYED)]
            self._cond.notify_all()

        for job in unfinished:
            job._done.set()

    def _schedule(self, job: Job, delay: float) -> None:
        job.state = JobState.DELAYED
        job.run_at = self._clock() + delay
        self._delayed[job.id] = job

    def _promote_due(self) -> None:
        now = self._clock()
        due = sorted(
            (job for job in self._delayed.values() if job.run_at <= now),
            key=lambda job: job.run_at,
        )
        for job in due:
            del self._delayed[job.id]
            job.state = JobState.WAITING
            job.run_at = None
            self._waiting.append(job.id)

    def _next_due_in(self) -> float | None:
        if not self._delayed:
            return None
        next_run = min(job.run_at for job in self._delayed.values())
        return max(0.0, next_run - self._clock())

    def _trim(self, ids: deque, retention: Retention) -> None:
        if retention.age is not None:
            cutoff = time.time() - retention.age
            while ids and self._jobs[ids[0]].finished_at < cutoff:
                del self._jobs[ids.popleft()]

        if retention.count is not None:
            while len(ids) > retention.count:
                del self._jobs[ids.popleft()]


@dataclass
class JobEvent:
    """Outcome of one attempt, emitted to listeners and the log."""
    kind: str  # "completed" or "failed"
    job_id: str
    queue: str
    job_type: JobType
    attempts_made: int
    duration_ms: int
    error: str | None = None
    retrying: bool = False


Processor = Callable[[Job], Awaitable[Any]]
Listener = Callable[[JobEvent], None]


class Worker:
    """Runs `concurrency` claim/process loops against one queue."""

    def __init__(self, queue: JobQueue, processor: Processor, concurrency: int = 5):
        self.queue = queue
        self.processor = processor
        self.concurrency = max(1, concurrency)
        self._listeners: list[Listener] = []
        self._tasks: list[asyncio.Task] = []
        self._idle: set[asyncio.Task] = set()
        self._accepting = False

    @property
    def is_running(self) -> bool:
        return self._accepting

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        self._accepting = True
        self._tasks = [
            asyncio.create_task(self._run(), name=f"{self.queue.name}-runner-{i}")
            for i in range(self.concurrency)
        ]

    def stop_accepting(self) -> None:
        """Stop claiming new jobs. Runners mid-job finish their current job."""
        self._accepting = False
        for task in list(self._idle):
            task.cancel()

    async def wait_drained(self) -> None:
        """Wait until every runner has exited."""
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def close(self) -> None:
        self.stop_accepting()
        await self.wait_drained()

    async def _run(self) -> None:
        task = asyncio.current_task()
        while self._accepting:
            # Runners are only cancelled while idle, before a job is taken
            self._idle.add(task)
            try:
                job = await self.queue.claim()
            finally:
                self._idle.discard(task)

            if job is None:
                return
            await self._process(job)

    async def _process(self, job: Job) -> None:
        logger.debug(
            f"Processing job {job.id}",
            extra={"job_id": job.id, "queue": job.queue, "attempt": job.attempts_made},
        )

        try:
            result = await self.processor(job)
        except Exception as e:
            retrying = await self.queue.fail(job, e)
            self._emit(JobEvent(
                kind="failed",
                job_id=job.id,
                queue=job.queue,
                job_type=job.type,
                attempts_made=job.attempts_made,
                duration_ms=self._elapsed_ms(job),
                error=str(e),
                retrying=retrying,
            ))
            return

        await self.queue.complete(job, result)
        self._emit(JobEvent(
            kind="completed",
            job_id=job.id,
            queue=job.queue,
            job_type=job.type,
            attempts_made=job.attempts_made,
            duration_ms=job.duration_ms or 0,
        ))

    @staticmethod
    def _elapsed_ms(job: Job) -> int:
        return int((time.time() - (job.processed_at or time.time())) * 1000)

    def _emit(self, event: JobEvent) -> None:
        fields = {
            "job_id": event.job_id,
            "queue": event.queue,
            "duration_ms": event.duration_ms,
            "attempts": event.attempts_made,
        }
        if event.kind == "completed":
            logger.info("Job completed", extra=fields)
        elif event.retrying:
            logger.warning(f"Job failed, will retry: {event.error}", extra={**fields, "error": event.error})
        else:
            logger.error(f"Job failed: {event.error}", extra={**fields, "error": event.error})

        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Job event listener failed: {e}", extra={"queue": event.queue, "error": str(e)})


def _coerce_options(options: dict) -> dict:
    """Turn nested dict values into Backoff/Retention. Unknown fields raise TypeError."""
    fields = dict(options)
    if isinstance(fields.get("backoff"), dict):
        fields["backoff"] = Backoff(**fields["backoff"])
    for name in ("remove_on_complete", "remove_on_fail"):
        if isinstance(fields.get(name), dict):
            fields[name] = Retention(**fields[name])
    return fields


class JobService:
    """Owns every queue and worker in the process."""

    def __init__(self, default_options: JobOptions | None = None, concurrency: int = 5):
        self.default_options = default_options or JobOptions()
        self.concurrency = concurrency
        self._queues: dict[str, JobQueue] = {}
        self._workers: dict[str, Worker] = {}
        self._listeners: list[Listener] = []

        for name in QUEUE_NAMES:
            self._queues[name] = JobQueue(name)
            logger.info(f"Queue initialized: {name}", extra={"queue": name})

    @property
    def queue_names(self) -> list[str]:
        return list(self._queues)

    def _require_queue(self, name: str) -> JobQueue:
        queue = self._queues.get(name)
        if queue is None:
            raise KeyError(f"Queue not found: {name}")
        return queue

    async def add_job(
        self,
        job_type: JobType,
        payload: dict | None = None,
        options: JobOptions | dict | None = None,
    ) -> Job:
        """
        Enqueue a job on the queue its type maps to.

        `options` may be a full JobOptions or a dict of fields overriding the
        service defaults. Nested backoff and retention fields may be dicts too.
        """
        if isinstance(options, JobOptions):
            job_options = options
        else:
            job_options = replace(self.default_options, **_coerce_options(options or {}))

        queue = self._require_queue(QUEUE_FOR_JOB[job_type])
        job = await queue.add(job_type, payload or {}, job_options)

        logger.info(
            f"Job added to queue {queue.name}",
            extra={"job_id": job.id, "job_type": job_type.value, "queue": queue.name},
        )
        return job

    def start_worker(self, queue_name: str, processor: Processor, concurrency: int | None = None) -> Worker:
        queue = self._require_queue(queue_name)
        if queue_name in self._workers:
            raise ValueError(f"Worker already running for queue: {queue_name}")

        worker = Worker(queue, processor, concurrency or self.concurrency)
        for listener in self._listeners:
            worker.add_listener(listener)
        worker.start()

        self._workers[queue_name] = worker
        logger.info(
            f"Worker started for {queue_name}",
            extra={"queue": queue_name, "concurrency": worker.concurrency},
        )
        return worker

    def add_listener(self, listener: Listener) -> None:
        """Receive JobEvents from current and future workers."""
        self._listeners.append(listener)
        for worker in self._workers.values():
            worker.add_listener(listener)

    def get_queue(self, name: str) -> JobQueue | None:
        return self._queues.get(name)

    def get_worker(self, name: str) -> Worker | None:
        return self._workers.get(name)

    def get_job(self, queue_name: str, job_id: str) -> Job | None:
        return self._require_queue(queue_name).get_job(job_id)

    async def pause_queue(self, name: str) -> None:
        await self._require_queue(name).pause()
        logger.info(f"Queue paused: {name}", extra={"queue": name})

    async def resume_queue(self, name: str) -> None:
        await self._require_queue(name).resume()
        logger.info(f"Queue resumed: {name}", extra={"queue": name})

    async def clean_queue(self, name: str, grace: float = 86400) -> dict[str, int]:
        """Drop completed jobs older than grace, failed jobs older than grace * 7."""
        queue = self._require_queue(name)
        completed = await queue.clean(grace, 100, JobState.COMPLETED)
        failed = await queue.clean(grace * 7, 100, JobState.FAILED)

        logger.info(
            f"Queue cleaned: {name}",
            extra={"queue": name, "grace": grace, "removed_completed": len(completed), "removed_failed": len(failed)},
        )
        return {"completed": len(completed), "failed": len(failed)}

    def get_queue_stats(self, name: str) -> dict[str, int]:
        return self._require_queue(name).counts()

    def get_all_queue_stats(self) -> dict[str, dict[str, int]]:
        return {name: queue.counts() for name, queue in self._queues.items()}

    async def close(self) -> None:
        """Stop every worker claiming, let in-flight jobs finish, then close queues."""
        logger.info("Closing job service...")

        for worker in self._workers.values():
            worker.stop_accepting()

        for name, worker in self._workers.items():
            await worker.wait_drained()
            logger.info(f"Worker closed: {name}", extra={"queue": name})

        for name, queue in self._queues.items():
            await queue.close()
            logger.info(f"Queue closed: {name}", extra={"queue": name})

        logger.info("Job service closed")
