from __future__ import annotations

import logging
import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_LIMIT = 20


class RunState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    FILTERING = "filtering"
    RECONCILING = "reconciling"
    WRITING = "writing"
    REPORTING = "reporting"
    DONE = "done"


class Outcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    SKIPPED_INCOMPLETE = "skipped_incomplete"


class SyncResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    job: str
    success: bool
    status: str
    total_fetched: int = 0
    total_excluded: int = 0
    total_candidates: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped_duplicate: int = 0
    skipped_incomplete: int = 0
    records_written: int = 0
    details: dict[str, int] = Field(default_factory=dict)
    duplicates: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    error_count: int = 0
    duplicate_count: int = 0
    duration: str = "0.00s"

    @property
    def http_status(self) -> int:
        if not self.success:
            return 500
        return 207 if self.errors else 200


class SyncReportBuilder:
    """Accumulates one run's counters and bounded samples and renders the final ``SyncResult``.

    ``success`` is ``error_count == 0 or records_written > 0``: a partially successful run is still
    a success at the top level, and ``status`` tells the two apart.
    """

    def __init__(self, job: str, sample_limit: int = DEFAULT_SAMPLE_LIMIT) -> None:
        self.job = job
        self.sample_limit = sample_limit
        self.state = RunState.IDLE
        self.total_fetched = 0
        self.total_excluded = 0
        self.outcomes: dict[Outcome, int] = {outcome: 0 for outcome in Outcome}
        self.records_written = 0
        self.details: dict[str, int] = {}
        self.errors: list[str] = []
        self.duplicates: list[str] = []
        self.error_count = 0
        self.duplicate_count = 0
        self.aborted = False
        self._started = time.perf_counter()
        self._result: SyncResult | None = None

    def advance(self, state: RunState) -> None:
        if self.state is RunState.DONE:
            raise RuntimeError(f"{self.job} report is already finished")
        logger.debug("%s: %s -> %s", self.job, self.state.value, state.value)
        self.state = state

    def fetched(self, count: int) -> None:
        self.total_fetched += count

    def excluded(self, count: int) -> None:
        self.total_excluded += count

    def record(self, outcome: Outcome) -> None:
        self.outcomes[outcome] += 1

    def wrote(self, count: int = 1) -> None:
        self.records_written += count

    def count(self, name: str, amount: int = 1) -> None:
        self.details[name] = self.details.get(name, 0) + amount

    def error(self, message: str) -> None:
        self.error_count += 1
        if len(self.errors) < self.sample_limit:
            self.errors.append(message)

    def duplicate(self, message: str) -> None:
        self.duplicate_count += 1
        if len(self.duplicates) < self.sample_limit:
            self.duplicates.append(message)

    def abort(self, exc: BaseException) -> None:
        self.aborted = True
        self.error_count += 1
        message = str(exc) or exc.__class__.__name__
        # The top-level error is always reported, even past the sample cap.
        if len(self.errors) >= self.sample_limit:
            self.errors = self.errors[: self.sample_limit - 1]
        self.errors.append(message)

    @property
    def total_candidates(self) -> int:
        return sum(self.outcomes.values())

    def build(self) -> SyncResult:
        if self._result is not None:
            return self._result

        if self.state is not RunState.REPORTING:
            self.advance(RunState.REPORTING)
        success = not self.aborted and (self.error_count == 0 or self.records_written > 0)
        if not success:
            status = "failure"
        elif self.error_count:
            status = "partial"
        else:
            status = "success"

        self._result = SyncResult(
            job=self.job,
            success=success,
            status=status,
            total_fetched=self.total_fetched,
            total_excluded=self.total_excluded,
            total_candidates=self.total_candidates,
            succeeded=self.outcomes[Outcome.SUCCEEDED],
            failed=self.outcomes[Outcome.FAILED],
            skipped_duplicate=self.outcomes[Outcome.SKIPPED_DUPLICATE],
            skipped_incomplete=self.outcomes[Outcome.SKIPPED_INCOMPLETE],
            records_written=self.records_written,
            details=dict(self.details),
            duplicates=list(self.duplicates),
            errors=list(self.errors),
            error_count=self.error_count,
            duplicate_count=self.duplicate_count,
            duration=f"{time.perf_counter() - self._started:.2f}s",
        )
        self.advance(RunState.DONE)
        logger.info(
            "%s finished in %s: %s candidates, %s succeeded, %s failed, %s duplicates, %s incomplete, %s errors",
            self.job,
            self._result.duration,
            self._result.total_candidates,
            self._result.succeeded,
            self._result.failed,
            self._result.skipped_duplicate,
            self._result.skipped_incomplete,
            self._result.error_count,
        )
        return self._result
