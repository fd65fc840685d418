"""Concurrent scenario runner.

Runs scenarios on a fixed pool of workers. Each worker takes one scenario at
a time through Before, its steps and teardown, then picks up the next one.
Steps receive the scenario's ScenarioContext and return the context the next
step should see.
"""

from __future__ import annotations

import asyncio
import inspect
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from .errors import CancellationError, TeardownError
from .orchestrator import Orchestrator
from .shared.logging import get_logger, log_context
from .state import ScenarioContext

logger = get_logger(__name__)

DEFAULT_CONCURRENCY = 4

Step = Callable[[ScenarioContext], Any]
BeforeHook = Callable[[Orchestrator, "Scenario", ScenarioContext], Any]
AfterHook = Callable[[Orchestrator, "Scenario", ScenarioContext, "BaseException | None"], Any]


class ScenarioStatus(Enum):
    """Outcome of one scenario."""

    PASSED = "passed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


@dataclass
class Scenario:
    """One independent unit of a run: a name and its ordered steps."""

    name: str
    steps: list[Step] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class ScenarioResult:
    """What happened to one scenario."""

    scenario: Scenario
    status: ScenarioStatus
    error: BaseException | None = None
    failed_step: str | None = None
    teardown_errors: list[BaseException] = field(default_factory=list)
    context: ScenarioContext | None = None
    duration: float = 0.0


@dataclass
class SuiteResult:
    """Results of every scenario, in submission order."""

    results: list[ScenarioResult] = field(default_factory=list)

    def by_status(self, status: ScenarioStatus) -> list[ScenarioResult]:
        """Results with the given status."""
        return [r for r in self.results if r.status is status]

    @property
    def passed(self) -> bool:
        """Whether every scenario passed."""
        return all(r.status is ScenarioStatus.PASSED for r in self.results)

    @property
    def exit_code(self) -> int:
        """Process exit code for the run (0 when everything passed)."""
        return 0 if self.passed else 1

    def summary(self) -> str:
        """One-line summary, e.g. ``3 scenarios (2 passed, 1 failed)``."""
        counts = [
            f"{len(self.by_status(status))} {status.value}"
            for status in ScenarioStatus
            if self.by_status(status)
        ]
        return f"{len(self.results)} scenarios ({', '.join(counts) or 'none'})"


async def _call(func: Callable[..., Any], *args: Any) -> Any:
    result = func(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _step_name(step: Step) -> str:
    return getattr(step, "__name__", repr(step))


def _next_context(returned: Any, current: ScenarioContext) -> ScenarioContext:
    # A hook or step returning None leaves the context unchanged
    if returned is None:
        return current
    if not isinstance(returned, ScenarioContext):
        raise TypeError(f"Expected a ScenarioContext, got {type(returned).__name__}")
    return returned


class ScenarioSuite:
    """Runs scenarios concurrently against one Orchestrator."""

    def __init__(
        self,
        orchestrator: Orchestrator,
        before: BeforeHook | None = None,
        after: AfterHook | None = None,
        concurrency: int | None = None,
        run_timeout: float | None = None,
    ):
        """Initialize the suite.

        Args:
            orchestrator: Owner of the run's resource groups
            before: Hook provisioning a scenario; returns the enriched context
            after: Hook called after the steps, before the group is torn down
            concurrency: Parallel workers; 0 runs scenarios one by one
                (default: orchestrator config)
            run_timeout: Seconds after which the run is cancelled
        """
        self.orchestrator = orchestrator
        self.before = before
        self.after = after
        if concurrency is None:
            concurrency = orchestrator.config.concurrency
        self.concurrency = concurrency
        self.run_timeout = run_timeout

    @property
    def workers(self) -> int:
        """Number of worker tasks (at least one)."""
        return max(self.concurrency, 1)

    async def run(self, scenarios: Iterable[Scenario]) -> SuiteResult:
        """Run every scenario and collect the results.

        When the run timeout expires, workers are cancelled: the scenarios in
        flight are torn down and reported CANCELLED, the ones never started
        are reported SKIPPED.
        """
        scenarios = list(scenarios)
        results: dict[str, ScenarioResult] = {}
        teardowns: set[asyncio.Task] = set()
        queue: asyncio.Queue[Scenario] = asyncio.Queue()
        for scenario in scenarios:
            queue.put_nowait(scenario)

        workers = [
            asyncio.create_task(self._worker(queue, results, teardowns), name=f"scenario-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info("suite_started", scenarios=len(scenarios), workers=len(workers))

        try:
            done, pending = await asyncio.wait(workers, timeout=self.run_timeout)
        except asyncio.CancelledError:
            await self._cancel(workers)
            await self._drain(teardowns)
            raise

        if pending:
            logger.warning("suite_timeout", timeout=self.run_timeout, running=len(pending))
            await self._cancel(pending)
        # A worker cancelled mid-teardown leaves its teardown task running
        await self._drain(teardowns)

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()

        suite_result = SuiteResult(
            [
                results.get(s.id) or ScenarioResult(scenario=s, status=ScenarioStatus.SKIPPED)
                for s in scenarios
            ]
        )
        logger.info("suite_finished", summary=suite_result.summary())
        return suite_result

    def run_sync(self, scenarios: Iterable[Scenario]) -> SuiteResult:
        """Synchronous wrapper for run."""
        return asyncio.run(self.run(scenarios))

    async def _cancel(self, tasks: Iterable[asyncio.Task]) -> None:
        tasks = list(tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _drain(self, teardowns: set[asyncio.Task]) -> None:
        if teardowns:
            await asyncio.gather(*teardowns, return_exceptions=True)

    async def _worker(
        self,
        queue: asyncio.Queue[Scenario],
        results: dict[str, ScenarioResult],
        teardowns: set[asyncio.Task],
    ) -> None:
        while True:
            try:
                scenario = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            with log_context(scenario=scenario.name, scenario_id=scenario.id):
                await self._run_scenario(scenario, results, teardowns)

    async def _run_scenario(
        self,
        scenario: Scenario,
        results: dict[str, ScenarioResult],
        teardowns: set[asyncio.Task],
    ) -> None:
        result = ScenarioResult(scenario=scenario, status=ScenarioStatus.PASSED)
        results[scenario.id] = result
        ctx = ScenarioContext(scenario.id)
        current = "before"
        started = time.monotonic()
        logger.debug("scenario_started")

        try:
            if self.before is not None:
                ctx = _next_context(await _call(self.before, self.orchestrator, scenario, ctx), ctx)
            for step in scenario.steps:
                current = _step_name(step)
                ctx = _next_context(await _call(step, ctx), ctx)
        except asyncio.CancelledError:
            result.status = ScenarioStatus.CANCELLED
            result.error = CancellationError(
                message=f"Scenario '{scenario.name}' cancelled during {current}",
                data={"scenario_id": scenario.id, "step": current},
            )
            result.failed_step = current
            logger.warning("scenario_cancelled", step=current)
            raise
        except Exception as e:
            result.status = ScenarioStatus.FAILED
            result.error = e
            result.failed_step = current
            logger.warning("scenario_failed", step=current, error=str(e))
        finally:
            result.context = ctx
            teardown = asyncio.create_task(
                self._finish(scenario, ctx, result, started), name=f"scenario-teardown-{scenario.id}"
            )
            teardowns.add(teardown)
            await asyncio.shield(teardown)

    async def _finish(
        self, scenario: Scenario, ctx: ScenarioContext, result: ScenarioResult, started: float
    ) -> None:
        if self.after is not None:
            try:
                await _call(self.after, self.orchestrator, scenario, ctx, result.error)
            except Exception as e:
                logger.error("after_hook_failed", error=str(e))
                result.teardown_errors.append(e)

        try:
            await self.orchestrator.teardown(scenario.id)
        except TeardownError as e:
            logger.error("scenario_teardown_failed", error=str(e))
            result.teardown_errors.append(e)

        result.duration = time.monotonic() - started
        logger.debug("scenario_finished", status=result.status.value, duration=round(result.duration, 3))
