"""
Parallel Runner.

Runs test suites on a bounded pool of worker threads. Each test goes through
the lifecycle coordinator; failed tests are re-run while the retry policy
allows it. Provides the high-level API and a decorator-based registry.
"""

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from loguru import logger

from webharness.config import HarnessConfig
from webharness.executor.isolation import ExecutionScope, get_current_scope
from webharness.executor.lifecycle import LifecycleCoordinator
from webharness.executor.retry import RetryPolicy
from webharness.executor.sessions import Driver, SessionRegistry
from webharness.executor.suite import SuiteController
from webharness.executor.types import (
    ExecutionRecord,
    SuiteSummary,
    TestBody,
    TestDescriptor,
    TestStatus,
)
from webharness.reporting import ReportSink


@dataclass
class TestCase:
    """
    One registered test.

    Attributes:
        descriptor: Identity and metadata.
        body: Callable receiving a TestContext.
        priority: Higher priority tests are submitted first.
        repeat: Number of parallel invocations of the same identity.
    """
    descriptor: TestDescriptor
    body: TestBody
    priority: int = 0
    repeat: int = 1

    __test__ = False

    def __post_init__(self) -> None:
        if self.repeat <= 0:
            raise ValueError(f"repeat must be positive, got {self.repeat}")


@dataclass
class TestSuite:
    """
    Collection of test cases to run together.

    Attributes:
        name: Suite name; prefixes the test identities.
        tests: Test cases in this suite.
        setup: Optional callable run before the suite's tests are submitted.
        teardown: Optional callable run after every test has finished.
    """
    name: str
    tests: List[TestCase] = field(default_factory=list)
    setup: Optional[Callable[[], None]] = None
    teardown: Optional[Callable[[], None]] = None

    __test__ = False

    def add_test(
        self,
        name: str,
        body: TestBody,
        description: Optional[str] = None,
        test_id: Optional[str] = None,
        priority: int = 0,
        repeat: int = 1,
        tags: Tuple[str, ...] = (),
    ) -> "TestSuite":
        """
        Add a test to the suite.

        Args:
            name: Test name shown in the report.
            body: Callable receiving a TestContext.
            description: Optional description shown under the test name.
            test_id: Retry identity. Defaults to "<suite>:<name>".
            priority: Test priority (higher = submitted first).
            repeat: Parallel invocations sharing the same identity.
            tags: Free-form labels.

        Returns:
            Self for chaining.
        """
        descriptor = TestDescriptor(
            test_id=test_id or f"{self.name}:{name}",
            name=name,
            description=description or "No description provided",
            tags=tuple(tags),
        )
        self.tests.append(TestCase(descriptor, body, priority=priority, repeat=repeat))
        return self


@dataclass
class RunResult:
    """
    Result of a runner execution.

    Attributes:
        summary: Suite summary from the controller (report and archive paths).
        records: Final record of every test invocation.
        attempts: Every execution record, retries included.
        start_time: When execution started.
        end_time: When execution ended.
    """
    summary: Optional[SuiteSummary] = None
    records: List[ExecutionRecord] = field(default_factory=list)
    attempts: List[ExecutionRecord] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def _count(self, status: TestStatus) -> int:
        return sum(1 for r in self.records if r.status == status)

    @property
    def total_passed(self) -> int:
        return self._count(TestStatus.PASSED)

    @property
    def total_failed(self) -> int:
        return self._count(TestStatus.FAILED)

    @property
    def total_skipped(self) -> int:
        return self._count(TestStatus.SKIPPED)

    @property
    def total_retries(self) -> int:
        return len(self.attempts) - len(self.records)

    @property
    def total_duration_ms(self) -> int:
        if self.start_time is None or self.end_time is None:
            return 0
        return int((self.end_time - self.start_time).total_seconds() * 1000)

    @property
    def success(self) -> bool:
        """Check if no test ended failed."""
        return self.total_failed == 0

    def summary_text(self) -> str:
        """Get a summary string of the results."""
        return (
            f"Tests: {self.total_passed}/{len(self.records)} passed, "
            f"{self.total_failed} failed, {self.total_skipped} skipped, "
            f"{self.total_retries} retries, Duration: {self.total_duration_ms}ms"
        )


class ParallelRunner:
    """
    High-level runner for executing test suites in parallel.

    Example:
        runner = ParallelRunner(HarnessConfig(max_workers=4), driver=ChromeDriver())

        suite = TestSuite(name="login")
        suite.add_test("test_valid_login", test_valid_login)
        suite.add_test("test_invalid_password", test_invalid_password)

        result = runner.run(suite)
        print(result.summary_text())
    """

    def __init__(
        self,
        config: Optional[HarnessConfig] = None,
        driver: Optional[Driver] = None,
        sink: Optional[ReportSink] = None,
    ) -> None:
        """
        Initialize the parallel runner.

        Args:
            config: Harness configuration.
            driver: Automation backend used to open one session per test.
            sink: Report sink. Defaults to the configured report format.
        """
        if driver is None:
            raise ValueError("A driver is required to open sessions")
        self.config = config or HarnessConfig()
        self.driver = driver
        self.sink = sink
        self.retry = RetryPolicy(self.config.max_retry_attempts)

    def run(
        self,
        *suites: TestSuite,
        on_test_complete: Optional[Callable[[ExecutionRecord], None]] = None,
    ) -> RunResult:
        """
        Run one or more test suites into a single report.

        Args:
            *suites: Test suites to run.
            on_test_complete: Optional callback for each execution record,
                retries included. Called from worker threads.

        Returns:
            RunResult with every record and the suite summary.

        Raises:
            SuiteInitError: If the report directories cannot be prepared.
        """
        result = RunResult(start_time=datetime.now())
        controller = SuiteController(self.config, self.sink)
        state = controller.on_suite_start()
        self.retry.reset()
        sessions = SessionRegistry(self.driver)
        coordinator = LifecycleCoordinator(sessions, state, self.config)

        try:
            with ThreadPoolExecutor(
                max_workers=self.config.max_workers,
                thread_name_prefix="worker",
            ) as pool:
                for suite in suites:
                    self._run_suite(suite, pool, coordinator, result, on_test_complete)
        finally:
            sessions.close_all()
            result.summary = controller.on_suite_finish()
            result.end_time = datetime.now()

        logger.info(f"All suites completed: {result.summary_text()}")
        return result

    def _run_suite(
        self,
        suite: TestSuite,
        pool: ThreadPoolExecutor,
        coordinator: LifecycleCoordinator,
        result: RunResult,
        on_test_complete: Optional[Callable[[ExecutionRecord], None]],
    ) -> None:
        logger.info(f"Running suite: {suite.name} ({len(suite.tests)} test(s))")

        cases = sorted(suite.tests, key=lambda c: c.priority, reverse=True)

        if suite.setup:
            try:
                suite.setup()
            except Exception as e:
                logger.error(f"Suite setup failed for {suite.name}: {e}")
                reason = f"Suite setup failed: {e}"
                self._skip_suite(cases, reason, coordinator, result, on_test_complete)
                return

        futures: Dict[Future, TestCase] = {}
        for case in cases:
            for _ in range(case.repeat):
                future = pool.submit(self._run_case, coordinator, case, on_test_complete)
                futures[future] = case

        # Joining every future here is what lets the controller flush safely
        for future in as_completed(futures):
            case = futures[future]
            try:
                attempts = future.result()
            except Exception as e:
                logger.error(f"Worker crashed while running {case.descriptor.name}: {e}")
                continue
            result.attempts.extend(attempts)
            result.records.append(attempts[-1])

        if suite.teardown:
            try:
                suite.teardown()
            except Exception as e:
                logger.error(f"Suite teardown failed for {suite.name}: {e}")

    def _skip_suite(
        self,
        cases: List[TestCase],
        reason: str,
        coordinator: LifecycleCoordinator,
        result: RunResult,
        on_test_complete: Optional[Callable[[ExecutionRecord], None]],
    ) -> None:
        """Report every invocation of a suite that could not be set up as skipped."""
        for case in cases:
            for _ in range(case.repeat):
                record = coordinator.skip(case.descriptor, reason)
                result.attempts.append(record)
                result.records.append(record)
                self._notify(on_test_complete, record)

    def _run_case(
        self,
        coordinator: LifecycleCoordinator,
        case: TestCase,
        on_test_complete: Optional[Callable[[ExecutionRecord], None]],
    ) -> List[ExecutionRecord]:
        """Run one invocation, re-running it while the retry policy allows."""
        attempts: List[ExecutionRecord] = []
        attempt = 1
        while True:
            record = coordinator.execute(case.descriptor, case.body, attempt=attempt)
            attempts.append(record)
            self._notify(on_test_complete, record)
            if not record.failed or not self.retry.claim_retry(case.descriptor.test_id):
                return attempts
            attempt += 1

    @staticmethod
    def _notify(
        on_test_complete: Optional[Callable[[ExecutionRecord], None]],
        record: ExecutionRecord,
    ) -> None:
        if on_test_complete is None:
            return
        try:
            on_test_complete(record)
        except Exception as e:
            logger.warning(f"on_test_complete callback failed: {e}")


# =============================================================================
# Decorator-based test definition
# =============================================================================

_registered_tests: Dict[str, List[TestCase]] = {}


def test(
    name: Optional[str] = None,
    suite: str = "default",
    description: Optional[str] = None,
    priority: int = 0,
    repeat: int = 1,
    tags: Tuple[str, ...] = (),
):
    """
    Decorator to register a test function.

    Args:
        name: Test name (uses function name if not specified).
        suite: Suite name to add the test to.
        description: Optional description (uses the docstring if not specified).
        priority: Test priority.
        repeat: Parallel invocations of the same test.
        tags: Free-form labels.

    Example:
        @test(suite="login", description="Valid credentials reach the dashboard")
        def test_valid_login(ctx):
            ctx.log_step("Open login page")
            ...
            ctx.log_step_pass("Dashboard visible")
    """
    def decorator(func: TestBody) -> TestBody:
        test_name = name or func.__name__
        doc = (func.__doc__ or "").strip().splitlines()
        descriptor = TestDescriptor(
            test_id=f"{suite}:{test_name}",
            name=test_name,
            description=description or (doc[0] if doc else "No description provided"),
            tags=tuple(tags),
        )
        _registered_tests.setdefault(suite, []).append(
            TestCase(descriptor, func, priority=priority, repeat=repeat)
        )
        return func

    return decorator


test.__test__ = False


def get_registered_tests(suite: Optional[str] = None) -> Dict[str, List[TestCase]]:
    """
    Get registered tests.

    Args:
        suite: Optional suite name to filter by.

    Returns:
        Dict mapping suite names to test cases.
    """
    if suite:
        return {suite: list(_registered_tests.get(suite, []))}
    return {name: list(cases) for name, cases in _registered_tests.items()}


def clear_registered_tests() -> None:
    _registered_tests.clear()


def run_registered_tests(
    driver: Driver,
    suite: Optional[str] = None,
    config: Optional[HarnessConfig] = None,
    sink: Optional[ReportSink] = None,
) -> RunResult:
    """
    Run all registered tests.

    Args:
        driver: Automation backend.
        suite: Optional suite name to run (runs all if not specified).
        config: Optional harness configuration.
        sink: Optional report sink.

    Returns:
        RunResult with test results.
    """
    suites = [
        TestSuite(name=suite_name, tests=cases)
        for suite_name, cases in get_registered_tests(suite).items()
        if cases
    ]
    return ParallelRunner(config, driver=driver, sink=sink).run(*suites)


def get_test_scope() -> Optional[ExecutionScope]:
    """
    Get the current test's execution scope.

    Use this within a test body to access isolated test data.

    Example:
        def test_create_user(ctx):
            user_id = get_test_scope().unique_id("user")
    """
    return get_current_scope()
