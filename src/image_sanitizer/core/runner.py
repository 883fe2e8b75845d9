"""
Batch orchestration.

Each worker owns one file end to end: record -> fingerprint -> admission ->
pipeline -> verification -> replacement. Per-file failures are collected into
the FailureReport; only fatal errors escape ``BatchRunner.run``.
"""

import signal
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from image_sanitizer.core.fingerprint import FingerprintBuilder
from image_sanitizer.core.index import DuplicateIndex
from image_sanitizer.core.models import PipelineResult, RunSummary, StageStatus, TerminalState
from image_sanitizer.core.pipeline import SanitizationPipeline, StageFailed
from image_sanitizer.core.replacer import AtomicReplacer, sweep_stale_partials
from image_sanitizer.core.retry import OperationFailed, RetryController, RetryPolicy
from image_sanitizer.core.scanner import ImageScanner, validate_root
from image_sanitizer.core.scratch import ScratchArea, check_scratch_space
from image_sanitizer.core.verifier import IntegrityVerifier
from image_sanitizer.errors import Cancelled, FailureReason, FileFailure, reason_for
from image_sanitizer.tools.registry import ToolSet
from image_sanitizer.utils.config import Config
from image_sanitizer.utils.hashing import compute_sha256
from image_sanitizer.utils.logger import setup_logger
from image_sanitizer.utils.timeouts import abandoned_count

logger = setup_logger(__name__)

RECORD = "record"
FINGERPRINT = "fingerprint"
DELETE_DUPLICATE = "delete-duplicate"
REPLACE = "replace"

# Duplicate kind of a file whose sanitized bytes were already committed
SANITIZED = "sanitized"

# How often the main thread re-checks for an interrupt while waiting on workers
_POLL_SECONDS = 0.2


class RunObserver:
    """Passive listener for run progress; never influences pipeline decisions."""

    def on_start(self, total: int) -> None:
        pass

    def on_result(self, result: PipelineResult) -> None:
        pass

    def on_finish(self, summary: RunSummary) -> None:
        pass


@dataclass
class _RunContext:
    """Components shared by the workers of one run."""

    tools: ToolSet
    index: DuplicateIndex
    retry: RetryController
    fingerprinter: FingerprintBuilder
    pipeline: SanitizationPipeline
    replacer: AtomicReplacer
    scratch_dir: Optional[Path]
    secure_scratch: bool


class BatchRunner:
    """Sanitizes and deduplicates every image directly inside one directory."""

    def __init__(
        self,
        config: Config,
        tools: Optional[ToolSet] = None,
        dry_run: bool = False,
        workers: Optional[int] = None,
        observers: Optional[List[RunObserver]] = None,
        show_scan_progress: bool = False,
    ):
        """
        Initialize the runner.

        Args:
            config: Configuration instance
            tools: Pre-resolved tools (resolved from config when omitted)
            dry_run: Classify and sanitize in scratch only; change nothing on disk
            workers: Worker pool size (config value when omitted)
            observers: Progress listeners
            show_scan_progress: Show the scanner's own progress bar
        """
        self.config = config
        self.tools = tools
        self.dry_run = dry_run
        self.workers = max(1, workers or config.get_workers())
        self.observers: List[RunObserver] = list(observers or [])
        self.show_scan_progress = show_scan_progress
        self.cancel_event = threading.Event()
        self._futures: List[Future] = []

    def add_observer(self, observer: RunObserver) -> None:
        self.observers.append(observer)

    def cancel(self) -> None:
        """Request cancellation; safe to call from a signal handler."""
        self.cancel_event.set()

    def run(self, root: Path) -> RunSummary:
        """
        Process ``root``.

        Raises:
            InvalidRootError: Root missing, not a directory, or not accessible
            MissingToolError: No usable metadata or transform tool
            ScratchSpaceError: Scratch area unusable or too small
        """
        root = validate_root(Path(root)).resolve()
        tools = self.tools or ToolSet.from_config(self.config)
        summary = RunSummary(root=root, dry_run=self.dry_run)

        if not self.dry_run:
            sweep_stale_partials(root, tools.deleter)

        files = ImageScanner(self.config, show_progress=self.show_scan_progress).scan_directory(root)
        scratch_dir = self.config.get_scratch_dir()
        check_scratch_space(scratch_dir, _sizes(files), self.workers)

        context = self._build_context(tools, scratch_dir)
        logger.info(
            f"Processing {len(files)} files with {self.workers} workers"
            + (" (dry run)" if self.dry_run else "")
        )

        self._notify("on_start", len(files))
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="sanitizer") as executor:
            self._futures = [
                executor.submit(self._process, ticket, path, context)
                for ticket, path in enumerate(files)
            ]
            self._collect(summary)

        summary.results.sort(key=lambda r: str(r.input_path))
        summary.interrupted = self.cancel_event.is_set()
        if summary.interrupted:
            logger.warning("Run interrupted; unfinished files were left untouched")
        stragglers = abandoned_count()
        if stragglers:
            logger.warning(f"{stragglers} timed-out tool calls are still running in the background")
        self._notify("on_finish", summary)
        return summary

    def _build_context(self, tools: ToolSet, scratch_dir: Optional[Path]) -> _RunContext:
        retry = RetryController(RetryPolicy.from_config(self.config), self.cancel_event)
        verifier = IntegrityVerifier(tools.transform)
        return _RunContext(
            tools=tools,
            index=DuplicateIndex(),
            retry=retry,
            fingerprinter=FingerprintBuilder(self.config, tools.metadata),
            pipeline=SanitizationPipeline(self.config, tools, verifier, retry),
            replacer=AtomicReplacer(tools.deleter, retry, self.config.get("naming", "content")),
            scratch_dir=scratch_dir,
            secure_scratch=bool(self.config.get("secure_delete.scratch", True)),
        )

    def _collect(self, summary: RunSummary) -> None:
        pending = set(self._futures)
        cancelled_pending = False
        while pending:
            if self.cancel_event.is_set() and not cancelled_pending:
                # Files not yet started are never started
                for future in pending:
                    future.cancel()
                cancelled_pending = True
            done, pending = wait(pending, timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED)
            for future in done:
                if future.cancelled():
                    continue
                result = future.result()
                summary.results.append(result)
                if result.failed:
                    summary.failures.add_result(result)
                self._notify("on_result", result)

    def _notify(self, event: str, payload: Any) -> None:
        for observer in self.observers:
            getattr(observer, event)(payload)

    # Per-file work

    def _process(self, ticket: int, path: Path, run: _RunContext) -> PipelineResult:
        """Take one file to a terminal state. Never raises."""
        result = PipelineResult(input_path=path)
        try:
            self._process_file(ticket, path, run, result)
        except Cancelled as e:
            _fail(result, FailureReason.CANCELLED, str(e))
        except StageFailed as e:
            _fail(result, reason_for(e.failure.error), str(e.failure.error))
        except FileFailure as e:
            _fail(result, e.reason, str(e))
        except Exception as e:
            logger.exception(f"Unexpected error processing {path.name}")
            _fail(result, reason_for(e), str(e))
        finally:
            run.index.finish_turn(ticket)

        if result.failed:
            logger.warning(f"Failed {path.name}: {result.reason.value}: {result.message}")
        return result

    def _process_file(self, ticket: int, path: Path, run: _RunContext, result: PipelineResult) -> None:
        record = self._stage(run, result, RECORD, run.fingerprinter.build_record, path)
        result.bytes_before = record.size

        fingerprint = None
        if run.index.exact_canonical(ticket, record.content_hash, self.cancel_event) is None:
            fingerprint = self._stage(run, result, FINGERPRINT, run.fingerprinter.fingerprint, record)
        else:
            result.record_stage(FINGERPRINT, StageStatus.SKIPPED, detail="exact duplicate")

        admission = run.index.admit_in_turn(
            ticket, path, fingerprint, record.content_hash, self.cancel_event
        )

        if not admission.admitted:
            result.duplicate_of = admission.canonical
            result.duplicate_kind = admission.kind
            if self.dry_run:
                result.record_stage(DELETE_DUPLICATE, StageStatus.SKIPPED, detail="dry run")
            else:
                self._delete_duplicate(run, result)
            result.state = TerminalState.SKIPPED_DUPLICATE
            return

        if run.replacer.is_already_sanitized(record):
            result.final_path = path
            result.bytes_after = record.size
            result.state = TerminalState.ALREADY_SANITIZED
            return

        deleter = run.tools.deleter if run.secure_scratch else None
        with ScratchArea(run.scratch_dir, deleter, label=path.name) as scratch:
            candidate = run.pipeline.run(record, scratch, result)
            result.bytes_after = candidate.stat().st_size

            if self.dry_run:
                result.final_path = run.replacer.destination_for(record, compute_sha256(candidate))
                result.state = TerminalState.PLANNED
                return

            run.retry.check_cancelled()
            try:
                placement = run.replacer.commit(record, candidate)
            except FileFailure as e:
                result.record_stage(REPLACE, StageStatus.FAILED, detail=str(e))
                raise

            if placement.existing:
                # Differed from another file only in what was stripped
                result.record_stage(
                    REPLACE, StageStatus.OK, tool=run.replacer.naming, detail="identical output exists"
                )
                result.duplicate_of = placement.path
                result.duplicate_kind = SANITIZED
                result.state = TerminalState.SKIPPED_DUPLICATE
                return
            result.final_path = placement.path
            result.record_stage(REPLACE, StageStatus.OK, tool=run.replacer.naming)
            result.state = TerminalState.COMMITTED

    def _stage(
        self, run: _RunContext, result: PipelineResult, stage: str, operation: Callable, *args
    ):
        try:
            attempted = run.retry.call(operation, *args, label=f"{stage} {result.input_path.name}")
        except OperationFailed as e:
            result.record_stage(stage, StageStatus.FAILED, e.attempts, detail=str(e.error))
            raise StageFailed(stage, e) from e.error
        result.record_stage(stage, StageStatus.OK, attempted.attempts)
        return attempted.value

    def _delete_duplicate(self, run: _RunContext, result: PipelineResult) -> None:
        # Destruction is never retried
        try:
            method = run.tools.deleter.delete(result.input_path)
        except OSError as e:
            result.record_stage(DELETE_DUPLICATE, StageStatus.FAILED, detail=str(e))
            raise FileFailure(
                result.input_path, FailureReason.DELETE_FAILED, f"cannot delete duplicate: {e}"
            ) from e
        result.record_stage(DELETE_DUPLICATE, StageStatus.OK, tool=method)
        logger.debug(
            f"Deleted {result.input_path.name} ({result.duplicate_kind} duplicate of "
            f"{result.duplicate_of.name})"
        )


def _fail(result: PipelineResult, reason: FailureReason, message: str) -> None:
    result.state = TerminalState.FAILED
    result.reason = reason
    result.message = message
    result.final_path = None


def _sizes(files: List[Path]) -> List[int]:
    sizes = []
    for path in files:
        try:
            sizes.append(path.stat().st_size)
        except OSError:
            sizes.append(0)
    return sizes


@contextmanager
def handle_interrupts(runner: BatchRunner) -> Iterator[None]:
    """Route SIGINT/SIGTERM to ``runner.cancel`` for the duration of the block."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _handler(signum, frame):
        logger.warning(f"Received {signal.Signals(signum).name}, finishing in-flight replacements")
        runner.cancel()

    previous: Dict[int, Any] = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _handler)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
