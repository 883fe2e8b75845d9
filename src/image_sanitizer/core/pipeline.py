"""
Sanitization pipeline: strip -> re-encode -> optimize.

Every stage reads the previous stage's output and writes a new file in the
worker's scratch area. The admitted original is only ever read (once, to make
the working copy).
"""

import shutil
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from image_sanitizer.core.models import ImageRecord, PipelineResult, StageStatus
from image_sanitizer.core.retry import OperationFailed, RetryController
from image_sanitizer.core.scratch import ScratchArea
from image_sanitizer.core.verifier import IntegrityVerifier
from image_sanitizer.errors import IntegrityError, ToolTimeout
from image_sanitizer.formats import canonical_extension
from image_sanitizer.tools.optimizers import Optimizer
from image_sanitizer.tools.registry import ToolSet
from image_sanitizer.tools.transform import ReencodeOptions
from image_sanitizer.utils.config import Config
from image_sanitizer.utils.logger import setup_logger

logger = setup_logger(__name__)

COPY = "copy"
STRIP = "strip"
REENCODE = "reencode"
OPTIMIZE = "optimize"
VERIFY = "verify"


class StageFailed(Exception):
    """A mandatory stage failed for good; wraps the retry outcome."""

    def __init__(self, stage: str, failure: OperationFailed):
        super().__init__(f"{stage}: {failure.error}")
        self.stage = stage
        self.failure = failure


class SanitizationPipeline:
    """Runs the ordered stages on an isolated working copy of one admitted file."""

    def __init__(
        self,
        config: Config,
        tools: ToolSet,
        verifier: IntegrityVerifier,
        retry: RetryController,
    ):
        self.tools = tools
        self.verifier = verifier
        self.retry = retry
        self.reencode_quality = int(config.get("reencode.jpeg_quality", 95))
        self.allow_lossy = bool(config.get("optimize.allow_lossy", True))
        self.qualities = {
            "JPEG": int(config.get("optimize.jpeg_quality", 80)),
            "PNG": int(config.get("optimize.png_quality", 80)),
            "WEBP": int(config.get("optimize.webp_quality", 80)),
        }
        self.adaptive_jpeg = bool(config.get("optimize.adaptive_jpeg", False))
        self.jpeg_fallback_quality = int(config.get("optimize.jpeg_fallback_quality", 75))

    def run(self, record: ImageRecord, scratch: ScratchArea, result: PipelineResult) -> Path:
        """
        Produce a verified candidate for ``record`` inside ``scratch``.

        Returns:
            Path of the verified candidate (still inside the scratch area)

        Raises:
            StageFailed: A mandatory stage exhausted its retries
            IntegrityError: The final candidate failed verification
            Cancelled: An interrupt was requested
        """
        suffix = canonical_extension(record.format)
        options = ReencodeOptions(format=record.format, jpeg_quality=self.reencode_quality)

        def copy_input(out: Path) -> Optional[str]:
            shutil.copyfile(record.path, out)
            return None

        def strip(out: Path) -> Optional[str]:
            return self.tools.metadata.strip(working, out)

        def reencode(out: Path) -> Optional[str]:
            self.tools.transform.reencode(stripped, out, options)
            return self.tools.transform.name

        working = self._mandatory(result, scratch, COPY, suffix, copy_input)
        result.working_path = working
        stripped = self._mandatory(result, scratch, STRIP, suffix, strip)
        scratch.discard(working)
        reencoded = self._mandatory(result, scratch, REENCODE, suffix, reencode)
        scratch.discard(stripped)

        candidate = self._optimize(record, reencoded, scratch, result)
        if candidate != reencoded:
            scratch.discard(reencoded)

        self._verify(record, candidate, result)
        result.working_path = candidate
        return candidate

    # Stages

    def _mandatory(
        self,
        result: PipelineResult,
        scratch: ScratchArea,
        stage: str,
        suffix: str,
        action: Callable[[Path], Optional[str]],
    ) -> Path:
        """Run one mandatory stage under the retry policy; ``action`` writes to its argument."""

        def attempt() -> Tuple[Path, Optional[str]]:
            out = scratch.new_file(stage, suffix)
            try:
                tool = action(out)
                if not out.exists() or out.stat().st_size == 0:
                    raise OSError(f"{stage} produced no output")
            except BaseException:
                scratch.discard(out)
                raise
            return out, tool

        try:
            attempted = self.retry.call(attempt, label=f"{stage} {result.input_path.name}")
        except OperationFailed as e:
            result.record_stage(stage, StageStatus.FAILED, e.attempts, detail=str(e.error))
            raise StageFailed(stage, e) from e.error

        out, tool = attempted.value
        result.record_stage(stage, StageStatus.OK, attempted.attempts, tool=tool)
        return out

    def _optimize(
        self, record: ImageRecord, src: Path, scratch: ScratchArea, result: PipelineResult
    ) -> Path:
        """Try every available optimizer; keep the smallest verified output, else ``src``."""
        optimizers = self.tools.optimizers_for(record.format)
        if not optimizers:
            result.record_stage(OPTIMIZE, StageStatus.SKIPPED, detail="no optimizer available")
            return src

        plan = self._plan(record.format, optimizers)
        best, best_size, best_tool = src, src.stat().st_size, None
        retries = 0
        failures: List[str] = []
        for optimizer, quality in plan:
            self.retry.check_cancelled()
            out = scratch.new_file(f"{OPTIMIZE}-{optimizer.name}", canonical_extension(record.format))
            try:
                attempted = self.retry.call(
                    optimizer.optimize,
                    src,
                    out,
                    quality,
                    label=f"{optimizer.name} {result.input_path.name}",
                    cleanup=lambda: scratch.discard(out),
                )
                retries += attempted.attempts - 1
                self.verifier.verify(record, out)
            except OperationFailed as e:
                retries += e.attempts - 1
                failures.append(f"{optimizer.name}: {e.error}")
                scratch.discard(out)
                continue
            except (IntegrityError, ToolTimeout) as e:
                failures.append(f"{optimizer.name}: {e}")
                scratch.discard(out)
                continue

            size = out.stat().st_size
            if size < best_size:
                if best != src:
                    scratch.discard(best)
                best, best_size, best_tool = out, size, optimizer.name
            else:
                scratch.discard(out)

        for failure in failures:
            logger.debug(f"Optimizer failure for {record.path.name}: {failure}")

        if best_tool is None:
            detail = "; ".join(failures) if failures and len(failures) == len(plan) else "no gain"
            result.record_stage(OPTIMIZE, StageStatus.SKIPPED, 1 + retries, detail=detail)
        else:
            result.record_stage(
                OPTIMIZE,
                StageStatus.OK,
                1 + retries,
                tool=best_tool,
                detail=f"{src.stat().st_size} -> {best_size} bytes",
            )
        return best

    def _plan(
        self, image_format: str, optimizers: List[Optimizer]
    ) -> List[Tuple[Optimizer, Optional[int]]]:
        """(optimizer, quality) runs in order; quality None means lossless."""
        qualities: List[int] = []
        if self.allow_lossy:
            target = self.qualities.get(image_format, 80)
            qualities.append(target)
            if image_format == "JPEG" and self.adaptive_jpeg and self.jpeg_fallback_quality < target:
                qualities.append(self.jpeg_fallback_quality)

        plan: List[Tuple[Optimizer, Optional[int]]] = []
        for optimizer in optimizers:
            if optimizer.supports(None):
                plan.append((optimizer, None))
            for quality in qualities:
                if optimizer.supports(quality):
                    plan.append((optimizer, quality))
        return plan

    def _verify(self, record: ImageRecord, candidate: Path, result: PipelineResult) -> None:
        try:
            attempted = self.retry.call(
                self.verifier.verify,
                record,
                candidate,
                label=f"verify {result.input_path.name}",
                retry_on=lambda exc: isinstance(exc, ToolTimeout),
            )
        except OperationFailed as e:
            result.record_stage(VERIFY, StageStatus.FAILED, e.attempts, detail=str(e.error))
            if isinstance(e.error, IntegrityError):
                raise e.error
            raise StageFailed(VERIFY, e) from e.error
        result.record_stage(VERIFY, StageStatus.OK, attempted.attempts)
