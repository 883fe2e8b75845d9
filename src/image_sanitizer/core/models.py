"""Records passed between the pipeline components."""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

from image_sanitizer.errors import FailureReason


class TerminalState(str, Enum):
    """Final state of one file."""

    COMMITTED = "committed"
    SKIPPED_DUPLICATE = "skipped-duplicate"
    FAILED = "failed"
    ALREADY_SANITIZED = "already-sanitized"
    PLANNED = "planned"  # dry run


class StageStatus(str, Enum):
    OK = "ok"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ImageRecord:
    """One discovered file, immutable until the Atomic Replacer commits over it."""

    path: Path
    format: str
    size: int
    width: int
    height: int
    content_hash: str

    @property
    def dimensions(self) -> tuple:
        return (self.width, self.height)


@dataclass(frozen=True)
class Fingerprint:
    """Composite similarity signature of an image."""

    structural: str
    histogram: str
    provenance: str
    # Signatures one quantization step away on borderline features
    near: Tuple[str, ...] = field(default=(), compare=False, repr=False)

    @property
    def signature(self) -> str:
        """Ordered concatenation of the three component hashes."""
        return f"{self.structural}{self.histogram}{self.provenance}"

    def candidates(self) -> Tuple[str, ...]:
        """Signatures this image may be indexed under, own signature first."""
        return (self.signature,) + self.near

    def matches(self, other: "Fingerprint") -> bool:
        """True if ``other`` was indexed first and this image duplicates it."""
        return other.signature in self.candidates()

    def __str__(self) -> str:
        return f"{self.structural}_{self.histogram}_{self.provenance}"


@dataclass
class StageOutcome:
    name: str
    status: StageStatus
    attempts: int = 1
    tool: Optional[str] = None
    detail: str = ""


@dataclass
class PipelineResult:
    """Per-file outcome."""

    input_path: Path
    working_path: Optional[Path] = None
    final_path: Optional[Path] = None
    stages: List[StageOutcome] = field(default_factory=list)
    retries: int = 0
    state: Optional[TerminalState] = None
    reason: Optional[FailureReason] = None
    message: str = ""
    duplicate_of: Optional[Path] = None
    duplicate_kind: Optional[str] = None  # exact, perceptual, sanitized
    bytes_before: Optional[int] = None
    bytes_after: Optional[int] = None

    def record_stage(
        self,
        name: str,
        status: StageStatus,
        attempts: int = 1,
        tool: Optional[str] = None,
        detail: str = "",
    ) -> StageOutcome:
        outcome = StageOutcome(name, status, attempts, tool, detail)
        self.stages.append(outcome)
        self.retries += max(0, attempts - 1)
        return outcome

    @property
    def attempts(self) -> int:
        """Attempts of the last stage that ran (what a failure report shows)."""
        return self.stages[-1].attempts if self.stages else 1

    @property
    def failed(self) -> bool:
        return self.state is TerminalState.FAILED

    def stage(self, name: str) -> Optional[StageOutcome]:
        for outcome in self.stages:
            if outcome.name == name:
                return outcome
        return None


@dataclass(frozen=True)
class FailureEntry:
    path: Path
    reason: FailureReason
    attempts: int
    message: str = ""


class FailureReport:
    """Aggregated per-file failures, surfaced once at the end of a run."""

    def __init__(self) -> None:
        self.entries: List[FailureEntry] = []

    def add(
        self, path: Path, reason: FailureReason, attempts: int = 1, message: str = ""
    ) -> None:
        self.entries.append(FailureEntry(path, reason, attempts, message))

    def add_result(self, result: PipelineResult) -> None:
        self.add(
            result.input_path,
            result.reason or FailureReason.TOOL_FAILURE,
            result.attempts,
            result.message,
        )

    def paths(self) -> List[Path]:
        return [entry.path for entry in self.entries]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[FailureEntry]:
        return iter(sorted(self.entries, key=lambda e: str(e.path)))


@dataclass
class RunSummary:
    """Everything a caller needs after a run."""

    root: Path
    results: List[PipelineResult] = field(default_factory=list)
    failures: FailureReport = field(default_factory=FailureReport)
    interrupted: bool = False
    dry_run: bool = False

    def counts(self) -> Dict[str, int]:
        counts = {state.value: 0 for state in TerminalState}
        for result in self.results:
            if result.state is not None:
                counts[result.state.value] += 1
        return counts

    @property
    def exit_code(self) -> int:
        if self.interrupted:
            return 130
        return 1 if len(self.failures) else 0

    def by_state(self, state: TerminalState) -> List[PipelineResult]:
        return [r for r in self.results if r.state is state]
