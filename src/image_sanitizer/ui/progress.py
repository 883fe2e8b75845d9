"""Live progress bar fed by the runner's result stream."""

import threading
from typing import Optional

from tqdm import tqdm

from image_sanitizer.core.models import PipelineResult, RunSummary, TerminalState
from image_sanitizer.core.runner import RunObserver


class ProgressObserver(RunObserver):
    """Shows files processed / total with a running count of failures."""

    def __init__(self, enabled: bool = True, desc: str = "Sanitizing"):
        self.enabled = enabled
        self.desc = desc
        self.failed = 0
        self.duplicates = 0
        self._bar: Optional[tqdm] = None
        self._lock = threading.Lock()

    def on_start(self, total: int) -> None:
        if self.enabled:
            self._bar = tqdm(total=total, desc=self.desc, unit="file")

    def on_result(self, result: PipelineResult) -> None:
        with self._lock:
            if result.state is TerminalState.FAILED:
                self.failed += 1
            elif result.state is TerminalState.SKIPPED_DUPLICATE:
                self.duplicates += 1
            if self._bar is not None:
                self._bar.set_postfix(duplicates=self.duplicates, failed=self.failed)
                self._bar.update(1)

    def on_finish(self, summary: RunSummary) -> None:
        if self._bar is not None:
            self._bar.close()
            self._bar = None
