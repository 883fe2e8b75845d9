"""User interface components (progress and reporting)."""

from image_sanitizer.ui.progress import ProgressObserver
from image_sanitizer.ui.report import RunReport

__all__ = ["ProgressObserver", "RunReport"]
