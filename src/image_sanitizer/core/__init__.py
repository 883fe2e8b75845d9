"""Core functionality for duplicate detection and atomic sanitization."""

from image_sanitizer.core.fingerprint import FingerprintBuilder
from image_sanitizer.core.index import DuplicateIndex
from image_sanitizer.core.pipeline import SanitizationPipeline
from image_sanitizer.core.replacer import AtomicReplacer
from image_sanitizer.core.retry import RetryController, RetryPolicy
from image_sanitizer.core.runner import BatchRunner, RunObserver
from image_sanitizer.core.scanner import ImageScanner
from image_sanitizer.core.verifier import IntegrityVerifier

__all__ = [
    "AtomicReplacer",
    "BatchRunner",
    "DuplicateIndex",
    "FingerprintBuilder",
    "ImageScanner",
    "IntegrityVerifier",
    "RetryController",
    "RetryPolicy",
    "RunObserver",
    "SanitizationPipeline",
]
