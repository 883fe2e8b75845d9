"""
Duplicate Index: the only state shared between workers.

Policy is first-seen-wins, where "first" is lexicographic scan order. Workers
hash and fingerprint in parallel, then admit strictly in ticket order, so the
canonical of every duplicate set is the same on every run regardless of
scheduling. The lock is only ever held for in-memory lookups and inserts.
"""

import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Set

from image_sanitizer.core.models import Fingerprint
from image_sanitizer.errors import Cancelled
from image_sanitizer.utils.logger import setup_logger

logger = setup_logger(__name__)

EXACT = "exact"
PERCEPTUAL = "perceptual"


@dataclass(frozen=True)
class Admission:
    """Outcome of ``admit``: admitted, or duplicate of a canonical path."""

    admitted: bool
    canonical: Optional[Path] = None
    kind: Optional[str] = None  # exact, perceptual

    @classmethod
    def accept(cls) -> "Admission":
        return cls(admitted=True)

    @classmethod
    def duplicate_of(cls, canonical: Path, kind: str) -> "Admission":
        return cls(admitted=False, canonical=canonical, kind=kind)


class DuplicateIndex:
    """Synchronized signature table with atomic check-and-insert."""

    def __init__(self, poll_interval: float = 0.1):
        self._cond = threading.Condition()
        self._exact: Dict[str, Path] = {}
        self._perceptual: Dict[str, Path] = {}
        self._claims: Dict[str, int] = {}  # content hash -> lowest ticket seen with it
        self._next_turn = 0
        self._finished: Set[int] = set()
        self.poll_interval = poll_interval

    def __len__(self) -> int:
        with self._cond:
            return len(self._perceptual)

    # Classification

    def exact_canonical(
        self,
        ticket: int,
        content_hash: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> Optional[Path]:
        """
        Canonical path for these exact bytes, settled against earlier tickets.

        When an earlier ticket has already been seen with the same bytes, wait
        for that ticket's turn to finish first: a byte copy then finds its
        canonical and skips fingerprinting even when both are in flight. The
        wait is only ever on a lower ticket, so it cannot deadlock.
        """
        with self._cond:
            owner = min(self._claims.get(content_hash, ticket), ticket)
            self._claims[content_hash] = owner
            while owner < ticket and self._next_turn <= owner:
                if cancel_event is not None and cancel_event.is_set():
                    raise Cancelled("interrupted while waiting for an exact duplicate")
                self._cond.wait(self.poll_interval)
            return self._exact.get(content_hash)

    def admit(
        self,
        path: Path,
        fingerprint: Optional[Fingerprint],
        content_hash: Optional[str] = None,
    ) -> Admission:
        """
        Classify ``path`` and register it if it is new.

        Byte-identical content is checked first. The fingerprint then matches
        a canonical indexed under any of its candidate signatures; a
        perceptual match registers the file's hash against the canonical so
        later byte copies resolve to the same survivor.
        """
        with self._cond:
            if content_hash is not None and content_hash in self._exact:
                return Admission.duplicate_of(self._exact[content_hash], EXACT)

            if fingerprint is None:
                if content_hash is not None:
                    self._exact[content_hash] = path
                return Admission.accept()

            for signature in fingerprint.candidates():
                canonical = self._perceptual.get(signature)
                if canonical is not None:
                    if content_hash is not None:
                        self._exact[content_hash] = canonical
                    return Admission.duplicate_of(canonical, PERCEPTUAL)

            # Only the own signature is registered; near ones are for lookup
            self._perceptual[fingerprint.signature] = path
            if content_hash is not None:
                self._exact[content_hash] = path
            return Admission.accept()

    # Scan-order sequencing

    def wait_turn(self, ticket: int, cancel_event: Optional[threading.Event] = None) -> None:
        """Block until every ticket below ``ticket`` has finished its turn."""
        with self._cond:
            while self._next_turn < ticket:
                if cancel_event is not None and cancel_event.is_set():
                    raise Cancelled("interrupted while waiting to be admitted")
                self._cond.wait(self.poll_interval)

    def finish_turn(self, ticket: int) -> None:
        """Mark ``ticket`` as done; safe to call more than once or out of order."""
        with self._cond:
            if ticket < self._next_turn or ticket in self._finished:
                return
            self._finished.add(ticket)
            while self._next_turn in self._finished:
                self._finished.discard(self._next_turn)
                self._next_turn += 1
            self._cond.notify_all()

    def admit_in_turn(
        self,
        ticket: int,
        path: Path,
        fingerprint: Optional[Fingerprint],
        content_hash: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Admission:
        """Wait for ``ticket``'s turn, admit, and release the turn."""
        try:
            self.wait_turn(ticket, cancel_event)
            admission = self.admit(path, fingerprint, content_hash)
        finally:
            self.finish_turn(ticket)
        if admission.admitted:
            logger.debug(f"Admitted {path.name}")
        else:
            logger.debug(f"{path.name} is a {admission.kind} duplicate of {admission.canonical.name}")
        return admission
