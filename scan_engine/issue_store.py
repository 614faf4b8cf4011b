"""
Canonical, concurrency-safe repository of de-duplicated issues.

Every producer (analyzers, AI validation, remediation) writes through
add_issue(). Issues with the same identity hash are merged instead of
duplicated, and every read hands out deep copies so callers can never
mutate stored state.

Locking:
    - one lock per hash stripe serializes read-merge-write for a hash
    - one short structural lock guards the issue map and the file index
    - clear() takes every stripe, then the structural lock
"""

import copy
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from scan_engine.exceptions import StoreIOError, ScanEngineError
from scan_engine.models import Category, Issue, ScanResult, Severity
from scan_engine.utils import dedupe_preserving_order, utc_now, utc_now_iso

logger = logging.getLogger(__name__)

_LOCK_STRIPES = 64


# --- Merge ---

def _preference_key(issue: Issue):
    """Smaller sorts first = preferred variant."""
    return (
        0 if issue.metadata.has_fix_suggestion() else 1,
        -issue.severity.level,
        issue.analyzer,
        issue.title,
        issue.description,
        issue.id,
    )


def merge_issues(a: Issue, b: Issue, merged_at: Optional[str] = None) -> Issue:
    """
    Merge two variants of the same finding. Commutative.

    The richer variant wins: one carrying a fix suggestion, then higher
    severity, then the lexicographically smaller (analyzer, title,
    description). Provenance from both sides is kept in merged_from.
    """
    winner, loser = (a, b) if _preference_key(a) <= _preference_key(b) else (b, a)

    merged = copy.deepcopy(winner)
    merged.metadata.merged_from = dedupe_preserving_order(
        list(winner.metadata.merged_from)
        + [winner.analyzer]
        + list(loser.metadata.merged_from)
        + [loser.analyzer]
    )
    merged.metadata.merged_at = merged_at or utc_now_iso()
    return merged


class IssueStore:
    """
    Thread-safe issue repository keyed by Issue.hash.

    Usage:
        store = IssueStore()
        store.add_issues(issues)
        store.save_to_disk("out/issues.json")
        restored = IssueStore.load_from_disk("out/issues.json")
    """

    def __init__(self, clock: Callable[[], str] = None):
        self._clock = clock or utc_now_iso
        self._issues: Dict[str, Issue] = {}
        self._file_index: Dict[str, Set[str]] = {}
        self._structure_lock = threading.Lock()
        self._stripes = [threading.Lock() for _ in range(_LOCK_STRIPES)]
        self._created_at = utc_now()

    def _stripe_for(self, issue_hash: str) -> threading.Lock:
        return self._stripes[hash(issue_hash) % _LOCK_STRIPES]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    def add_issue(self, issue: Optional[Issue]) -> None:
        """Insert, or merge with the stored issue of the same hash."""
        if issue is None:
            return

        incoming = copy.deepcopy(issue)
        h = incoming.hash
        with self._stripe_for(h):
            with self._structure_lock:
                existing = self._issues.get(h)

            if existing is None:
                with self._structure_lock:
                    self._issues[h] = incoming
                    self._file_index.setdefault(incoming.location.file, set()).add(h)
                return

            merged = merge_issues(existing, incoming, merged_at=self._clock())
            with self._structure_lock:
                self._issues[h] = merged
            logger.debug(f"Merged issue {h} from {incoming.analyzer} into {existing.analyzer}")

    def add_issues(self, issues: Iterable[Issue]) -> None:
        """Add each issue in turn. No whole-batch atomicity."""
        for issue in issues or []:
            self.add_issue(issue)

    def clear(self) -> None:
        for stripe in self._stripes:
            stripe.acquire()
        try:
            with self._structure_lock:
                self._issues.clear()
                self._file_index.clear()
        finally:
            for stripe in reversed(self._stripes):
                stripe.release()

    # ------------------------------------------------------------------
    # Reads (deep copies)
    # ------------------------------------------------------------------
    def _snapshot(self) -> List[Issue]:
        with self._structure_lock:
            return copy.deepcopy(list(self._issues.values()))

    def get_all_issues(self) -> List[Issue]:
        return self._snapshot()

    def get_issue(self, issue_hash: str) -> Optional[Issue]:
        with self._structure_lock:
            issue = self._issues.get(issue_hash)
            return copy.deepcopy(issue) if issue is not None else None

    def get_issues_by_file(self, file_path: str) -> List[Issue]:
        with self._structure_lock:
            hashes = self._file_index.get(file_path, set())
            return copy.deepcopy([self._issues[h] for h in hashes if h in self._issues])

    def get_issues_in_range(self, file_path: str, line_start: int, line_end: int) -> List[Issue]:
        """Issues in a file whose line falls within [line_start, line_end]."""
        return sorted(
            (i for i in self.get_issues_by_file(file_path)
             if line_start <= i.location.line <= line_end),
            key=lambda i: (i.location.line, i.location.column),
        )

    def get_issues_by_severity(self, severity: Severity) -> List[Issue]:
        severity = Severity.from_string(severity)
        return [i for i in self._snapshot() if i.severity == severity]

    def get_issues_by_category(self, category: Category) -> List[Issue]:
        category = Category.from_string(category)
        return [i for i in self._snapshot() if i.category == category]

    def count_by_severity(self) -> Dict[Severity, int]:
        counts: Dict[Severity, int] = {}
        with self._structure_lock:
            for issue in self._issues.values():
                counts[issue.severity] = counts.get(issue.severity, 0) + 1
        return counts

    def count_by_category(self) -> Dict[Category, int]:
        counts: Dict[Category, int] = {}
        with self._structure_lock:
            for issue in self._issues.values():
                counts[issue.category] = counts.get(issue.category, 0) + 1
        return counts

    def has_critical_issues(self) -> bool:
        with self._structure_lock:
            return any(i.severity == Severity.CRITICAL for i in self._issues.values())

    def size(self) -> int:
        with self._structure_lock:
            return len(self._issues)

    def __len__(self) -> int:
        return self.size()

    def file_count(self) -> int:
        with self._structure_lock:
            return len(self._file_index)

    def get_statistics(self) -> str:
        counts = self.count_by_severity()
        return (
            f"Store Statistics: Total={self.size()} issues, Files={self.file_count()}, "
            f"Critical={counts.get(Severity.CRITICAL, 0)}, High={counts.get(Severity.HIGH, 0)}, "
            f"Medium={counts.get(Severity.MEDIUM, 0)}, Low={counts.get(Severity.LOW, 0)}, "
            f"Info={counts.get(Severity.INFO, 0)}"
        )

    # ------------------------------------------------------------------
    # Snapshots and persistence
    # ------------------------------------------------------------------
    def to_scan_result(self, source_path: str = "",
                       analyzers_used: Optional[Sequence[str]] = None) -> ScanResult:
        issues = self._snapshot()
        if analyzers_used is None:
            analyzers_used = dedupe_preserving_order(i.analyzer for i in issues)

        counts: Dict[Severity, int] = {}
        for issue in issues:
            counts[issue.severity] = counts.get(issue.severity, 0) + 1

        statistics = {
            "total_issues": len(issues),
            "critical_count": counts.get(Severity.CRITICAL, 0),
            "high_count": counts.get(Severity.HIGH, 0),
            "medium_count": counts.get(Severity.MEDIUM, 0),
            "low_count": counts.get(Severity.LOW, 0),
            "info_count": counts.get(Severity.INFO, 0),
        }
        return ScanResult(
            source_path=source_path,
            start_time=self._created_at,
            end_time=utc_now(),
            issues=tuple(issues),
            statistics=statistics,
            analyzers_used=tuple(analyzers_used),
        )

    def save_to_disk(self, path, source_path: Optional[str] = None,
                     analyzers_used: Optional[Sequence[str]] = None) -> None:
        """
        Write the JSON snapshot atomically (temp file + rename).

        Raises:
            StoreIOError: when the file cannot be written. The in-memory
                store is left untouched.
        """
        target = Path(path)
        if source_path is None:
            source_path = str(target.parent)
        payload = self.to_scan_result(source_path, analyzers_used).to_dict()

        tmp_name = None
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_name, target)
            tmp_name = None
        except OSError as e:
            raise StoreIOError(str(target), "save", str(e))
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)

        logger.info(f"Saved {payload['statistics']['total_issues']} issues to {target}")

    @classmethod
    def load_from_disk(cls, path, clock: Callable[[], str] = None) -> "IssueStore":
        """
        Rebuild a store from a snapshot. A missing file yields an empty
        store; an unreadable or corrupt one raises StoreIOError.
        """
        store = cls(clock=clock)
        target = Path(path)
        if not target.exists():
            logger.info(f"No issue snapshot at {target}, starting empty")
            return store

        try:
            with open(target, "r", encoding="utf-8") as f:
                data = json.load(f)
            result = ScanResult.from_dict(data)
        except OSError as e:
            raise StoreIOError(str(target), "load", str(e))
        except (ValueError, KeyError, TypeError, AttributeError, ScanEngineError) as e:
            raise StoreIOError(str(target), "load", f"corrupt snapshot: {e}")

        store.add_issues(result.issues)
        logger.info(f"Loaded {store.size()} issues from {target}")
        return store

    def __repr__(self) -> str:
        return f"IssueStore[issues={self.size()}, files={self.file_count()}]"
