"""
Structured data models for the scan pipeline.

Defines typed issue, location and scan-result objects using dataclasses
instead of implicit Dict[str, Any] types. Required fields are enforced at
construction time so a half-built Issue can never reach the store.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from scan_engine.exceptions import ValidationError
from scan_engine.utils import compute_identity_hash, from_iso, to_iso, utc_now


# --- Enums ---

class Severity(str, Enum):
    """Issue severity, ordered from most to least urgent."""
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"

    @classmethod
    def from_string(cls, value: str) -> "Severity":
        """Resolve a severity name case-insensitively, defaulting to INFO."""
        if isinstance(value, cls):
            return value
        cleaned = (value or "").strip().upper()
        for member in cls:
            if member.value == cleaned:
                return member
        return cls.INFO

    @property
    def level(self) -> int:
        """Numeric rank: CRITICAL=4 ... INFO=0."""
        return _SEVERITY_LEVELS[self]

    @property
    def display_name(self) -> str:
        return self.value.title()


_SEVERITY_LEVELS = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.INFO: 0,
}


class Category(str, Enum):
    """Closed taxonomy of security issue categories."""
    # Memory
    BUFFER_OVERFLOW = "BUFFER_OVERFLOW"
    USE_AFTER_FREE = "USE_AFTER_FREE"
    MEMORY_LEAK = "MEMORY_LEAK"
    NULL_DEREFERENCE = "NULL_DEREFERENCE"
    NULL_POINTER = "NULL_POINTER"
    DOUBLE_FREE = "DOUBLE_FREE"
    # Concurrency
    RACE_CONDITION = "RACE_CONDITION"
    DEADLOCK = "DEADLOCK"
    THREAD_SAFETY = "THREAD_SAFETY"
    # Injection
    SQL_INJECTION = "SQL_INJECTION"
    COMMAND_INJECTION = "COMMAND_INJECTION"
    PATH_TRAVERSAL = "PATH_TRAVERSAL"
    FORMAT_STRING = "FORMAT_STRING"
    # Crypto
    WEAK_CRYPTO = "WEAK_CRYPTO"
    HARDCODED_SECRET = "HARDCODED_SECRET"
    INSECURE_RANDOM = "INSECURE_RANDOM"
    # Resource
    RESOURCE_LEAK = "RESOURCE_LEAK"
    FD_LEAK = "FD_LEAK"
    # Quality
    CODE_SMELL = "CODE_SMELL"
    DEPRECATED_API = "DEPRECATED_API"
    INTEGER_OVERFLOW = "INTEGER_OVERFLOW"
    CODE_QUALITY = "CODE_QUALITY"
    ERROR_HANDLING = "ERROR_HANDLING"
    UNSAFE_CODE = "UNSAFE_CODE"
    # Other
    UNDEFINED_BEHAVIOR = "UNDEFINED_BEHAVIOR"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_string(cls, value: str) -> "Category":
        """Resolve "buffer-overflow", "Buffer_Overflow" etc.; unknown -> UNKNOWN."""
        if isinstance(value, cls):
            return value
        cleaned = (value or "").strip().upper().replace("-", "_").replace(" ", "_")
        for member in cls:
            if member.value == cleaned:
                return member
        return cls.UNKNOWN

    @property
    def display_name(self) -> str:
        return _CATEGORY_INFO[self][0]

    @property
    def group(self) -> str:
        return _CATEGORY_INFO[self][1]


_CATEGORY_INFO = {
    Category.BUFFER_OVERFLOW: ("Buffer Overflow", "Memory"),
    Category.USE_AFTER_FREE: ("Use After Free", "Memory"),
    Category.MEMORY_LEAK: ("Memory Leak", "Memory"),
    Category.NULL_DEREFERENCE: ("Null Pointer Dereference", "Memory"),
    Category.NULL_POINTER: ("Null Pointer", "Memory"),
    Category.DOUBLE_FREE: ("Double Free", "Memory"),
    Category.RACE_CONDITION: ("Race Condition", "Concurrency"),
    Category.DEADLOCK: ("Deadlock", "Concurrency"),
    Category.THREAD_SAFETY: ("Thread Safety", "Concurrency"),
    Category.SQL_INJECTION: ("SQL Injection", "Injection"),
    Category.COMMAND_INJECTION: ("Command Injection", "Injection"),
    Category.PATH_TRAVERSAL: ("Path Traversal", "Injection"),
    Category.FORMAT_STRING: ("Format String", "Injection"),
    Category.WEAK_CRYPTO: ("Weak Cryptography", "Crypto"),
    Category.HARDCODED_SECRET: ("Hardcoded Secret", "Crypto"),
    Category.INSECURE_RANDOM: ("Insecure Random", "Crypto"),
    Category.RESOURCE_LEAK: ("Resource Leak", "Resource"),
    Category.FD_LEAK: ("File Descriptor Leak", "Resource"),
    Category.CODE_SMELL: ("Code Smell", "Quality"),
    Category.DEPRECATED_API: ("Deprecated API", "Quality"),
    Category.INTEGER_OVERFLOW: ("Integer Overflow", "Quality"),
    Category.CODE_QUALITY: ("Code Quality", "Quality"),
    Category.ERROR_HANDLING: ("Error Handling", "Quality"),
    Category.UNSAFE_CODE: ("Unsafe Code", "Quality"),
    Category.UNDEFINED_BEHAVIOR: ("Undefined Behavior", "Other"),
    Category.UNKNOWN: ("Unknown", "Other"),
}


# --- Issue Models ---

@dataclass
class CodeLocation:
    """A position in a source file."""
    file: str
    line: int
    column: int = 0
    snippet: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"file": self.file, "line": self.line, "column": self.column}
        if self.snippet is not None:
            result["snippet"] = self.snippet
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CodeLocation":
        return cls(
            file=data.get("file", ""),
            line=int(data.get("line", 0)),
            column=int(data.get("column", 0)),
            snippet=data.get("snippet"),
        )

    def __str__(self) -> str:
        return f"{self.file}:{self.line}:{self.column}"


@dataclass
class IssueMetadata:
    """
    Known optional annotations attached to an issue by later pipeline stages.

    Anything a producer adds that has no dedicated field lands in ``extra``
    as a string, so unknown keys survive a save/load round-trip.
    """
    ai_validated: Optional[bool] = None
    ai_confidence: Optional[float] = None
    ai_explanation: Optional[str] = None
    original_severity: Optional[str] = None
    fix_suggestion: Optional[str] = None
    merged_from: List[str] = field(default_factory=list)
    merged_at: Optional[str] = None
    validation_skipped: Optional[str] = None
    validation_error: Optional[str] = None
    extra: Dict[str, str] = field(default_factory=dict)

    def has_fix_suggestion(self) -> bool:
        return bool(self.fix_suggestion and self.fix_suggestion.strip())

    def to_dict(self) -> Dict[str, Any]:
        """Serialize, omitting unset fields."""
        result: Dict[str, Any] = {}
        for name in _METADATA_FIELDS:
            value = getattr(self, name)
            if value is None or value == []:
                continue
            result[name] = list(value) if isinstance(value, list) else value
        result.update(self.extra)
        return result

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "IssueMetadata":
        meta = cls()
        for key, value in (data or {}).items():
            if key in _METADATA_FIELDS:
                if key == "merged_from":
                    value = [str(v) for v in value or []]
                setattr(meta, key, value)
            else:
                meta.extra[key] = str(value)
        return meta


_METADATA_FIELDS = (
    "ai_validated",
    "ai_confidence",
    "ai_explanation",
    "original_severity",
    "fix_suggestion",
    "merged_from",
    "merged_at",
    "validation_skipped",
    "validation_error",
)


@dataclass
class Issue:
    """
    A normalized security finding.

    Identity is (category, file, line, column) only. Two analyzers that
    report the same defect with different wording produce the same hash.
    """
    title: str
    location: CodeLocation
    severity: Severity = Severity.INFO
    category: Category = Category.UNKNOWN
    description: str = ""
    analyzer: str = ""
    metadata: IssueMetadata = field(default_factory=IssueMetadata)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        """Normalize enums and enforce required fields."""
        if not self.title or not str(self.title).strip():
            raise ValidationError("title", "Issue title is required")
        if self.location is None or not self.location.file:
            raise ValidationError("location", "Issue location with a file path is required")
        if self.location.line < 1:
            raise ValidationError("location.line", f"line must be >= 1, got {self.location.line}")
        self.severity = Severity.from_string(self.severity)
        self.category = Category.from_string(self.category)
        if self.metadata is None:
            self.metadata = IssueMetadata()

    @property
    def identity_key(self) -> str:
        loc = self.location
        return f"{self.category.value}:{loc.file}:{loc.line}:{loc.column}"

    @property
    def hash(self) -> str:
        return compute_identity_hash(self.identity_key)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "hash": self.hash,
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "category": self.category.value,
            "location": self.location.to_dict(),
            "analyzer": self.analyzer,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Issue":
        kwargs = dict(
            title=data.get("title", ""),
            location=CodeLocation.from_dict(data.get("location") or {}),
            severity=Severity.from_string(data.get("severity", "INFO")),
            category=Category.from_string(data.get("category", "UNKNOWN")),
            description=data.get("description", ""),
            analyzer=data.get("analyzer", ""),
            metadata=IssueMetadata.from_dict(data.get("metadata")),
        )
        if data.get("id"):
            kwargs["id"] = data["id"]
        return cls(**kwargs)


def create_issue(
    title: str,
    file: str,
    line: int,
    column: int = 0,
    severity: Any = Severity.INFO,
    category: Any = Category.UNKNOWN,
    description: str = "",
    analyzer: str = "",
    snippet: Optional[str] = None,
    **extra: str,
) -> Issue:
    """
    Build an Issue from flat arguments.

    Keyword arguments that are not part of the signature become
    ``metadata.extra`` annotations (e.g. ``check_id="..."``).
    """
    metadata = IssueMetadata(extra={k: str(v) for k, v in extra.items()})
    return Issue(
        title=title,
        location=CodeLocation(file=file, line=line, column=column, snippet=snippet),
        severity=severity,
        category=category,
        description=description,
        analyzer=analyzer,
        metadata=metadata,
    )


# --- Scan Result ---

@dataclass(frozen=True)
class ScanResult:
    """
    Immutable snapshot of one scan.

    Issues are deep-copied into a tuple and statistics into a read-only
    mapping at construction, so later store mutations never leak in.
    """
    source_path: str
    start_time: datetime
    end_time: datetime
    issues: Tuple[Issue, ...] = ()
    statistics: Mapping[str, Any] = field(default_factory=dict)
    analyzers_used: Tuple[str, ...] = ()
    scan_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def __post_init__(self):
        frozen_issues = tuple(Issue.from_dict(i.to_dict()) for i in self.issues)
        object.__setattr__(self, "issues", frozen_issues)
        object.__setattr__(self, "statistics", MappingProxyType(dict(self.statistics)))
        object.__setattr__(self, "analyzers_used", tuple(self.analyzers_used))

    @property
    def total_issue_count(self) -> int:
        return len(self.issues)

    @property
    def duration_seconds(self) -> float:
        return (self.end_time - self.start_time).total_seconds()

    def count_by_severity(self) -> Dict[Severity, int]:
        counts = {sev: 0 for sev in Severity}
        for issue in self.issues:
            counts[issue.severity] += 1
        return counts

    def get_issues_by_severity(self, severity: Severity) -> List[Issue]:
        return [i for i in self.issues if i.severity == severity]

    def has_critical_issues(self) -> bool:
        return any(i.severity == Severity.CRITICAL for i in self.issues)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scan_id": self.scan_id,
            "source_path": self.source_path,
            "start_time": to_iso(self.start_time),
            "end_time": to_iso(self.end_time),
            "issues": [issue.to_dict() for issue in self.issues],
            "statistics": dict(self.statistics),
            "analyzers_used": list(self.analyzers_used),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScanResult":
        now = utc_now()
        kwargs = dict(
            source_path=data.get("source_path", ""),
            start_time=from_iso(data.get("start_time")) or now,
            end_time=from_iso(data.get("end_time")) or now,
            issues=tuple(Issue.from_dict(i) for i in data.get("issues", [])),
            statistics=data.get("statistics", {}),
            analyzers_used=tuple(data.get("analyzers_used", [])),
        )
        if data.get("scan_id"):
            kwargs["scan_id"] = data["scan_id"]
        return cls(**kwargs)
