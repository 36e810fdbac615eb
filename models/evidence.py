from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


class EvidenceType(str, Enum):
    """Kinds of evidence a probe can produce. Values match the scoring config keys."""
    OBJECT_PRESENCE = "objectPresence"
    OBJECT_USAGE = "objectUsage"
    FEATURE_CONFIGURATION = "featureConfiguration"
    USER_ACTIVITY = "userActivity"
    API_USAGE = "apiUsage"
    CODE_REFERENCES = "codeReferences"

    def __str__(self) -> str:
        return self.value


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _plain(value: Any) -> Any:
    if isinstance(value, EvidenceDetails):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, datetime):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class EvidenceDetails:
    """Fields every evidence variant carries. A miss must explain itself via error or message."""
    error: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            _camel(f.name): _plain(getattr(self, f.name))
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class UsageSummary:
    """Usage sub-result composed into object presence evidence."""
    detected: bool
    count: Optional[int] = None
    threshold: Optional[float] = None
    timeframe: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            _camel(f.name): getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class ThresholdDetails(EvidenceDetails):
    """Base for evidence scored by comparing a count against a threshold."""
    count: Optional[int] = None
    threshold: Optional[float] = None
    timeframe: Optional[str] = None


@dataclass(frozen=True)
class ObjectPresenceDetails(EvidenceDetails):
    required_fields_present: Optional[bool] = None
    record_count: Optional[int] = None
    last_modified: Optional[str] = None
    custom_fields: Optional[int] = None
    label: Optional[str] = None
    key_prefix: Optional[str] = None
    usage: Optional[UsageSummary] = None

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.usage is not None:
            data["usage"] = self.usage.to_dict()
        return data


@dataclass(frozen=True)
class ObjectUsageDetails(ThresholdDetails):
    query: Optional[str] = None


@dataclass(frozen=True)
class ActivityDetails(ThresholdDetails):
    activity_type: Optional[str] = None
    event_type: Optional[str] = None
    pattern: Optional[str] = None
    breakdown: Optional[Dict[str, int]] = None


@dataclass(frozen=True)
class ApiUsageDetails(ThresholdDetails):
    object: Optional[str] = None
    breakdown: Optional[Dict[str, int]] = None
    items: Optional[Tuple[str, ...]] = None
    failed_sources: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class FeatureDetails(EvidenceDetails):
    """Details of the detection method that matched (or why none did)."""
    method: Optional[str] = None
    metadata_type: Optional[str] = None
    count: Optional[int] = None
    records: Optional[Tuple[Dict[str, Any], ...]] = None
    field_name: Optional[str] = None
    field_type: Optional[str] = None
    field_value: Optional[str] = None
    domains: Optional[Tuple[str, ...]] = None
    all_domains: Optional[Tuple[Dict[str, Any], ...]] = None
    object_details: Optional[ObjectPresenceDetails] = None
    methods_tried: Optional[int] = None


@dataclass(frozen=True)
class CodeReferenceDetails(EvidenceDetails):
    code_type: Optional[str] = None
    count: Optional[int] = None
    matches: Optional[Tuple[str, ...]] = None
    pattern: Optional[str] = None


DETAILS_BY_TYPE = {
    EvidenceType.OBJECT_PRESENCE: ObjectPresenceDetails,
    EvidenceType.OBJECT_USAGE: ObjectUsageDetails,
    EvidenceType.FEATURE_CONFIGURATION: FeatureDetails,
    EvidenceType.USER_ACTIVITY: ActivityDetails,
    EvidenceType.API_USAGE: ApiUsageDetails,
    EvidenceType.CODE_REFERENCES: CodeReferenceDetails,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Evidence:
    """One observation about the org, detected or not."""
    type: EvidenceType
    name: str
    detected: bool
    details: EvidenceDetails
    weight: float = 1.0
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        expected = DETAILS_BY_TYPE[self.type]
        if not isinstance(self.details, expected):
            raise ValueError(
                f"{self.type.value} evidence requires {expected.__name__}, got {type(self.details).__name__}"
            )
        if not self.detected and not (self.details.error or self.details.message):
            raise ValueError(f"Undetected evidence '{self.name}' must carry an error or message")

    @classmethod
    def failure(cls, type: EvidenceType, name: str, error: str, weight: float = 1.0) -> "Evidence":
        """Build a not-detected evidence of any type carrying only an error."""
        return cls(type=type, name=name, detected=False, details=DETAILS_BY_TYPE[type](error=error), weight=weight)

    def with_usage(self, usage: "Evidence") -> "Evidence":
        """Return a new object presence evidence with usage evidence composed into its details."""
        if self.type is not EvidenceType.OBJECT_PRESENCE or usage.type is not EvidenceType.OBJECT_USAGE:
            raise ValueError("Usage can only be composed from objectUsage into objectPresence evidence")
        summary = UsageSummary(
            detected=usage.detected,
            count=usage.details.count,
            threshold=usage.details.threshold,
            timeframe=usage.details.timeframe,
        )
        return replace(self, details=replace(self.details, usage=summary))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "name": self.name,
            "detected": self.detected,
            "weight": self.weight,
            "details": self.details.to_dict(),
            "timestamp": self.timestamp.isoformat(),
        }


class EvidenceCollection:
    """Evidence gathered for a single product run, indexed by type."""

    def __init__(self, product_name: str):
        self.product_name = product_name
        self._items: List[Evidence] = []
        self._by_type: Dict[EvidenceType, List[Evidence]] = {}

    def add(self, evidence: Evidence) -> None:
        self._items.append(evidence)
        self._by_type.setdefault(evidence.type, []).append(evidence)

    def extend(self, evidence: List[Evidence]) -> None:
        for item in evidence:
            self.add(item)

    @property
    def items(self) -> List[Evidence]:
        return list(self._items)

    def by_type(self, evidence_type: EvidenceType) -> List[Evidence]:
        return list(self._by_type.get(EvidenceType(evidence_type), []))

    def detected(self) -> List[Evidence]:
        return [item for item in self._items if item.detected]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Evidence]:
        return iter(self._items)
