from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from models.evidence import EvidenceType


class ConfigurationError(ValueError):
    """Raised when a product definition or scoring configuration is unusable."""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _optional_non_negative(data: Mapping[str, Any], key: str, owner: str) -> Optional[float]:
    """Read an optional non-negative number, raising ConfigurationError for anything else."""
    value = data.get(key)
    if value is None:
        return None
    if not _is_number(value) or value < 0:
        raise ConfigurationError(f"{owner} has invalid {key}: {value!r}")
    return value


@dataclass(frozen=True)
class DetectionMethod:
    """One concrete technique for testing an indicator.

    Feature methods use ``metadata``, ``field`` or ``object``; activity, API and
    code indicators reuse the same shape with their own ``type`` values.
    """
    type: str
    path: Optional[str] = None
    pattern: Optional[str] = None
    min_count: Optional[int] = None
    object: Optional[str] = None
    name: Optional[str] = None
    value: Optional[str] = None
    event_type: Optional[str] = None
    timeframe: Optional[str] = None
    threshold: Optional[float] = None
    trigger_object: Optional[str] = None
    keywords: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DetectionMethod":
        if not isinstance(data, Mapping) or not data.get("type"):
            raise ConfigurationError(f"Detection method must declare a type: {data!r}")
        owner = f"Detection method '{data['type']}'"
        keywords = data.get("keywords") or ()
        if isinstance(keywords, str):
            raise ConfigurationError(f"{owner} keywords must be a list: {keywords!r}")
        return cls(
            type=data["type"],
            path=data.get("path"),
            pattern=data.get("pattern"),
            min_count=_optional_non_negative(data, "minCount", owner),
            object=data.get("object"),
            name=data.get("name"),
            value=data.get("value"),
            event_type=data.get("eventType"),
            timeframe=data.get("timeframe"),
            threshold=_optional_non_negative(data, "threshold", owner),
            trigger_object=data.get("triggerObject"),
            keywords=tuple(keywords),
        )


@dataclass(frozen=True)
class IndicatorItem:
    """A declaratively configured thing to probe for."""
    type: str
    name: str
    weight: float = 1.0
    required_fields: Tuple[str, ...] = ()
    detection_methods: Tuple[DetectionMethod, ...] = ()
    activity_threshold: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], category: str) -> "IndicatorItem":
        if not isinstance(data, Mapping) or not data.get("type") or not data.get("name"):
            raise ConfigurationError(f"Indicator item in '{category}' must declare type and name: {data!r}")
        weight = data.get("weight", 1.0)
        if not _is_number(weight) or weight < 0:
            raise ConfigurationError(f"Indicator '{data['name']}' in '{category}' has invalid weight: {weight!r}")
        return cls(
            type=data["type"],
            name=data["name"],
            weight=float(weight),
            required_fields=tuple(data.get("requiredFields") or ()),
            detection_methods=tuple(DetectionMethod.from_dict(m) for m in data.get("detectionMethods") or ()),
            activity_threshold=_optional_non_negative(
                data, "activityThreshold", f"Indicator '{data['name']}' in '{category}'"
            ),
        )


@dataclass(frozen=True)
class IndicatorCategory:
    category: str
    items: Tuple[IndicatorItem, ...]
    description: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IndicatorCategory":
        if not isinstance(data, Mapping) or not data.get("category"):
            raise ConfigurationError(f"Indicator category must have a name: {data!r}")
        name = data["category"]
        raw_items = data.get("items") or []
        if not raw_items:
            raise ConfigurationError(f"Indicator category '{name}' must have at least one item")
        return cls(
            category=name,
            items=tuple(IndicatorItem.from_dict(item, name) for item in raw_items),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class FindingsMap:
    """Canned, human-readable findings keyed by object or feature name."""
    objects: Dict[str, str] = field(default_factory=dict)
    features: Dict[str, str] = field(default_factory=dict)
    code_customization: Optional[str] = None
    user_engagement: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "FindingsMap":
        data = data or {}
        return cls(
            objects=dict(data.get("objects") or {}),
            features=dict(data.get("features") or {}),
            code_customization=data.get("codeCustomization"),
            user_engagement=data.get("userEngagement"),
        )


@dataclass(frozen=True)
class ProductDefinition:
    """Parsed product definition: indicator categories, edition signals and findings."""
    name: str
    indicators: Tuple[IndicatorCategory, ...]
    description: Optional[str] = None
    # Declared order matters: lowest edition first
    edition_signals: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
    findings_map: FindingsMap = field(default_factory=FindingsMap)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProductDefinition":
        if not isinstance(data, Mapping):
            raise ConfigurationError("Product definition must be a mapping")
        if not data.get("name"):
            raise ConfigurationError("Invalid product definition: missing name")
        indicators = data.get("indicators")
        if not isinstance(indicators, list) or not indicators:
            raise ConfigurationError(f"Invalid product definition {data['name']}: missing indicators array")

        signals = data.get("editionSignals") or {}
        if not isinstance(signals, Mapping):
            raise ConfigurationError(f"editionSignals of {data['name']} must be a mapping")
        for edition, values in signals.items():
            if values is not None and (
                not isinstance(values, (list, tuple)) or not all(isinstance(v, str) for v in values)
            ):
                raise ConfigurationError(
                    f"editionSignals.{edition} of {data['name']} must be a list of strings: {values!r}"
                )

        return cls(
            name=data["name"],
            description=data.get("description"),
            indicators=tuple(IndicatorCategory.from_dict(c) for c in indicators),
            edition_signals=tuple((edition, tuple(values or ())) for edition, values in signals.items()),
            findings_map=FindingsMap.from_dict(data.get("findingsMap")),
        )

    def items(self) -> List[IndicatorItem]:
        return [item for category in self.indicators for item in category.items]


@dataclass(frozen=True)
class Thresholds:
    active: float
    limited: float
    inactive: float


@dataclass(frozen=True)
class ScoringConfig:
    """Weights, decay and category cut-points for the scoring engine."""
    evidence_weights: Dict[EvidenceType, float]
    thresholds: Thresholds
    decay_rate: Optional[float] = 0.01

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScoringConfig":
        if not isinstance(data, Mapping):
            raise ConfigurationError("Scoring configuration must be a mapping")
        for key in ("evidenceWeights", "decayFactors", "thresholds"):
            if data.get(key) is None:
                raise ConfigurationError(f"Invalid configuration: missing {key}")

        weights: Dict[EvidenceType, float] = {}
        for key, value in data["evidenceWeights"].items():
            try:
                evidence_type = EvidenceType(key)
            except ValueError:
                raise ConfigurationError(f"Unknown evidence type in evidenceWeights: {key}") from None
            if not _is_number(value) or value < 0:
                raise ConfigurationError(f"Invalid weight for {key}: {value!r}")
            weights[evidence_type] = float(value)

        raw = data["thresholds"]
        try:
            thresholds = Thresholds(
                active=float(raw["active"]),
                limited=float(raw["limited"]),
                inactive=float(raw["inactive"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid thresholds: {e}") from e
        cut_points = (thresholds.active, thresholds.limited, thresholds.inactive)
        if any(not 0 <= t <= 100 for t in cut_points):
            raise ConfigurationError(f"Thresholds must lie in [0, 100]: {cut_points}")
        if not thresholds.active >= thresholds.limited >= thresholds.inactive:
            raise ConfigurationError(f"Thresholds must satisfy active >= limited >= inactive: {cut_points}")

        decay = data["decayFactors"]
        if not isinstance(decay, Mapping):
            raise ConfigurationError("decayFactors must be a mapping")
        rate = decay.get("rate", 0.01)
        if not _is_number(rate) or rate < 0:
            raise ConfigurationError(f"Invalid decay rate: {rate!r}")

        return cls(evidence_weights=weights, thresholds=thresholds, decay_rate=float(rate))
