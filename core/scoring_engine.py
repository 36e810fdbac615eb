"""Scoring engine: weighted, time-decayed usage probability from collected evidence."""
import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Union

from models.evidence import Evidence, EvidenceCollection, EvidenceType
from models.product import ProductDefinition, ScoringConfig

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0
USAGE_TYPES = {EvidenceType.OBJECT_USAGE, EvidenceType.USER_ACTIVITY, EvidenceType.API_USAGE}

ACTIVE = "Active"
LIMITED = "Limited"
INACTIVE = "Inactive"
NOT_USED = "Not Used"
UNKNOWN_EDITION = "Unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


def usage_tier_score(count: Optional[float], threshold: Optional[float]) -> float:
    """Four-tier threshold score.

    A missing count earns partial credit (0.5); a missing or zero threshold
    earns full credit. Below the threshold the score rises linearly to 0.5.
    """
    if count is None:
        return 0.5
    if not threshold:
        return 1.0
    if count >= threshold * 2:
        return 1.0
    if count >= threshold:
        return 0.75
    return max(0.0, (count / threshold) * 0.5)


class ScoringEngine:
    """Scores an EvidenceCollection against a ScoringConfig.

    ``clock`` returns the current time and exists so decay can be tested.
    """

    def __init__(self, config: Union[ScoringConfig, Mapping[str, Any]], clock: Optional[Callable[[], datetime]] = None):
        self.config = config if isinstance(config, ScoringConfig) else ScoringConfig.from_dict(config)
        self._clock = clock or _utcnow

    def calculate_score(self, definition: Optional[ProductDefinition], collection: EvidenceCollection) -> float:
        total_score = 0.0
        total_weight = 0.0

        for evidence_type, type_weight in self.config.evidence_weights.items():
            for item in collection.by_type(evidence_type):
                decayed = self.apply_time_decay(self.calculate_item_score(item), item.timestamp)
                total_score += decayed * type_weight * item.weight
                total_weight += item.weight * type_weight

        if total_weight <= 0:
            return 0.0

        score = min(100.0, max(0.0, (total_score / total_weight) * 100))
        product = definition.name if definition else collection.product_name
        logger.debug(f"{product}: score {score:.2f} from {len(collection)} evidence items")
        return score

    def calculate_item_score(self, evidence: Evidence) -> float:
        """Score a single evidence item in [0, 1]."""
        if not evidence.detected:
            return 0.0

        details = evidence.details
        if evidence.type is EvidenceType.OBJECT_PRESENCE:
            # Presence alone is binary; composed usage refines it. A present object
            # with no records in the usage window scores 0.
            if details.usage is None:
                return 1.0
            return usage_tier_score(details.usage.count, details.usage.threshold)
        if evidence.type in USAGE_TYPES:
            return usage_tier_score(details.count, details.threshold)
        if evidence.type is EvidenceType.FEATURE_CONFIGURATION:
            return 1.0
        if evidence.type is EvidenceType.CODE_REFERENCES:
            if details.matches is None:
                return 0.5
            return min(1.0, len(details.matches) / 3)
        return 1.0

    def apply_time_decay(self, score: float, timestamp: Optional[datetime]) -> float:
        """Linearly decay a score with evidence age; reaches 0 after 1/rate days."""
        rate = self.config.decay_rate
        if timestamp is None or rate is None:
            return score

        age_days = (_aware(self._clock()) - _aware(timestamp)).total_seconds() / SECONDS_PER_DAY
        # Evidence from the future is treated as fresh
        age_days = max(0.0, age_days)
        return score * max(0.0, 1 - age_days * rate)

    def categorize_score(self, score: float) -> str:
        thresholds = self.config.thresholds
        if score >= thresholds.active:
            return ACTIVE
        if score >= thresholds.limited:
            return LIMITED
        if score >= thresholds.inactive:
            return INACTIVE
        return NOT_USED

    def determine_edition(self, definition: ProductDefinition, collection: EvidenceCollection) -> str:
        """Pick the highest edition whose signals are at least half matched.

        A signal matches when it is a substring of any detected feature name.
        Falls back to the lowest declared edition.
        """
        if not definition.edition_signals:
            return UNKNOWN_EDITION

        detected_features = [
            e.name for e in collection.by_type(EvidenceType.FEATURE_CONFIGURATION) if e.detected
        ]

        for edition, signals in reversed(definition.edition_signals):
            if not signals:
                continue
            matched = [s for s in signals if any(s in feature for feature in detected_features)]
            if len(matched) >= math.ceil(len(signals) * 0.5):
                logger.debug(f"{definition.name}: edition {edition} matched {len(matched)}/{len(signals)} signals")
                return edition

        return definition.edition_signals[0][0]
