"""Human-readable findings and per-category summaries of collected evidence."""
from typing import Any, Dict, List

from core.scoring_engine import USAGE_TYPES
from models.evidence import Evidence, EvidenceCollection, EvidenceType
from models.product import ProductDefinition

UNCATEGORIZED = "Uncategorized"


def generate_findings(definition: ProductDefinition, collection: EvidenceCollection) -> List[str]:
    """Turn detected evidence into findings, preferring the product's canned text."""
    findings_map = definition.findings_map
    findings: List[str] = []

    for evidence in collection.by_type(EvidenceType.OBJECT_PRESENCE):
        if evidence.detected:
            findings.append(findings_map.objects.get(evidence.name, f"{evidence.name} is being used"))

    for evidence in collection.by_type(EvidenceType.FEATURE_CONFIGURATION):
        if evidence.detected:
            findings.append(findings_map.features.get(evidence.name, f"{evidence.name} is configured"))

    code_count = sum(
        e.details.count or 0 for e in collection.by_type(EvidenceType.CODE_REFERENCES) if e.detected
    )
    if code_count > 0:
        template = findings_map.code_customization or "{count} code customizations found"
        findings.append(template.format(count=code_count))

    engaged = any(
        e.detected and e.details.count is not None and e.details.threshold is not None
        and e.details.count >= e.details.threshold
        for e in collection.by_type(EvidenceType.USER_ACTIVITY)
    )
    if engaged:
        findings.append(findings_map.user_engagement or "Active user engagement detected")

    return findings


def is_active(evidence: Evidence) -> bool:
    """Whether detected evidence also met its usage threshold."""
    if not evidence.detected:
        return False
    if evidence.type is EvidenceType.OBJECT_PRESENCE:
        usage = evidence.details.usage
    elif evidence.type in USAGE_TYPES:
        usage = evidence.details
    else:
        return False
    if usage is None or usage.count is None or usage.threshold is None:
        return False
    return usage.count >= usage.threshold


def _rate(part: int, total: int) -> int:
    return round(part / total * 100) if total else 0


def summarize_evidence(definition: ProductDefinition, collection: EvidenceCollection) -> Dict[str, Any]:
    """Group evidence by the indicator category that declared it.

    ``byCategory`` lists the detected evidence of each category; ``categories``
    holds per-category counts and percentage rates.
    """
    category_of = {}
    for category in definition.indicators:
        for item in category.items:
            category_of.setdefault(item.name, category.category)

    by_category: Dict[str, List[Dict[str, Any]]] = {c.category: [] for c in definition.indicators}
    counts: Dict[str, Dict[str, int]] = {
        c.category: {"totalItems": 0, "detectedItems": 0, "activeItems": 0} for c in definition.indicators
    }
    for evidence in collection:
        key = category_of.get(evidence.name, UNCATEGORIZED)
        stats = counts.setdefault(key, {"totalItems": 0, "detectedItems": 0, "activeItems": 0})
        stats["totalItems"] += 1
        if evidence.detected:
            stats["detectedItems"] += 1
            by_category.setdefault(key, []).append(evidence.to_dict())
        if is_active(evidence):
            stats["activeItems"] += 1

    categories = {
        name: dict(
            stats,
            detectionRate=_rate(stats["detectedItems"], stats["totalItems"]),
            usageRate=_rate(stats["activeItems"], stats["totalItems"]),
        )
        for name, stats in counts.items()
    }
    return {
        "totalItems": len(collection),
        "detectedItems": sum(s["detectedItems"] for s in counts.values()),
        "activeItems": sum(s["activeItems"] for s in counts.values()),
        "byCategory": by_category,
        "categories": categories,
    }
