from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from models.evidence import Evidence

IMPLEMENTED = "Implemented"
PARTIALLY_IMPLEMENTED = "Partially Implemented"
NOT_IMPLEMENTED = "Not Implemented"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AnalysisResult(ABC):
    """Fields shared by both result variants."""
    product_key: str
    product_name: str
    edition: str
    evidence_summary: Dict[str, Any] = field(default_factory=dict)
    significant_findings: List[str] = field(default_factory=list)
    evidence: List[Evidence] = field(default_factory=list)
    timestamp: datetime = field(default_factory=_utcnow)

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        pass

    def _base_dict(self) -> Dict[str, Any]:
        return {
            "productKey": self.product_key,
            "product": self.product_name,
            "edition": self.edition,
            "summary": self.evidence_summary,
            "findings": list(self.significant_findings),
            "evidence": [e.to_dict() for e in self.evidence],
            "description": self.description,
            "analyzedAt": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class ProbabilityAnalysisResult(AnalysisResult):
    """Result carrying a 0-100 usage probability and its category."""
    score: float = 0.0
    category: str = "Not Used"

    @property
    def description(self) -> str:
        return f"{self.product_name} usage is {self.category.lower()} with likely {self.edition} edition."

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({"strategy": "probability", "score": round(self.score, 2), "category": self.category})
        return data


@dataclass(frozen=True)
class ImplementationAnalysisResult(AnalysisResult):
    """Result partitioning indicators into implemented and not implemented."""
    implemented: List[str] = field(default_factory=list)
    # Each entry is {"name": ..., "reason": ...}
    not_implemented: List[Dict[str, str]] = field(default_factory=list)
    implementation_status: str = NOT_IMPLEMENTED

    @property
    def implementation_rate(self) -> float:
        total = len(self.implemented) + len(self.not_implemented)
        return len(self.implemented) / total if total else 0.0

    @property
    def description(self) -> str:
        total = len(self.implemented) + len(self.not_implemented)
        return (
            f"{self.product_name} is {self.implementation_status.lower()} "
            f"({len(self.implemented)}/{total} indicators) with likely {self.edition} edition."
        )

    def to_dict(self) -> Dict[str, Any]:
        data = self._base_dict()
        data.update({
            "strategy": "implementation",
            "implementationStatus": self.implementation_status,
            "implementationRate": round(self.implementation_rate, 4),
            "implemented": list(self.implemented),
            "notImplemented": list(self.not_implemented),
        })
        return data
