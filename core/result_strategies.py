"""Strategies that turn an evidence collection into one of the two result variants."""
from abc import ABC, abstractmethod
from typing import Dict, List, Type

from core.findings import generate_findings, summarize_evidence
from core.scoring_engine import ScoringEngine
from models.analysis_result import (
    IMPLEMENTED,
    NOT_IMPLEMENTED,
    PARTIALLY_IMPLEMENTED,
    AnalysisResult,
    ImplementationAnalysisResult,
    ProbabilityAnalysisResult,
)
from models.evidence import EvidenceCollection
from models.product import ConfigurationError, ProductDefinition


class ResultStrategy(ABC):
    name = ""

    @abstractmethod
    def build(
        self,
        product_key: str,
        definition: ProductDefinition,
        collection: EvidenceCollection,
        engine: ScoringEngine,
    ) -> AnalysisResult:
        pass


class ProbabilityStrategy(ResultStrategy):
    """Weighted, decayed score mapped to a usage category."""
    name = "probability"

    def build(self, product_key, definition, collection, engine):
        score = engine.calculate_score(definition, collection)
        return ProbabilityAnalysisResult(
            product_key=product_key,
            product_name=definition.name,
            edition=engine.determine_edition(definition, collection),
            evidence_summary=summarize_evidence(definition, collection),
            significant_findings=generate_findings(definition, collection),
            evidence=collection.items,
            score=score,
            category=engine.categorize_score(score),
        )


class ImplementationStatusStrategy(ResultStrategy):
    """Partitions indicators into implemented and not implemented, without scoring."""
    name = "implementation"

    def build(self, product_key, definition, collection, engine):
        implemented: List[str] = []
        not_implemented: List[Dict[str, str]] = []
        for evidence in collection:
            if evidence.detected:
                implemented.append(evidence.name)
            else:
                reason = evidence.details.error or evidence.details.message
                not_implemented.append({"name": evidence.name, "reason": reason})

        if implemented and not not_implemented:
            status = IMPLEMENTED
        elif implemented:
            status = PARTIALLY_IMPLEMENTED
        else:
            status = NOT_IMPLEMENTED

        return ImplementationAnalysisResult(
            product_key=product_key,
            product_name=definition.name,
            edition=engine.determine_edition(definition, collection),
            evidence_summary=summarize_evidence(definition, collection),
            significant_findings=generate_findings(definition, collection),
            evidence=collection.items,
            implemented=implemented,
            not_implemented=not_implemented,
            implementation_status=status,
        )


STRATEGIES: Dict[str, Type[ResultStrategy]] = {
    ProbabilityStrategy.name: ProbabilityStrategy,
    ImplementationStatusStrategy.name: ImplementationStatusStrategy,
}
DEFAULT_STRATEGY = ProbabilityStrategy.name


def get_strategy(name: str = DEFAULT_STRATEGY) -> ResultStrategy:
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown result strategy '{name}'. Available: {', '.join(STRATEGIES)}"
        ) from None
