import logging
from typing import Optional

from core.analyzer_registry import AnalyzerRegistry
from core.evidence_collector import EvidenceCollector
from models.evidence import Evidence, EvidenceType
from models.product import IndicatorItem

logger = logging.getLogger(__name__)

CODE_SEARCH_TYPES = {"apex", "trigger", "lightning"}


@AnalyzerRegistry.register("code", evidence_type=EvidenceType.CODE_REFERENCES)
class CodeIndicatorAnalyzer:
    """Searches code for product references; the first method with matches wins.

    Indicators declaring no code-search methods are checked as features.
    """

    def __init__(self, collector: EvidenceCollector):
        self.collector = collector

    def evidence_type_for(self, item: IndicatorItem) -> EvidenceType:
        """Evidence type ``analyze`` produces for this item."""
        if any(m.type in CODE_SEARCH_TYPES for m in item.detection_methods):
            return EvidenceType.CODE_REFERENCES
        return EvidenceType.FEATURE_CONFIGURATION

    async def analyze(self, item: IndicatorItem) -> Optional[Evidence]:
        searches = [m for m in item.detection_methods if m.type in CODE_SEARCH_TYPES]
        if not searches:
            return await self.collector.check_feature(item.name, item.detection_methods, weight=item.weight)

        evidence = None
        for method in searches:
            evidence = await self.collector.check_code_references(
                item.name,
                method.type,
                trigger_object=method.trigger_object,
                pattern=method.pattern,
                weight=item.weight,
            )
            if evidence.detected:
                break
            logger.debug(f"{item.name}: no {method.type} matches")
        return evidence
