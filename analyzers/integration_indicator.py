import logging
from typing import Optional

from core.analyzer_registry import AnalyzerRegistry
from core.evidence_collector import EvidenceCollector
from models.evidence import Evidence, EvidenceType
from models.product import IndicatorItem

logger = logging.getLogger(__name__)


@AnalyzerRegistry.register("integration", evidence_type=EvidenceType.FEATURE_CONFIGURATION)
@AnalyzerRegistry.register("api", evidence_type=EvidenceType.API_USAGE)
class IntegrationIndicatorAnalyzer:
    """API indicators count integration artifacts; other integrations are detected like features."""

    def __init__(self, collector: EvidenceCollector):
        self.collector = collector

    def evidence_type_for(self, item: IndicatorItem) -> EvidenceType:
        if item.type == "api" and item.detection_methods:
            return EvidenceType.API_USAGE
        return EvidenceType.FEATURE_CONFIGURATION

    async def analyze(self, item: IndicatorItem) -> Optional[Evidence]:
        if item.type == "api" and item.detection_methods:
            method = item.detection_methods[0]
            return await self.collector.check_api_usage(
                item.name,
                object=method.object,
                timeframe=method.timeframe,
                threshold=method.threshold,
                keywords=method.keywords,
                weight=item.weight,
            )

        if item.type == "api":
            logger.debug(f"API indicator {item.name} has no detection methods, checking as a feature")
        return await self.collector.check_feature(item.name, item.detection_methods, weight=item.weight)
