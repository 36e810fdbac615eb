from typing import Optional

from core.analyzer_registry import AnalyzerRegistry
from core.evidence_collector import EvidenceCollector
from models.evidence import Evidence, EvidenceType
from models.product import IndicatorItem


@AnalyzerRegistry.register("feature", evidence_type=EvidenceType.FEATURE_CONFIGURATION)
class FeatureIndicatorAnalyzer:
    def __init__(self, collector: EvidenceCollector):
        self.collector = collector

    async def analyze(self, item: IndicatorItem) -> Optional[Evidence]:
        return await self.collector.check_feature(item.name, item.detection_methods, weight=item.weight)
