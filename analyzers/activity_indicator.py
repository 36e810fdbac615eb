import logging
from typing import Optional

from core.analyzer_registry import AnalyzerRegistry
from core.evidence_collector import EvidenceCollector
from models.evidence import Evidence, EvidenceType
from models.product import IndicatorItem

logger = logging.getLogger(__name__)


@AnalyzerRegistry.register("activity", evidence_type=EvidenceType.USER_ACTIVITY)
class ActivityIndicatorAnalyzer:
    """Runs the first declared detection method of an activity indicator."""

    def __init__(self, collector: EvidenceCollector):
        self.collector = collector

    async def analyze(self, item: IndicatorItem) -> Optional[Evidence]:
        if not item.detection_methods:
            logger.warning(f"No detection methods for activity indicator {item.name}, skipping")
            return None

        method = item.detection_methods[0]
        return await self.collector.check_user_activity(
            item.name,
            method.type,
            event_type=method.event_type,
            pattern=method.pattern,
            timeframe=method.timeframe,
            threshold=method.threshold if method.threshold is not None else item.activity_threshold,
            object=method.object,
            weight=item.weight,
        )
