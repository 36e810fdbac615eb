"""Object indicators: sObject presence refined by recent record volume."""
import logging
from typing import Optional

from core.analyzer_registry import AnalyzerRegistry
from core.evidence_collector import EvidenceCollector
from models.evidence import Evidence, EvidenceType
from models.product import IndicatorItem

logger = logging.getLogger(__name__)

USAGE_TIMEFRAME = "last30Days"


@AnalyzerRegistry.register("object", evidence_type=EvidenceType.OBJECT_PRESENCE)
class ObjectIndicatorAnalyzer:
    def __init__(self, collector: EvidenceCollector):
        self.collector = collector

    async def analyze(self, item: IndicatorItem) -> Optional[Evidence]:
        presence = await self.collector.check_object(
            item.name,
            required_fields=item.required_fields,
            check_record_count=True,
            check_last_modified=True,
            weight=item.weight,
        )
        # Usage is only probed for objects the org actually has
        if not presence.detected:
            return presence

        usage = await self.collector.check_object_usage(
            item.name,
            timeframe=USAGE_TIMEFRAME,
            threshold=item.activity_threshold,
        )
        logger.debug(f"{item.name}: usage count {usage.details.count} (threshold {usage.details.threshold})")
        return presence.with_usage(usage)
