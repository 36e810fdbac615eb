"""Dispatch of indicator item types to indicator analyzers."""
import logging
from typing import Dict, List, Optional, Type

from models.evidence import EvidenceType

logger = logging.getLogger(__name__)


class AnalyzerRegistry:
    """Registry mapping indicator item types (``object``, ``feature``, ...) to analyzer classes."""

    _analyzers: Dict[str, Type] = {}
    _evidence_types: Dict[str, EvidenceType] = {}
    _order: List[str] = []  # Preserve registration order

    @classmethod
    def register(cls, *item_types: str, evidence_type: EvidenceType):
        """Decorator to register an indicator analyzer for one or more item types.

        Args:
            item_types: Indicator item ``type`` values the analyzer handles
            evidence_type: Evidence type the analyzer produces, used when a probe
                has to be reported as failed without running it to completion

        Example:
            @AnalyzerRegistry.register("object", evidence_type=EvidenceType.OBJECT_PRESENCE)
            class ObjectIndicatorAnalyzer:
                def __init__(self, collector: EvidenceCollector):
                    self.collector = collector

                async def analyze(self, item: IndicatorItem) -> Optional[Evidence]:
                    ...
        """
        if not item_types:
            raise ValueError("At least one indicator item type is required")

        def decorator(analyzer_class: Type):
            for item_type in item_types:
                if item_type in cls._analyzers:
                    logger.warning(f"Indicator type '{item_type}' already registered, overwriting")
                else:
                    cls._order.append(item_type)

                cls._analyzers[item_type] = analyzer_class
                cls._evidence_types[item_type] = evidence_type
                logger.debug(f"Registered indicator analyzer: {item_type} -> {analyzer_class.__name__}")
            return analyzer_class
        return decorator

    @classmethod
    def get_all_types(cls) -> List[str]:
        """Get all registered item types in registration order."""
        return cls._order.copy()

    @classmethod
    def get_analyzer_class(cls, item_type: str) -> Optional[Type]:
        return cls._analyzers.get(item_type)

    @classmethod
    def get_evidence_type(cls, item_type: str) -> Optional[EvidenceType]:
        return cls._evidence_types.get(item_type)

    @classmethod
    def instantiate_all(cls, collector) -> Dict[str, object]:
        """Instantiate one analyzer per registered item type, all sharing a collector.

        Classes registered for several item types get a single shared instance.
        """
        by_class: Dict[Type, object] = {}
        instances = {}
        for item_type in cls._order:
            analyzer_class = cls._analyzers[item_type]
            if analyzer_class not in by_class:
                by_class[analyzer_class] = analyzer_class(collector)
                logger.debug(f"Instantiated indicator analyzer: {analyzer_class.__name__}")
            instances[item_type] = by_class[analyzer_class]
        return instances

    @classmethod
    def clear(cls):
        """Clear all registrations (useful for testing)."""
        cls._analyzers.clear()
        cls._evidence_types.clear()
        cls._order.clear()
