import asyncio
import logging
from typing import Any, Mapping, Optional, Union

from core.analyzer_registry import AnalyzerRegistry
from core.evidence_collector import EvidenceCollector
from core.result_strategies import DEFAULT_STRATEGY, ResultStrategy, get_strategy
from core.scoring_engine import ScoringEngine
from models.analysis_result import AnalysisResult
from models.evidence import Evidence, EvidenceCollection
from models.product import ConfigurationError, IndicatorItem, ProductDefinition, ScoringConfig
from salesforce.client import OrgClient

# Import all indicator analyzers to trigger @AnalyzerRegistry.register decorators
import analyzers.object_indicator
import analyzers.feature_indicator
import analyzers.activity_indicator
import analyzers.integration_indicator
import analyzers.code_indicator

DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_PROBE_TIMEOUT = 30.0


class ProductAnalyzer:
    """Collects evidence for one product definition and builds its result.

    Items within a category are probed concurrently (at most ``max_concurrency``
    at a time); categories run in declaration order and evidence keeps the
    declared item order regardless of completion order.
    """

    def __init__(
        self,
        client: Optional[OrgClient],
        product_key: str,
        definition: Union[ProductDefinition, Mapping[str, Any]],
        scoring_config: Union[ScoringConfig, Mapping[str, Any]],
        strategy: Union[str, ResultStrategy] = DEFAULT_STRATEGY,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        probe_timeout: Optional[float] = DEFAULT_PROBE_TIMEOUT,
        collector: Optional[EvidenceCollector] = None,
        engine: Optional[ScoringEngine] = None,
    ):
        """Validates the definition and config up front; raises ConfigurationError before any probing."""
        self.logger = logging.getLogger(__name__)
        if collector is None and client is None:
            raise ValueError("Either an org client or an evidence collector is required")
        if max_concurrency < 1:
            raise ConfigurationError(f"max_concurrency must be at least 1, got {max_concurrency}")

        self.product_key = product_key
        self.definition = (
            definition if isinstance(definition, ProductDefinition) else ProductDefinition.from_dict(definition)
        )
        self.engine = engine or ScoringEngine(scoring_config)
        self.strategy = get_strategy(strategy) if isinstance(strategy, str) else strategy
        self.collector = collector or EvidenceCollector(client)
        self.max_concurrency = max_concurrency
        self.probe_timeout = probe_timeout
        self.analyzers = AnalyzerRegistry.instantiate_all(self.collector)

    async def analyze(self) -> AnalysisResult:
        logger = self.logger
        name = self.definition.name
        logger.info(f"Starting {name} analysis")

        collection = EvidenceCollection(name)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        for category in self.definition.indicators:
            logger.info(f"Analyzing {category.category} ({len(category.items)} items)")
            results = await asyncio.gather(*(self._probe(item, semaphore) for item in category.items))
            for evidence in results:
                if evidence is not None:
                    collection.add(evidence)

        result = self.strategy.build(self.product_key, self.definition, collection, self.engine)
        logger.info(f"{name} analysis complete: {result.description}")
        return result

    async def _probe(self, item: IndicatorItem, semaphore: asyncio.Semaphore) -> Optional[Evidence]:
        logger = self.logger
        analyzer = self.analyzers.get(item.type)
        if analyzer is None:
            logger.warning(f"Unknown indicator type '{item.type}' for {item.name}, skipping")
            return None

        if hasattr(analyzer, "evidence_type_for"):
            evidence_type = analyzer.evidence_type_for(item)
        else:
            evidence_type = AnalyzerRegistry.get_evidence_type(item.type)
        async with semaphore:
            try:
                evidence = await asyncio.wait_for(analyzer.analyze(item), timeout=self.probe_timeout)
                if evidence is not None:
                    logger.debug(f"{item.type} indicator {item.name}: detected={evidence.detected}")
                return evidence
            except asyncio.TimeoutError:
                logger.warning(f"{item.type} indicator {item.name} timed out after {self.probe_timeout}s")
                return Evidence.failure(evidence_type, item.name, "timeout", item.weight)
            except Exception as e:
                logger.error(f"Error in {item.type} indicator {item.name}: {e}", exc_info=True)
                return Evidence.failure(evidence_type, item.name, str(e) or type(e).__name__, item.weight)
