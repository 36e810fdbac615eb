"""Coordinates product analyzers across all configured products."""
import asyncio
import os
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from core.evidence_collector import EvidenceCollector
from core.product_analyzer import DEFAULT_MAX_CONCURRENCY, DEFAULT_PROBE_TIMEOUT, ProductAnalyzer
from core.result_strategies import DEFAULT_STRATEGY
from core.scoring_engine import ScoringEngine
from models.analysis_result import AnalysisResult
from models.product import ConfigurationError, ProductDefinition, ScoringConfig
from rules.rules_loader import (
    PRODUCTS_SUBDIR,
    analysis_settings_from,
    load_analyzer_config,
    load_product_definitions,
    scoring_config_from,
)
from salesforce.client import OrgClient

logger = logging.getLogger(__name__)


class AnalyzerManager:
    """Runs product analyses against one org.

    Products are analyzed one after another unless ``concurrent_products`` is
    set. A product whose definition is invalid or whose analysis fails is
    skipped and its error is recorded in ``errors``; the others still run.
    """

    def __init__(
        self,
        client: OrgClient,
        scoring_config: Union[ScoringConfig, Mapping[str, Any]],
        products: Mapping[str, Union[ProductDefinition, Mapping[str, Any]]],
        strategy: str = DEFAULT_STRATEGY,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        probe_timeout: Optional[float] = DEFAULT_PROBE_TIMEOUT,
        concurrent_products: bool = False,
        simulate_event_logs: bool = False,
    ):
        self.client = client
        self.engine = ScoringEngine(scoring_config)
        self.products = dict(products)
        self.strategy = strategy
        self.max_concurrency = max_concurrency
        self.probe_timeout = probe_timeout
        self.concurrent_products = concurrent_products
        self.collector = EvidenceCollector(client, simulate_event_logs=simulate_event_logs)
        self.errors: Dict[str, str] = {}

    @classmethod
    def from_config_dir(cls, client: OrgClient, config_dir: Optional[str] = None, **overrides) -> "AnalyzerManager":
        """Build a manager from ``analyzer_config.yaml`` and ``products/`` in a config directory.

        Keyword overrides (e.g. ``strategy``) take precedence over the ``analysis`` section.
        """
        config = load_analyzer_config(config_dir)
        settings = analysis_settings_from(config)
        products_dir = None
        if config_dir:
            products_dir = os.path.join(config_dir, PRODUCTS_SUBDIR)

        options = {
            "strategy": settings.strategy,
            "max_concurrency": settings.max_concurrency,
            "probe_timeout": settings.probe_timeout_seconds,
            "concurrent_products": settings.concurrent_products,
            "simulate_event_logs": settings.simulate_event_logs,
        }
        options.update({k: v for k, v in overrides.items() if v is not None})
        return cls(client, scoring_config_from(config), load_product_definitions(products_dir), **options)

    @property
    def available_products(self) -> List[str]:
        return list(self.products)

    async def analyze_product(self, product_key: str) -> AnalysisResult:
        if product_key not in self.products:
            raise KeyError(
                f"No analyzer available for {product_key}. Available products: {', '.join(self.available_products)}"
            )

        logger.info(f"Starting analysis for {product_key}")
        analyzer = ProductAnalyzer(
            self.client,
            product_key,
            self.products[product_key],
            self.engine.config,
            strategy=self.strategy,
            max_concurrency=self.max_concurrency,
            probe_timeout=self.probe_timeout,
            collector=self.collector,
            engine=self.engine,
        )
        result = await analyzer.analyze()
        logger.info(f"Analysis complete for {product_key}")
        return result

    async def _analyze_isolated(self, product_key: str) -> Tuple[str, Optional[AnalysisResult]]:
        try:
            return product_key, await self.analyze_product(product_key)
        except ConfigurationError as e:
            logger.error(f"Skipping {product_key}: {e}")
            self.errors[product_key] = str(e)
            return product_key, None
        except Exception as e:
            logger.error(f"Analysis of {product_key} failed: {e}", exc_info=True)
            self.errors[product_key] = str(e) or type(e).__name__
            return product_key, None

    async def analyze_all(self, product_keys: Optional[List[str]] = None) -> Dict[str, AnalysisResult]:
        """Analyze the given products (default: all) and return results keyed by product key."""
        keys = list(product_keys) if product_keys else self.available_products
        for key in keys:
            if key not in self.products:
                raise KeyError(
                    f"No analyzer available for {key}. Available products: {', '.join(self.available_products)}"
                )
        self.errors = {}

        if self.concurrent_products:
            outcomes = await asyncio.gather(*(self._analyze_isolated(key) for key in keys))
        else:
            outcomes = [await self._analyze_isolated(key) for key in keys]

        return {key: result for key, result in outcomes if result is not None}
