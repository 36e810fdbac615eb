import os
import logging
import yaml
from dataclasses import dataclass
from typing import Any, Dict, Optional

from models.product import ConfigurationError, ProductDefinition, ScoringConfig

logger = logging.getLogger(__name__)

RULES_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_BASENAME = "analyzer_config"
PRODUCTS_SUBDIR = "products"
# YAML is a superset of JSON, so JSON definitions load through the same parser
DEFINITION_EXTENSIONS = (".yaml", ".yml", ".json")


@dataclass(frozen=True)
class AnalysisSettings:
    """Run options from the ``analysis`` section of the analyzer config."""
    strategy: str = "probability"
    max_concurrency: int = 4
    probe_timeout_seconds: Optional[float] = 30.0
    concurrent_products: bool = False
    simulate_event_logs: bool = False

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AnalysisSettings":
        data = data or {}
        settings = cls(
            strategy=data.get("strategy", cls.strategy),
            max_concurrency=int(data.get("maxConcurrency", cls.max_concurrency)),
            probe_timeout_seconds=data.get("probeTimeoutSeconds", cls.probe_timeout_seconds),
            concurrent_products=bool(data.get("concurrentProducts", cls.concurrent_products)),
            simulate_event_logs=bool(data.get("simulateEventLogs", cls.simulate_event_logs)),
        )
        if settings.max_concurrency < 1:
            raise ConfigurationError(f"maxConcurrency must be at least 1, got {settings.max_concurrency}")
        return settings


def load_yaml_file(filepath: str) -> Any:
    """Load one YAML (or JSON) file, turning read and parse problems into ConfigurationError."""
    try:
        with open(filepath, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"Configuration file not found: {filepath}") from None
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Error parsing {filepath}: {e}") from e


def _find_definition(directory: str, stem: str) -> Optional[str]:
    for ext in DEFINITION_EXTENSIONS:
        candidate = os.path.join(directory, stem + ext)
        if os.path.exists(candidate):
            return candidate
    return None


def load_analyzer_config(config_dir: Optional[str] = None) -> Dict[str, Any]:
    """Load and validate the analyzer config (``analyzer_config.yaml``) from a directory."""
    directory = config_dir or RULES_DIR
    filepath = _find_definition(directory, CONFIG_BASENAME)
    if filepath is None:
        raise ConfigurationError(f"Configuration file not found: {os.path.join(directory, CONFIG_BASENAME)}.yaml")

    config = load_yaml_file(filepath)
    if not isinstance(config, dict):
        raise ConfigurationError(f"Analyzer config {filepath} must be a mapping")
    algorithms = (config.get("scoringEngine") or {}).get("algorithms")
    if not algorithms:
        raise ConfigurationError("Invalid configuration: missing scoringEngine.algorithms")
    if not algorithms.get("default"):
        raise ConfigurationError("Invalid configuration: missing default algorithm")
    logger.debug(f"Loaded analyzer config from {filepath}")
    return config


def scoring_config_from(config: Dict[str, Any], algorithm: str = "default") -> ScoringConfig:
    """Parse ``scoringEngine.algorithms.<algorithm>``, or a bare algorithm mapping."""
    if "scoringEngine" in config:
        algorithms = (config.get("scoringEngine") or {}).get("algorithms") or {}
        if algorithm not in algorithms:
            raise ConfigurationError(f"Unknown scoring algorithm '{algorithm}'")
        return ScoringConfig.from_dict(algorithms[algorithm])
    return ScoringConfig.from_dict(config)


def analysis_settings_from(config: Dict[str, Any]) -> AnalysisSettings:
    return AnalysisSettings.from_dict(config.get("analysis"))


def load_product_definition(product_key: str, products_dir: Optional[str] = None) -> Dict[str, Any]:
    """Load the raw definition for one product key (the file stem)."""
    directory = products_dir or os.path.join(RULES_DIR, PRODUCTS_SUBDIR)
    filepath = _find_definition(directory, product_key)
    if filepath is None:
        raise ConfigurationError(f"Product definition not found: {product_key} in {directory}")
    data = load_yaml_file(filepath)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Product definition {filepath} must be a mapping")
    return data


def load_product_definitions(products_dir: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
    """
    Loads raw product definitions from every .yaml/.yml/.json file in a directory,
    keyed by file stem in sorted order. Definitions are validated later, per product.
    """
    directory = products_dir or os.path.join(RULES_DIR, PRODUCTS_SUBDIR)
    if not os.path.isdir(directory):
        raise ConfigurationError(f"Products directory not found: {directory}")

    products: Dict[str, Dict[str, Any]] = {}
    for filename in sorted(os.listdir(directory)):
        stem, ext = os.path.splitext(filename)
        if ext not in DEFINITION_EXTENSIONS:
            continue
        if stem in products:
            logger.warning(f"Duplicate product key '{stem}' ({filename}), keeping the first")
            continue
        products[stem] = load_product_definition(stem, directory)
    logger.debug(f"Loaded {len(products)} product definitions from {directory}")
    return products


def parse_product_definitions(raw: Dict[str, Dict[str, Any]]) -> Dict[str, ProductDefinition]:
    """Parse all raw definitions, failing on the first invalid one."""
    return {key: ProductDefinition.from_dict(data) for key, data in raw.items()}


# Example usage (for testing)
if __name__ == "__main__":
    definitions = parse_product_definitions(load_product_definitions())
    print(f"Loaded {len(definitions)} product definitions.")
    for key, definition in definitions.items():
        print(f"  - {key}: {definition.name} ({len(definition.items())} indicators)")
        for edition, signals in definition.edition_signals:
            print(f"    - Edition {edition}: {', '.join(signals)}")
