import json

import pytest
import yaml

from core.rules_validator import (
    detect_duplicate_items,
    detect_empty_edition_signals,
    detect_shared_objects,
    detect_unmatched_edition_signals,
    parse_definitions,
    print_validation_report,
)
from models.evidence import EvidenceType
from models.product import ConfigurationError, ProductDefinition
from rules.rules_loader import (
    AnalysisSettings,
    analysis_settings_from,
    load_analyzer_config,
    load_product_definition,
    load_product_definitions,
    parse_product_definitions,
    scoring_config_from,
)


def _write_config(directory, algorithms):
    (directory / "analyzer_config.yaml").write_text(yaml.safe_dump({"scoringEngine": {"algorithms": algorithms}}))


class TestBundledRules:
    def test_bundled_config_parses(self):
        config = load_analyzer_config()
        scoring = scoring_config_from(config)

        assert scoring.evidence_weights[EvidenceType.USER_ACTIVITY] == 1.5
        assert scoring.decay_rate == 0.01
        assert (scoring.thresholds.active, scoring.thresholds.limited, scoring.thresholds.inactive) == (70, 40, 10)
        assert analysis_settings_from(config) == AnalysisSettings()

    def test_bundled_products_parse(self):
        definitions = parse_product_definitions(load_product_definitions())

        assert list(definitions) == ["experience_cloud", "health_cloud", "sales_cloud", "service_cloud"]
        service = definitions["service_cloud"]
        assert service.name == "Service Cloud"
        assert [edition for edition, _ in service.edition_signals] == ["Professional", "Enterprise", "Unlimited"]
        assert all(definition.items() for definition in definitions.values())

    def test_bundled_products_are_consistent(self, capsys):
        definitions = parse_definitions()
        for definition in definitions.values():
            assert detect_duplicate_items(definition) == {}
            assert detect_unmatched_edition_signals(definition) == {}
            assert detect_empty_edition_signals(definition) == []
        assert detect_shared_objects(definitions) == {}

        assert print_validation_report(definitions) == 0
        out = capsys.readouterr().out
        assert "PRODUCT DEFINITIONS VALIDATION REPORT" in out
        assert "Total Products: 4" in out


class TestLoading:
    def test_json_definitions_load(self, tmp_path):
        definition = {"name": "JSON Cloud", "indicators": [{"category": "Core", "items": [{"type": "object", "name": "Account"}]}]}
        (tmp_path / "json_cloud.json").write_text(json.dumps(definition))

        assert load_product_definition("json_cloud", str(tmp_path)) == definition
        assert list(load_product_definitions(str(tmp_path))) == ["json_cloud"]

    def test_missing_definition(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_product_definition("nope", str(tmp_path))

    def test_missing_products_dir(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_product_definitions(str(tmp_path / "missing"))

    def test_invalid_yaml(self, tmp_path):
        (tmp_path / "broken.yaml").write_text("name: [unclosed")
        with pytest.raises(ConfigurationError, match="Error parsing"):
            load_product_definition("broken", str(tmp_path))

    def test_non_mapping_definition(self, tmp_path):
        (tmp_path / "list.yaml").write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            load_product_definition("list", str(tmp_path))

    def test_config_requires_default_algorithm(self, tmp_path, scoring_config):
        _write_config(tmp_path, {"aggressive": scoring_config})
        with pytest.raises(ConfigurationError, match="default algorithm"):
            load_analyzer_config(str(tmp_path))

    def test_missing_config_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_analyzer_config(str(tmp_path))

    def test_named_algorithm(self, tmp_path, scoring_config):
        aggressive = dict(scoring_config, decayFactors={"rate": 0.05})
        _write_config(tmp_path, {"default": scoring_config, "aggressive": aggressive})
        config = load_analyzer_config(str(tmp_path))

        assert scoring_config_from(config, "aggressive").decay_rate == 0.05
        with pytest.raises(ConfigurationError, match="Unknown scoring algorithm"):
            scoring_config_from(config, "gentle")

    def test_bare_scoring_config(self, scoring_config):
        assert scoring_config_from(scoring_config).thresholds.active == 70


class TestAnalysisSettings:
    def test_defaults(self):
        settings = AnalysisSettings.from_dict(None)
        assert settings.strategy == "probability"
        assert settings.max_concurrency == 4
        assert settings.probe_timeout_seconds == 30.0
        assert settings.concurrent_products is False
        assert settings.simulate_event_logs is False

    def test_values(self):
        settings = AnalysisSettings.from_dict({"maxConcurrency": 1, "concurrentProducts": True, "probeTimeoutSeconds": 5})
        assert settings.max_concurrency == 1
        assert settings.concurrent_products is True
        assert settings.probe_timeout_seconds == 5

    def test_zero_concurrency_rejected(self):
        with pytest.raises(ConfigurationError):
            AnalysisSettings.from_dict({"maxConcurrency": 0})


class TestValidator:
    def _definition(self, indicators, edition_signals=None):
        return ProductDefinition.from_dict({
            "name": "Test Cloud",
            "indicators": indicators,
            "editionSignals": edition_signals or {},
        })

    def test_duplicate_items(self):
        definition = self._definition([
            {"category": "Core", "items": [{"type": "object", "name": "Case"}]},
            {"category": "Usage", "items": [{"type": "object", "name": "Case"}, {"type": "object", "name": "Lead"}]},
        ])
        assert detect_duplicate_items(definition) == {"Case": ["Core", "Usage"]}

    def test_shared_objects(self):
        first = self._definition([{"category": "Core", "items": [{"type": "object", "name": "Account"}]}])
        second = self._definition([{"category": "Core", "items": [
            {"type": "object", "name": "Account"},
            {"type": "feature", "name": "Contact"},
        ]}])
        assert detect_shared_objects({"a": first, "b": second}) == {"Account": ["a", "b"]}

    def test_unmatched_edition_signals(self, capsys):
        definition = self._definition(
            [{"category": "Features", "items": [{"type": "feature", "name": "Omni-Channel Routing"}]}],
            {"Enterprise": ["Omni-Channel", "Knowledge"]},
        )
        assert detect_unmatched_edition_signals(definition) == {"Enterprise": ["Knowledge"]}
        assert print_validation_report({"test": definition}) == 1
        assert "UNMATCHABLE EDITION SIGNALS: 1" in capsys.readouterr().out

    def test_empty_edition_signals(self, capsys):
        definition = self._definition(
            [{"category": "Features", "items": [{"type": "feature", "name": "Knowledge"}]}],
            {"Professional": [], "Enterprise": ["Knowledge"], "Unlimited": None},
        )
        assert detect_empty_edition_signals(definition) == ["Professional", "Unlimited"]
        assert print_validation_report({"test": definition}) == 2
        assert "EDITIONS WITHOUT SIGNALS: Professional, Unlimited" in capsys.readouterr().out

    def test_parse_definitions_names_bad_product(self, tmp_path):
        (tmp_path / "bad.yaml").write_text(yaml.safe_dump({"name": "Bad", "indicators": []}))
        with pytest.raises(ConfigurationError, match="^bad: "):
            parse_definitions(str(tmp_path))


class TestDefinitionValues:
    def _definition(self, item, **extra):
        return dict({"name": "Bad Cloud", "indicators": [{"category": "Core", "items": [item]}]}, **extra)

    @pytest.mark.parametrize("item", [
        {"type": "object", "name": "Case", "activityThreshold": "ten"},
        {"type": "object", "name": "Case", "activityThreshold": -1},
        {"type": "object", "name": "Case", "activityThreshold": True},
        {"type": "api", "name": "ERP", "detectionMethods": [{"type": "integration", "threshold": "5"}]},
        {"type": "feature", "name": "Sites", "detectionMethods": [{"type": "metadata", "minCount": [2]}]},
        {"type": "api", "name": "ERP", "detectionMethods": [{"type": "integration", "keywords": "erp"}]},
    ])
    def test_bad_numbers_and_keywords_rejected(self, item):
        with pytest.raises(ConfigurationError, match="Case|ERP|metadata|integration"):
            ProductDefinition.from_dict(self._definition(item))

    def test_numeric_thresholds_accepted(self):
        definition = ProductDefinition.from_dict(self._definition(
            {"type": "object", "name": "Case", "activityThreshold": 0}
        ))
        assert definition.items()[0].activity_threshold == 0

    def test_edition_signals_must_be_lists(self):
        data = self._definition({"type": "feature", "name": "Knowledge"}, editionSignals={"Enterprise": "Knowledge"})
        with pytest.raises(ConfigurationError, match="editionSignals.Enterprise"):
            ProductDefinition.from_dict(data)
