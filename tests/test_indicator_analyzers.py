import pytest
from unittest.mock import AsyncMock, patch

from analyzers.activity_indicator import ActivityIndicatorAnalyzer
from analyzers.code_indicator import CodeIndicatorAnalyzer
from analyzers.integration_indicator import IntegrationIndicatorAnalyzer
from analyzers.object_indicator import ObjectIndicatorAnalyzer
from core.analyzer_registry import AnalyzerRegistry
from core.evidence_collector import EvidenceCollector
from models.evidence import (
    CodeReferenceDetails,
    Evidence,
    EvidenceType,
    ObjectPresenceDetails,
    ObjectUsageDetails,
)
from models.product import IndicatorItem


def _item(data):
    return IndicatorItem.from_dict(data, "Test")


@pytest.fixture
def collector():
    return AsyncMock(spec=EvidenceCollector)


def _code_evidence(name, matches):
    details = CodeReferenceDetails(matches=tuple(matches), message=None if matches else "none")
    return Evidence(EvidenceType.CODE_REFERENCES, name, bool(matches), details)


def test_registry_covers_indicator_types():
    for item_type in ("object", "feature", "activity", "integration", "api", "code"):
        assert AnalyzerRegistry.get_analyzer_class(item_type) is not None
    assert AnalyzerRegistry.get_evidence_type("api") is EvidenceType.API_USAGE
    assert AnalyzerRegistry.get_evidence_type("integration") is EvidenceType.FEATURE_CONFIGURATION


def test_api_and_integration_share_one_instance(collector):
    analyzers = AnalyzerRegistry.instantiate_all(collector)
    assert analyzers["api"] is analyzers["integration"]
    assert analyzers["object"].collector is collector


@pytest.mark.asyncio
async def test_object_usage_composed_into_presence(collector):
    collector.check_object.return_value = Evidence(
        EvidenceType.OBJECT_PRESENCE, "Case", True, ObjectPresenceDetails(record_count=40)
    )
    collector.check_object_usage.return_value = Evidence(
        EvidenceType.OBJECT_USAGE, "Case Usage", True, ObjectUsageDetails(count=40, threshold=25)
    )

    evidence = await ObjectIndicatorAnalyzer(collector).analyze(
        _item({"type": "object", "name": "Case", "activityThreshold": 25, "requiredFields": ["Status"]})
    )

    assert evidence.details.usage.count == 40
    collector.check_object_usage.assert_awaited_once_with("Case", timeframe="last30Days", threshold=25)
    assert collector.check_object.await_args.kwargs["required_fields"] == ("Status",)


@pytest.mark.asyncio
async def test_absent_object_skips_usage(collector):
    collector.check_object.return_value = Evidence(
        EvidenceType.OBJECT_PRESENCE, "Case", False, ObjectPresenceDetails(message="Object Case not found in org")
    )
    evidence = await ObjectIndicatorAnalyzer(collector).analyze(_item({"type": "object", "name": "Case"}))

    assert evidence.detected is False
    collector.check_object_usage.assert_not_awaited()


@pytest.mark.asyncio
async def test_activity_threshold_falls_back_to_item(collector):
    item = _item({
        "type": "activity",
        "name": "Agent Logins",
        "activityThreshold": 20,
        "detectionMethods": [{"type": "login", "timeframe": "last7Days"}, {"type": "report"}],
    })
    await ActivityIndicatorAnalyzer(collector).analyze(item)

    collector.check_user_activity.assert_awaited_once()
    args, kwargs = collector.check_user_activity.await_args
    assert args == ("Agent Logins", "login")
    assert kwargs["threshold"] == 20
    assert kwargs["timeframe"] == "last7Days"


@pytest.mark.asyncio
async def test_activity_without_methods_is_skipped(collector):
    evidence = await ActivityIndicatorAnalyzer(collector).analyze(_item({"type": "activity", "name": "Logins"}))
    assert evidence is None
    collector.check_user_activity.assert_not_awaited()


@pytest.mark.asyncio
async def test_api_item_counts_integrations(collector):
    item = _item({
        "type": "api",
        "name": "Service Integrations",
        "detectionMethods": [{"type": "integration", "object": "Case", "threshold": 3, "keywords": ["erp"]}],
    })
    await IntegrationIndicatorAnalyzer(collector).analyze(item)

    collector.check_api_usage.assert_awaited_once()
    kwargs = collector.check_api_usage.await_args.kwargs
    assert kwargs["object"] == "Case"
    assert kwargs["threshold"] == 3
    assert kwargs["keywords"] == ("erp",)
    collector.check_feature.assert_not_awaited()


@pytest.mark.asyncio
async def test_integration_item_is_checked_as_feature(collector):
    item = _item({
        "type": "integration",
        "name": "Computer Telephony Integration",
        "detectionMethods": [{"type": "object", "name": "CallCenter"}],
    })
    await IntegrationIndicatorAnalyzer(collector).analyze(item)

    collector.check_feature.assert_awaited_once()
    collector.check_api_usage.assert_not_awaited()


@pytest.mark.asyncio
async def test_code_first_method_with_matches_wins(collector):
    collector.check_code_references.side_effect = [
        _code_evidence("Case Automation", []),
        _code_evidence("Case Automation", ["CaseTrigger"]),
    ]
    item = _item({
        "type": "code",
        "name": "Case Automation",
        "detectionMethods": [
            {"type": "apex", "triggerObject": "Case"},
            {"type": "trigger", "triggerObject": "Case"},
            {"type": "lightning", "pattern": "case"},
        ],
    })
    evidence = await CodeIndicatorAnalyzer(collector).analyze(item)

    assert evidence.details.matches == ("CaseTrigger",)
    assert collector.check_code_references.await_count == 2


@pytest.mark.asyncio
async def test_code_without_search_methods_falls_back_to_feature(collector):
    item = _item({"type": "code", "name": "Managed Package", "detectionMethods": [{"type": "metadata", "path": "InstalledPackage"}]})
    await CodeIndicatorAnalyzer(collector).analyze(item)
    collector.check_feature.assert_awaited_once()
    collector.check_code_references.assert_not_awaited()


def test_evidence_type_follows_detection_methods(collector):
    code = CodeIndicatorAnalyzer(collector)
    integrations = IntegrationIndicatorAnalyzer(collector)

    search = _item({"type": "code", "name": "Case Automation", "detectionMethods": [{"type": "apex", "pattern": "Case"}]})
    package = _item({"type": "code", "name": "Managed Package", "detectionMethods": [{"type": "metadata", "path": "Pkg"}]})
    counted = _item({"type": "api", "name": "ERP Sync", "detectionMethods": [{"type": "integration", "object": "Case"}]})
    bare = _item({"type": "api", "name": "Mulesoft"})

    assert code.evidence_type_for(search) is EvidenceType.CODE_REFERENCES
    assert code.evidence_type_for(package) is EvidenceType.FEATURE_CONFIGURATION
    assert integrations.evidence_type_for(counted) is EvidenceType.API_USAGE
    assert integrations.evidence_type_for(bare) is EvidenceType.FEATURE_CONFIGURATION


@pytest.mark.asyncio
async def test_collector_failure_on_transport_error():
    client = AsyncMock()
    client.describe.side_effect = ConnectionError("connection reset by peer")

    evidence = await EvidenceCollector(client).check_object("Case", check_record_count=True)

    assert evidence.detected is False
    assert evidence.details.error == "connection reset by peer"
    client.query.assert_not_awaited()


@pytest.mark.asyncio
async def test_collector_logs_failures(make_client):
    with patch("core.evidence_collector.logger") as mock_logger:
        await EvidenceCollector(make_client()).check_code_references("Flows", "flow", pattern="x")
    mock_logger.warning.assert_called_once()
