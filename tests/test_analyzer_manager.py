import pytest
import yaml

from core.analyzer_manager import AnalyzerManager
from core.product_analyzer import ProductAnalyzer
from models.analysis_result import ImplementationAnalysisResult


def _product(name, object_name):
    return {
        "name": name,
        "indicators": [{"category": "Core", "items": [{"type": "object", "name": object_name}]}],
    }


PRODUCTS = {
    "sales_cloud": _product("Sales Cloud", "Opportunity"),
    "service_cloud": _product("Service Cloud", "Case"),
    "health_cloud": _product("Health Cloud", "CarePlan"),
}


@pytest.fixture
def org(make_client):
    return make_client(
        describes={"Opportunity": {"fields": []}, "Case": {"fields": []}},
        queries={"SELECT COUNT() FROM Case": {"totalSize": 30, "done": True, "records": []}},
    )


@pytest.mark.asyncio
async def test_results_keep_requested_order(org, scoring_config):
    manager = AnalyzerManager(org, scoring_config, PRODUCTS)
    results = await manager.analyze_all(["service_cloud", "sales_cloud"])

    assert list(results) == ["service_cloud", "sales_cloud"]
    assert results["service_cloud"].category == "Active"
    assert manager.errors == {}


@pytest.mark.asyncio
async def test_default_runs_every_product(org, scoring_config):
    manager = AnalyzerManager(org, scoring_config, PRODUCTS)
    results = await manager.analyze_all()

    assert list(results) == ["sales_cloud", "service_cloud", "health_cloud"]
    assert results["health_cloud"].category == "Not Used"


@pytest.mark.asyncio
async def test_invalid_product_is_isolated(org, scoring_config):
    products = dict(PRODUCTS, broken={"name": "Broken"})
    manager = AnalyzerManager(org, scoring_config, products)
    results = await manager.analyze_all()

    assert "broken" not in results
    assert "missing indicators" in manager.errors["broken"]
    assert set(results) == {"sales_cloud", "service_cloud", "health_cloud"}


@pytest.mark.asyncio
async def test_unknown_product_key(org, scoring_config):
    manager = AnalyzerManager(org, scoring_config, PRODUCTS)
    with pytest.raises(KeyError, match="Available products"):
        await manager.analyze_product("marketing_cloud")
    with pytest.raises(KeyError):
        await manager.analyze_all(["sales_cloud", "marketing_cloud"])
    assert org.calls == []


@pytest.mark.asyncio
async def test_concurrent_products_match_sequential(org, scoring_config):
    sequential = await AnalyzerManager(org, scoring_config, PRODUCTS).analyze_all()
    concurrent = await AnalyzerManager(org, scoring_config, PRODUCTS, concurrent_products=True).analyze_all()

    assert list(concurrent) == list(sequential)
    for key in sequential:
        assert concurrent[key].category == sequential[key].category
        assert concurrent[key].score == pytest.approx(sequential[key].score, abs=0.01)


@pytest.mark.asyncio
async def test_from_config_dir(tmp_path, org, scoring_config):
    config = {
        "scoringEngine": {"algorithms": {"default": scoring_config}},
        "analysis": {"strategy": "implementation", "maxConcurrency": 2},
    }
    (tmp_path / "analyzer_config.yaml").write_text(yaml.safe_dump(config))
    products_dir = tmp_path / "products"
    products_dir.mkdir()
    (products_dir / "service_cloud.yaml").write_text(yaml.safe_dump(PRODUCTS["service_cloud"]))
    (products_dir / "notes.txt").write_text("not a definition")

    manager = AnalyzerManager.from_config_dir(org, str(tmp_path), probe_timeout=None)

    assert manager.available_products == ["service_cloud"]
    assert manager.max_concurrency == 2
    assert manager.probe_timeout == 30.0
    results = await manager.analyze_all()
    assert isinstance(results["service_cloud"], ImplementationAnalysisResult)
    assert results["service_cloud"].implementation_status == "Implemented"


def test_overrides_take_precedence(tmp_path, org, scoring_config):
    config = {"scoringEngine": {"algorithms": {"default": scoring_config}}}
    (tmp_path / "analyzer_config.yaml").write_text(yaml.safe_dump(config))
    (tmp_path / "products").mkdir()

    manager = AnalyzerManager.from_config_dir(org, str(tmp_path), strategy="implementation", max_concurrency=1)

    assert manager.strategy == "implementation"
    assert manager.max_concurrency == 1
    assert manager.available_products == []


@pytest.mark.asyncio
async def test_non_numeric_threshold_does_not_sink_other_products(make_client, scoring_config):
    org = make_client(
        describes={"Case": {"fields": []}, "Opportunity": {"fields": []}},
        queries={"SELECT COUNT() FROM Case": {"totalSize": 15, "done": True, "records": []}},
    )
    bad = {
        "name": "Bad Cloud",
        "indicators": [{"category": "Core", "items": [{"type": "object", "name": "Case", "activityThreshold": "ten"}]}],
    }
    manager = AnalyzerManager(org, scoring_config, {"bad": bad, "sales_cloud": PRODUCTS["sales_cloud"]})
    results = await manager.analyze_all()

    assert list(results) == ["sales_cloud"]
    assert "activityThreshold" in manager.errors["bad"]
    assert results["sales_cloud"].evidence[0].detected is True


@pytest.mark.asyncio
async def test_unexpected_failure_is_isolated(org, scoring_config, monkeypatch):
    original = ProductAnalyzer.analyze

    async def flaky(self):
        if self.product_key == "service_cloud":
            raise TypeError("unsupported operand")
        return await original(self)

    monkeypatch.setattr(ProductAnalyzer, "analyze", flaky)
    manager = AnalyzerManager(org, scoring_config, PRODUCTS, concurrent_products=True)
    results = await manager.analyze_all()

    assert list(results) == ["sales_cloud", "health_cloud"]
    assert manager.errors == {"service_cloud": "unsupported operand"}
