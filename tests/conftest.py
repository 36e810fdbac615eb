import os
import sys
import pytest

# Ensure project root is on sys.path for imports like `core.*`
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Configure pytest-asyncio
pytest_plugins = ('pytest_asyncio',)

from salesforce.client import OrgQueryError  # noqa: E402


class FakeOrgClient:
    """In-memory org client.

    ``describes`` maps object names to describe payloads (or exceptions).
    ``queries`` / ``tooling`` map SOQL prefixes to payloads (or exceptions);
    the longest matching prefix wins and unmatched queries return no rows.
    """

    def __init__(self, describes=None, queries=None, tooling=None, metadata=None):
        self.describes = describes or {}
        self.queries = queries or {}
        self.tooling = tooling or {}
        self.metadata = metadata or {}
        self.calls = []

    @staticmethod
    def _resolve(value):
        if isinstance(value, Exception):
            raise value
        return value

    def _match(self, table, soql):
        for prefix in sorted(table, key=len, reverse=True):
            if soql.startswith(prefix):
                return self._resolve(table[prefix])
        return {"totalSize": 0, "done": True, "records": []}

    async def describe(self, object_name):
        self.calls.append(("describe", object_name))
        if object_name not in self.describes:
            raise OrgQueryError("The requested resource does not exist", "NOT_FOUND", 404)
        return self._resolve(self.describes[object_name])

    async def query(self, soql):
        self.calls.append(("query", soql))
        return self._match(self.queries, soql)

    async def tooling_query(self, soql):
        self.calls.append(("tooling", soql))
        return self._match(self.tooling, soql)

    async def metadata_list(self, metadata_type):
        self.calls.append(("metadata", metadata_type))
        if metadata_type not in self.metadata:
            return []
        return self._resolve(self.metadata[metadata_type])

    def soql(self, kind="query"):
        return [call[1] for call in self.calls if call[0] == kind]


@pytest.fixture
def make_client():
    return FakeOrgClient


@pytest.fixture
def scoring_config():
    return {
        "evidenceWeights": {
            "objectPresence": 1.0,
            "objectUsage": 1.0,
            "featureConfiguration": 1.0,
            "userActivity": 1.0,
            "apiUsage": 1.0,
            "codeReferences": 1.0,
        },
        "decayFactors": {"rate": 0.01},
        "thresholds": {"active": 70, "limited": 40, "inactive": 10},
    }
