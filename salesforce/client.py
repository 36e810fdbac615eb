"""Org client interface the evidence collector depends on."""
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

# Error codes Salesforce returns when an sObject does not exist
MISSING_OBJECT_CODES = {"INVALID_TYPE", "NOT_FOUND"}


class OrgQueryError(Exception):
    """A Salesforce API call failed with an error payload."""

    def __init__(self, message: str, error_code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code

    @property
    def is_missing_object(self) -> bool:
        return self.error_code in MISSING_OBJECT_CODES


@runtime_checkable
class OrgClient(Protocol):
    """Read-only access to a Salesforce org.

    ``query`` and ``tooling_query`` return the raw query payload
    (``totalSize``, ``done``, ``records``); ``describe`` returns the sObject
    describe payload; ``metadata_list`` returns one dict per metadata component.
    All methods raise :class:`OrgQueryError` on API errors.
    """

    async def describe(self, object_name: str) -> Dict[str, Any]:
        ...

    async def query(self, soql: str) -> Dict[str, Any]:
        ...

    async def tooling_query(self, soql: str) -> Dict[str, Any]:
        ...

    async def metadata_list(self, metadata_type: str) -> List[Dict[str, Any]]:
        ...
