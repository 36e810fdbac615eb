import httpx
import logging
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

from core.cache import ResourceCache
from salesforce.client import OrgQueryError

logger = logging.getLogger(__name__)

# Default timeout configuration (in seconds)
DEFAULT_TIMEOUT = 30.0
DEFAULT_CONNECT_TIMEOUT = 5.0
DEFAULT_API_VERSION = "60.0"

_SOAP_NS = "http://schemas.xmlsoap.org/soap/envelope/"
_METADATA_NS = "http://soap.sforce.com/2006/04/metadata"

_LIST_METADATA_ENVELOPE = """<?xml version="1.0" encoding="utf-8"?>
<soapenv:Envelope xmlns:soapenv="{soap}" xmlns:met="{met}">
  <soapenv:Header>
    <met:SessionHeader><met:sessionId>{session}</met:sessionId></met:SessionHeader>
  </soapenv:Header>
  <soapenv:Body>
    <met:listMetadata>
      <met:queries><met:type>{metadata_type}</met:type></met:queries>
      <met:asOfVersion>{version}</met:asOfVersion>
    </met:listMetadata>
  </soapenv:Body>
</soapenv:Envelope>"""


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _error_from_response(response: httpx.Response) -> OrgQueryError:
    """Map a Salesforce REST error payload (a list of {errorCode, message}) to OrgQueryError."""
    error_code = None
    message = f"HTTP {response.status_code}"
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, list) and payload and isinstance(payload[0], dict):
        payload = payload[0]
    if isinstance(payload, dict):
        error_code = payload.get("errorCode") or payload.get("error")
        message = payload.get("message") or payload.get("error_description") or message
    elif response.text:
        message = f"{message}: {response.text[:200]}"
    return OrgQueryError(message, error_code=error_code, status_code=response.status_code)


def parse_list_metadata(xml_text: str) -> List[Dict[str, Any]]:
    """Parse a listMetadata SOAP response into one dict per component.

    Raises OrgQueryError for SOAP faults.
    """
    root = ET.fromstring(xml_text)
    fault = root.find(f".//{{{_SOAP_NS}}}Fault")
    if fault is not None:
        code = fault.findtext("faultcode") or ""
        message = fault.findtext("faultstring") or "SOAP fault"
        raise OrgQueryError(message, error_code=code.split(":")[-1] or None, status_code=500)

    components = []
    for result in root.iter(f"{{{_METADATA_NS}}}result"):
        components.append({_local_name(child.tag): child.text for child in result})
    return components


class SalesforceRestClient:
    """Async org client over the Salesforce REST, Tooling and Metadata APIs.

    A single httpx.AsyncClient is shared across calls so probes can run
    concurrently. Describe payloads are cached per object name.
    """

    def __init__(
        self,
        instance_url: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        timeout: Optional[float] = None,
        connect_timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        cache: Optional[ResourceCache] = None,
    ):
        self.instance_url = instance_url.rstrip("/")
        self.api_version = api_version
        self._access_token = access_token
        self._cache = cache or ResourceCache()
        self._owns_client = http_client is None

        timeout_config = httpx.Timeout(
            timeout=timeout or DEFAULT_TIMEOUT,
            connect=connect_timeout or DEFAULT_CONNECT_TIMEOUT,
        )
        self._http = http_client or httpx.AsyncClient(timeout=timeout_config)
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    @property
    def data_url(self) -> str:
        return f"{self.instance_url}/services/data/v{self.api_version}"

    async def __aenter__(self) -> "SalesforceRestClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        logger.debug(f"HTTP {method} {url}")
        try:
            response = await self._http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"HTTP timeout for {url}: {e}")
            raise
        except httpx.RequestError as e:
            logger.warning(f"HTTP request error for {url}: {e}")
            raise

        logger.debug(f"HTTP {response.status_code} {url} ({len(response.content)} bytes)")
        return response

    async def _get_json(self, url: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        response = await self._request("GET", url, headers=self._headers, params=params)
        if response.status_code >= 400:
            raise _error_from_response(response)
        return response.json()

    async def describe(self, object_name: str) -> Dict[str, Any]:
        cache_key = f"describe:{object_name}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        result = await self._get_json(f"{self.data_url}/sobjects/{object_name}/describe")
        self._cache.set(cache_key, result)
        return result

    async def _query_all(self, endpoint: str, soql: str) -> Dict[str, Any]:
        result = await self._get_json(f"{self.data_url}/{endpoint}", params={"q": soql})
        records = list(result.get("records", []))

        # Follow pagination until the server reports done
        next_url = result.get("nextRecordsUrl")
        while not result.get("done", True) and next_url:
            result = await self._get_json(f"{self.instance_url}{next_url}")
            records.extend(result.get("records", []))
            next_url = result.get("nextRecordsUrl")

        return {"totalSize": result.get("totalSize", len(records)), "done": True, "records": records}

    async def query(self, soql: str) -> Dict[str, Any]:
        return await self._query_all("query", soql)

    async def tooling_query(self, soql: str) -> Dict[str, Any]:
        return await self._query_all("tooling/query", soql)

    async def metadata_list(self, metadata_type: str) -> List[Dict[str, Any]]:
        body = _LIST_METADATA_ENVELOPE.format(
            soap=_SOAP_NS,
            met=_METADATA_NS,
            session=escape(self._access_token),
            metadata_type=escape(metadata_type),
            version=escape(self.api_version),
        )
        headers = {"Content-Type": "text/xml; charset=utf-8", "SOAPAction": '""'}
        response = await self._request(
            "POST",
            f"{self.instance_url}/services/Soap/m/{self.api_version}",
            headers=headers,
            content=body,
        )
        if response.status_code >= 400 and "Fault" not in response.text:
            raise _error_from_response(response)
        return parse_list_metadata(response.text)
