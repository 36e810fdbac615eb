"""Evidence collector: turns org queries into Evidence records.

Every public ``check_*`` coroutine returns exactly one Evidence and never
raises; probe failures become ``detected=False`` evidence with the error text.
"""
import base64
import json
import logging
import re
import warnings
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from models.evidence import (
    ActivityDetails,
    ApiUsageDetails,
    CodeReferenceDetails,
    Evidence,
    EvidenceType,
    FeatureDetails,
    ObjectPresenceDetails,
    ObjectUsageDetails,
)
from models.product import DetectionMethod
from salesforce.client import OrgClient, OrgQueryError

logger = logging.getLogger(__name__)

DEFAULT_USAGE_THRESHOLD = 10
DEFAULT_ACTIVITY_THRESHOLD = 50
DEFAULT_API_THRESHOLD = 5
DEFAULT_ACTIVITY_TIMEFRAME = "last30Days"
CODE_SEARCH_LIMIT = 100

# Salesforce-owned domain suffixes; anything else in the Domain table is custom
DEFAULT_DOMAIN_PATTERNS = [
    re.compile(r"\.sandbox\.my\.salesforce-sites\.com$"),
    re.compile(r"\.sandbox\.my\.site\.com$"),
    re.compile(r"\.my\.salesforce\.com$"),
    re.compile(r"\.my\.site\.com$"),
    re.compile(r"\.force\.com$"),
    re.compile(r"\.salesforce-sites\.com$"),
]

METADATA_MATCH_KEYS = ("fullName", "url", "domain", "siteUrl", "customUrl")

# (breakdown key, SOQL, fields searched for keywords, display field)
INTEGRATION_SOURCES = [
    ("connectedApps", "SELECT Id, Name FROM ConnectedApplication LIMIT 50", ("Name",), "Name"),
    ("namedCredentials", "SELECT Id, MasterLabel, Endpoint FROM NamedCredential LIMIT 50", ("MasterLabel", "Endpoint"), "MasterLabel"),
    ("remoteSites", "SELECT Id, Name, Url FROM RemoteSiteSetting LIMIT 50", ("Name", "Url"), "Name"),
    ("authProviders", "SELECT Id, FriendlyName, ProviderType FROM AuthProvider LIMIT 50", ("FriendlyName", "ProviderType"), "FriendlyName"),
]
INTEGRATION_FIELD_MARKERS = ("integration", "external", "sync")

# activity type -> (sObject, date field used for the timeframe)
ACTIVITY_SOURCES = {
    "login": ("LoginHistory", "LoginTime"),
    "report": ("Report", "LastRunDate"),
    "dashboard": ("Dashboard", "LastViewedDate"),
    "listView": ("ListView", "LastViewedDate"),
    "eventLog": ("EventLogFile", "LogDate"),
}
SUMMARY_ACTIVITY_TYPES = ("login", "report", "dashboard", "listView")

NUMERIC_FIELD_TYPES = {"int", "double", "currency", "percent", "long"}

_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")
_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")
_TIMEFRAME = re.compile(r"last(\d+)(Days|Months|Years)", re.IGNORECASE)


def soql_literal(value: Any) -> str:
    """Escape a value for use inside a single-quoted SOQL string literal."""
    return str(value).replace("\\", "\\\\").replace("'", "\\'")


def soql_like(value: Any) -> str:
    """Escape a value for use inside a LIKE pattern."""
    return soql_literal(value).replace("%", "\\%").replace("_", "\\_")


def soql_value(value: Any, field_type: Optional[str] = None) -> str:
    """Render a comparison value; booleans and numbers are unquoted for typed fields."""
    text = str(value)
    if field_type == "boolean" and text.lower() in ("true", "false"):
        return text.lower()
    if field_type in NUMERIC_FIELD_TYPES and _NUMBER.match(text):
        return text
    return f"'{soql_literal(text)}'"


def soql_identifier(name: str) -> str:
    if not name or not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid Salesforce API name: {name!r}")
    return name


def build_time_constraint(timeframe: Optional[str], date_field: str = "CreatedDate") -> str:
    """Translate ``lastNDays|Months|Years`` into a SOQL date literal clause.

    Anything else (including ``all``) means no constraint.
    """
    if not timeframe or not timeframe.startswith("last"):
        return ""
    match = _TIMEFRAME.match(timeframe)
    if not match:
        return ""
    number, unit = match.groups()
    return f"{date_field} = LAST_N_{unit.upper()}:{number}"


def _where(*clauses: Optional[str]) -> str:
    clauses = [c for c in clauses if c]
    return f" WHERE {' AND '.join(clauses)}" if clauses else ""


def is_default_domain(domain: str) -> bool:
    domain = domain.lower()
    return any(pattern.search(domain) for pattern in DEFAULT_DOMAIN_PATTERNS)


class EvidenceCollector:
    """Probes an org through an OrgClient and records what it finds as Evidence."""

    def __init__(self, client: OrgClient, simulate_event_logs: bool = False):
        self.client = client
        self.simulate_event_logs = simulate_event_logs
        self._feature_checks = {
            "metadata": self._check_metadata,
            "field": self._check_field,
            "object": self._check_object_method,
        }

    def _failure(self, evidence_type: EvidenceType, name: str, error: Exception, weight: float) -> Evidence:
        if isinstance(error, OrgQueryError):
            logger.warning(f"{evidence_type.value} probe '{name}' failed: {error.message} ({error.error_code})")
        else:
            logger.warning(f"{evidence_type.value} probe '{name}' failed: {error}")
        return Evidence.failure(evidence_type, name, str(error) or type(error).__name__, weight)

    async def _describe(self, object_name: str) -> Optional[Dict[str, Any]]:
        """Describe an object; None when the org does not have it."""
        try:
            return await self.client.describe(soql_identifier(object_name))
        except OrgQueryError as e:
            if e.is_missing_object:
                logger.debug(f"Object {object_name} not found ({e.error_code})")
                return None
            raise

    async def _record_count(self, object_name: str) -> Optional[int]:
        try:
            result = await self.client.query(f"SELECT COUNT() FROM {object_name}")
            return result.get("totalSize") or 0
        except Exception as e:
            logger.debug(f"Record count for {object_name} unavailable: {e}")
            return None

    async def _last_modified(self, object_name: str) -> Optional[str]:
        try:
            result = await self.client.query(
                f"SELECT LastModifiedDate FROM {object_name} ORDER BY LastModifiedDate DESC LIMIT 1"
            )
            records = result.get("records") or []
            return records[0].get("LastModifiedDate") if records else None
        except Exception as e:
            logger.debug(f"Last modified date for {object_name} unavailable: {e}")
            return None

    async def check_object(
        self,
        name: str,
        required_fields: Optional[Iterable[str]] = None,
        check_record_count: bool = False,
        check_last_modified: bool = False,
        weight: float = 1.0,
    ) -> Evidence:
        """Check whether an sObject exists and gather basic facts about it.

        Required fields are recorded but do not affect ``detected``.
        """
        logger.debug(f"Checking object {name}")
        try:
            info = await self._describe(name)
            if info is None:
                return Evidence(
                    EvidenceType.OBJECT_PRESENCE,
                    name,
                    False,
                    ObjectPresenceDetails(message=f"Object {name} not found in org"),
                    weight,
                )

            fields = info.get("fields") or []
            field_names = {f.get("name") for f in fields}
            required = list(required_fields or [])

            details = ObjectPresenceDetails(
                required_fields_present=all(f in field_names for f in required),
                record_count=await self._record_count(name) if check_record_count else None,
                last_modified=await self._last_modified(name) if check_last_modified else None,
                custom_fields=sum(1 for f in fields if f.get("custom")),
                label=info.get("label"),
                key_prefix=info.get("keyPrefix"),
            )
            return Evidence(EvidenceType.OBJECT_PRESENCE, name, True, details, weight)
        except Exception as e:
            return self._failure(EvidenceType.OBJECT_PRESENCE, name, e, weight)

    async def check_object_usage(
        self,
        name: str,
        timeframe: Optional[str] = None,
        threshold: Optional[float] = None,
        additional_where: Optional[str] = None,
        weight: float = 1.0,
    ) -> Evidence:
        evidence_name = f"{name} Usage"
        try:
            soql = f"SELECT COUNT() FROM {soql_identifier(name)}" + _where(build_time_constraint(timeframe), additional_where)
            logger.debug(f"Usage query: {soql}")
            result = await self.client.query(soql)
            count = result.get("totalSize") or 0
            details = ObjectUsageDetails(
                count=count,
                threshold=threshold or DEFAULT_USAGE_THRESHOLD,
                timeframe=timeframe or "all",
                query=soql,
                message=None if count > 0 else f"No {name} records in timeframe {timeframe or 'all'}",
            )
            return Evidence(EvidenceType.OBJECT_USAGE, evidence_name, count > 0, details, weight)
        except Exception as e:
            return self._failure(EvidenceType.OBJECT_USAGE, evidence_name, e, weight)

    async def check_feature(
        self,
        name: str,
        detection_methods: Iterable[Union[DetectionMethod, Mapping[str, Any]]],
        weight: float = 1.0,
    ) -> Evidence:
        """Try detection methods in declared order; the first that detects wins.

        A method that errors counts as not detected and the next one is tried.
        """
        tried = 0
        last_error = None
        try:
            methods = [m if isinstance(m, DetectionMethod) else DetectionMethod.from_dict(m) for m in detection_methods]
        except Exception as e:
            return self._failure(EvidenceType.FEATURE_CONFIGURATION, name, e, weight)

        for method in methods:
            check = self._feature_checks.get(method.type)
            if check is None:
                logger.warning(f"Unknown detection method type '{method.type}' for feature {name}, skipping")
                continue

            tried += 1
            try:
                detected, details = await check(method)
            except Exception as e:
                logger.warning(f"Detection method '{method.type}' failed for feature {name}: {e}")
                last_error = str(e)
                continue

            if detected:
                logger.debug(f"Feature {name} detected via {method.type}")
                return Evidence(EvidenceType.FEATURE_CONFIGURATION, name, True, details, weight)
            if details.error:
                last_error = details.error

        return Evidence(
            EvidenceType.FEATURE_CONFIGURATION,
            name,
            False,
            FeatureDetails(
                message=f"No detection method matched for {name}",
                error=last_error,
                methods_tried=tried,
            ),
            weight,
        )

    async def _check_metadata(self, method: DetectionMethod) -> Tuple[bool, FeatureDetails]:
        components = await self.client.metadata_list(method.path)
        matching = components
        if method.pattern:
            regex = re.compile(method.pattern)
            matching = [
                c for c in components
                if any(c.get(key) and regex.search(str(c.get(key))) for key in METADATA_MATCH_KEYS)
            ]

        min_count = method.min_count or 1
        detected = len(matching) >= min_count
        records = tuple(
            {
                "id": c.get("id") or c.get("fullName"),
                "name": c.get("fullName"),
                "url": c.get("url") or c.get("domain") or c.get("siteUrl") or c.get("customUrl"),
            }
            for c in matching
        )
        return detected, FeatureDetails(
            method="metadata",
            metadata_type=method.path,
            count=len(matching),
            records=records,
            message=None if detected else f"{len(matching)} {method.path} components matched, {min_count} required",
        )

    async def _check_custom_domains(self) -> Tuple[bool, FeatureDetails]:
        result = await self.client.query("SELECT Id, Domain FROM Domain")
        domains = [r.get("Domain") or "" for r in result.get("records") or []]
        custom = [d for d in domains if not is_default_domain(d)]
        logger.debug(f"Found {len(domains)} domains, {len(custom)} custom")
        return bool(custom), FeatureDetails(
            method="field",
            field_name="Domain",
            count=len(custom),
            domains=tuple(custom),
            all_domains=tuple({"domain": d, "isCustom": d in custom} for d in domains),
            message=None if custom else "Only default Salesforce domains found",
        )

    async def _check_field(self, method: DetectionMethod) -> Tuple[bool, FeatureDetails]:
        if method.object == "Domain" and method.name == "Domain":
            return await self._check_custom_domains()

        info = await self._describe(method.object)
        if info is None:
            return False, FeatureDetails(method="field", message=f"Object {method.object} not found in org")

        fields = info.get("fields") or []
        field_info = None
        if method.name:
            field_info = next((f for f in fields if f.get("name") == method.name), None)
        elif method.pattern:
            regex = re.compile(method.pattern)
            field_info = next((f for f in fields if regex.search(f.get("name", ""))), None)

        if field_info is None:
            return False, FeatureDetails(
                method="field",
                message=f"No field {method.name or method.pattern} on {method.object}",
            )

        detected = True
        if method.value is not None:
            soql = (
                f"SELECT Id FROM {method.object} "
                f"WHERE {soql_identifier(field_info['name'])} = {soql_value(method.value, field_info.get('type'))} LIMIT 1"
            )
            result = await self.client.query(soql)
            detected = len(result.get("records") or []) > 0

        return detected, FeatureDetails(
            method="field",
            field_name=field_info.get("name"),
            field_type=field_info.get("type"),
            field_value=method.value,
            message=None if detected else f"No {method.object} records with {field_info.get('name')} = {method.value}",
        )

    async def _check_object_method(self, method: DetectionMethod) -> Tuple[bool, FeatureDetails]:
        evidence = await self.check_object(method.name, check_record_count=True)
        detected = evidence.detected
        record_count = evidence.details.record_count
        if detected and method.min_count:
            detected = (record_count or 0) >= method.min_count
        message = None
        if not detected:
            message = evidence.details.message or f"{method.name} has {record_count or 0} records, {method.min_count} required"
        return detected, FeatureDetails(
            method="object",
            count=record_count,
            object_details=evidence.details,
            error=evidence.details.error,
            message=message,
        )

    async def check_api_usage(
        self,
        name: str,
        object: Optional[str] = None,
        timeframe: Optional[str] = None,
        threshold: Optional[float] = None,
        keywords: Optional[Iterable[str]] = None,
        weight: float = 1.0,
    ) -> Evidence:
        """Count integration artifacts configured in the org.

        Connected apps, named credentials, remote sites and auth providers are
        counted, optionally filtered by keywords. When ``object`` is given its
        integration-looking fields are counted too. A failing source is
        recorded in ``failed_sources``; only when all fail is the probe a failure.
        """
        keywords = [k.lower() for k in keywords or []]
        breakdown: Dict[str, int] = {}
        items: List[str] = []
        failed: List[str] = []

        for key, soql, searched, display in INTEGRATION_SOURCES:
            try:
                result = await self.client.query(soql)
            except Exception as e:
                logger.warning(f"Could not query {key} for {name}: {e}")
                failed.append(key)
                continue
            records = result.get("records") or []
            if keywords:
                records = [
                    r for r in records
                    if any(k in " ".join(str(r.get(f) or "") for f in searched).lower() for k in keywords)
                ]
            breakdown[key] = len(records)
            items.extend(str(r.get(display)) for r in records)

        sources = len(INTEGRATION_SOURCES)
        if object:
            sources += 1
            try:
                info = await self._describe(object)
                fields = (info or {}).get("fields") or []
                marked = [
                    f for f in fields
                    if any(
                        marker in (f.get("name") or "").lower() or marker in (f.get("description") or "").lower()
                        for marker in INTEGRATION_FIELD_MARKERS
                    )
                ]
                breakdown["integrationFields"] = len(marked)
                items.extend(f"{object}.{f.get('name')}" for f in marked)
            except Exception as e:
                logger.warning(f"Could not describe {object} for {name}: {e}")
                failed.append("integrationFields")

        if len(failed) == sources:
            return Evidence.failure(
                EvidenceType.API_USAGE, name, f"All integration sources failed: {', '.join(failed)}", weight
            )

        count = sum(breakdown.values())
        details = ApiUsageDetails(
            count=count,
            threshold=threshold or DEFAULT_API_THRESHOLD,
            timeframe=timeframe or "all",
            object=object,
            breakdown=breakdown,
            items=tuple(items),
            failed_sources=tuple(failed) or None,
            message=None if count else "No integration artifacts found",
        )
        return Evidence(EvidenceType.API_USAGE, name, count > 0, details, weight)

    async def _activity_count(
        self,
        activity_type: str,
        timeframe: str,
        event_type: Optional[str],
        pattern: Optional[str],
        object: Optional[str],
    ) -> int:
        sobject, date_field = ACTIVITY_SOURCES[activity_type]
        clauses = [build_time_constraint(timeframe, date_field)]
        if activity_type == "eventLog" and event_type:
            clauses.append(f"EventType = '{soql_literal(event_type)}'")
        if activity_type == "listView" and object:
            clauses.append(f"SobjectType = '{soql_literal(object)}'")
        if activity_type in ("report", "dashboard", "listView") and pattern:
            name_field = "Title" if activity_type == "dashboard" else "Name"
            clauses.append(f"{name_field} LIKE '%{soql_like(pattern)}%'")

        soql = f"SELECT COUNT() FROM {sobject}" + _where(*clauses)
        logger.debug(f"Activity query: {soql}")
        result = await self.client.query(soql)
        return result.get("totalSize") or 0

    def _simulated_event_log_count(self, name: str, options: Dict[str, Any]) -> int:
        # Fixed point for a given name and options; not an org measurement
        payload = name + json.dumps({k: v for k, v in options.items() if v is not None}, separators=(",", ":"))
        digits = re.sub(r"[^0-9]", "", base64.b64encode(payload.encode("utf-8")).decode("ascii"))
        return int(digits[:2]) if digits else 0

    async def check_user_activity(
        self,
        name: str,
        activity_type: str,
        event_type: Optional[str] = None,
        pattern: Optional[str] = None,
        timeframe: Optional[str] = None,
        threshold: Optional[float] = None,
        object: Optional[str] = None,
        weight: float = 1.0,
    ) -> Evidence:
        """Count recent user activity of one kind (or a summary of several)."""
        options = {
            "type": activity_type,
            "eventType": event_type,
            "pattern": pattern,
            "timeframe": timeframe,
            "threshold": threshold,
        }
        timeframe = timeframe or DEFAULT_ACTIVITY_TIMEFRAME
        threshold = threshold or DEFAULT_ACTIVITY_THRESHOLD
        breakdown = None

        try:
            if activity_type == "eventLog" and self.simulate_event_logs:
                warnings.warn(
                    "Simulated event log counts are deprecated and do not reflect org activity",
                    DeprecationWarning,
                    stacklevel=2,
                )
                count = self._simulated_event_log_count(name, options)
            elif activity_type == "summary":
                breakdown = {}
                for sub_type in SUMMARY_ACTIVITY_TYPES:
                    try:
                        breakdown[sub_type] = await self._activity_count(sub_type, timeframe, None, pattern, object)
                    except Exception as e:
                        logger.warning(f"Could not count {sub_type} activity for {name}: {e}")
                if not breakdown:
                    return Evidence.failure(EvidenceType.USER_ACTIVITY, name, "All activity sources failed", weight)
                count = sum(breakdown.values())
            elif activity_type in ACTIVITY_SOURCES:
                count = await self._activity_count(activity_type, timeframe, event_type, pattern, object)
            else:
                logger.warning(f"Unsupported activity type '{activity_type}' for {name}")
                return Evidence.failure(EvidenceType.USER_ACTIVITY, name, "Unsupported activity type", weight)
        except Exception as e:
            return self._failure(EvidenceType.USER_ACTIVITY, name, e, weight)

        details = ActivityDetails(
            count=count,
            threshold=threshold,
            timeframe=timeframe,
            activity_type=activity_type,
            event_type=event_type,
            pattern=pattern,
            breakdown=breakdown,
            message=None if count > 0 else f"No {activity_type} activity in {timeframe}",
        )
        return Evidence(EvidenceType.USER_ACTIVITY, name, count > 0, details, weight)

    async def check_code_references(
        self,
        name: str,
        code_type: str,
        trigger_object: Optional[str] = None,
        pattern: Optional[str] = None,
        weight: float = 1.0,
    ) -> Evidence:
        """Search Apex classes, triggers or Lightning bundles for product references."""
        try:
            if code_type == "apex":
                if trigger_object:
                    condition = f"Body LIKE '%trigger%{soql_like(trigger_object)}%'"
                elif pattern:
                    condition = f"Body LIKE '%{soql_like(pattern)}%'"
                else:
                    return Evidence.failure(EvidenceType.CODE_REFERENCES, name, "No search criteria specified", weight)
                queries = [(f"SELECT Id, Name FROM ApexClass WHERE {condition} LIMIT {CODE_SEARCH_LIMIT}", "Name")]
            elif code_type == "trigger":
                if trigger_object:
                    condition = f"TableEnumOrId = '{soql_literal(trigger_object)}'"
                elif pattern:
                    condition = f"Name LIKE '%{soql_like(pattern)}%'"
                else:
                    return Evidence.failure(EvidenceType.CODE_REFERENCES, name, "No search criteria specified", weight)
                queries = [(f"SELECT Id, Name FROM ApexTrigger WHERE {condition} LIMIT {CODE_SEARCH_LIMIT}", "Name")]
            elif code_type == "lightning":
                term = pattern or trigger_object
                if not term:
                    return Evidence.failure(EvidenceType.CODE_REFERENCES, name, "No search criteria specified", weight)
                condition = f"DeveloperName LIKE '%{soql_like(term)}%'"
                queries = [
                    (f"SELECT Id, DeveloperName FROM {bundle} WHERE {condition} LIMIT {CODE_SEARCH_LIMIT}", "DeveloperName")
                    for bundle in ("AuraDefinitionBundle", "LightningComponentBundle")
                ]
            else:
                logger.warning(f"Unsupported code type '{code_type}' for {name}")
                return Evidence.failure(EvidenceType.CODE_REFERENCES, name, "Unsupported code type", weight)

            matches: List[str] = []
            for soql, name_field in queries:
                logger.debug(f"Code search: {soql}")
                result = await self.client.tooling_query(soql)
                matches.extend(str(r.get(name_field)) for r in result.get("records") or [])
        except Exception as e:
            return self._failure(EvidenceType.CODE_REFERENCES, name, e, weight)

        details = CodeReferenceDetails(
            code_type=code_type,
            count=len(matches),
            matches=tuple(matches),
            pattern=pattern or trigger_object,
            message=None if matches else f"No {code_type} code references found",
        )
        return Evidence(EvidenceType.CODE_REFERENCES, name, bool(matches), details, weight)
