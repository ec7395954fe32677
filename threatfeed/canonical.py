"""
Canonicalization of raw feed records into :class:`Indicator` objects.

Each feed has one mapper. Severity comes from an explicit per-feed table:
status lookups for feeds that report liveness, strictly-greater thresholds
for feeds that report a numeric score, and a fixed level for feeds that
report neither. A new feed gets its own table entry and mapper.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

from pydantic import ValidationError

from .schemas import Indicator, IndicatorType, Severity

logger = logging.getLogger(__name__)

FEODO_STATUS = {"online": Severity.CRITICAL, "offline": Severity.HIGH}
URLHAUS_STATUS = {"online": Severity.HIGH, "offline": Severity.MEDIUM}
PHISHTANK_ONLINE = {"yes": Severity.HIGH, "no": Severity.MEDIUM}
THREATFOX_CONFIDENCE: List[Tuple[int, Severity]] = [(80, Severity.CRITICAL), (50, Severity.HIGH)]
IPSUM_HITS: List[Tuple[int, Severity]] = [(6, Severity.CRITICAL), (3, Severity.HIGH), (1, Severity.MEDIUM)]
FIXED_SEVERITY = {
    "malwarebazaar": Severity.HIGH,
    "sslbl": Severity.HIGH,
    "openphish": Severity.HIGH,
    "blocklist_de": Severity.MEDIUM,
    "ransomwatch": Severity.CRITICAL,
}

BASE_CONFIDENCE = {
    "feodo": 90,
    "urlhaus": 80,
    "threatfox": 50,  # used only when the record carries no confidence_level
    "malwarebazaar": 95,
    "sslbl": 85,
    "openphish": 75,
    "phishtank": 60,
    "phishtank_verified": 90,
    "blocklist_de": 60,
    "ransomwatch": 85,
}

# URLhaus tags that describe the binary, not the family
ARCH_TAGS = {"32-bit", "64-bit", "arm", "mips", "elf", "exe", "x86", "x64"}
UNKNOWN_FAMILIES = {"", "unknown", "unknown malware", "none", "n/a"}


def by_status(table: Dict[str, Severity], status: Any, default: Severity) -> Severity:
    return table.get(str(status or "").strip().lower(), default)


def by_threshold(table: List[Tuple[int, Severity]], score: float, default: Severity) -> Severity:
    for floor, severity in table:
        if score > floor:
            return severity
    return default


def identity_key(ioc_type: IndicatorType, value: str, port: Optional[int] = None) -> str:
    normalized = normalize_value(value)
    if not normalized:
        raise ValueError("identity key requires a non-empty value")
    key = f"{ioc_type.value}:{normalized}"
    if port is not None:
        key = f"{key}:{port}"
    return key


def normalize_value(value: str) -> str:
    return str(value).strip().lower()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Accepts abuse.ch ``YYYY-MM-DD HH:MM:SS`` (UTC), ISO-8601 and epoch seconds."""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, datetime):
            ts = value
        elif isinstance(value, (int, float)):
            ts = datetime.fromtimestamp(value, tz=timezone.utc)
        elif isinstance(value, str):
            text = value.strip()
            if text.endswith(" UTC"):
                text = text[:-4]
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            ts = datetime.fromisoformat(text)
        else:
            return None
    except (ValueError, OverflowError, OSError):
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def derive_tags(*values: Any) -> frozenset:
    tags = set()
    for v in values:
        items: Iterable[Any]
        if v is None:
            continue
        if isinstance(v, str):
            items = v.split(",")
        elif isinstance(v, (list, tuple, set, frozenset)):
            items = v
        else:
            items = [v]
        for item in items:
            if item is None:
                continue
            tag = str(item).strip().lower()
            if tag:
                tags.add(tag)
    return frozenset(tags)


def clean_family(name: Any) -> Optional[str]:
    if name is None:
        return None
    text = str(name).strip()
    return None if text.lower() in UNKNOWN_FAMILIES else text


def _int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def build_indicator(
    source: str,
    ioc_type: IndicatorType,
    value: Any,
    severity: Severity,
    confidence: int,
    now: datetime,
    port: Optional[int] = None,
    first_seen: Any = None,
    last_seen: Any = None,
    tags: frozenset = frozenset(),
    family: Optional[str] = None,
    threat_type: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Optional[Indicator]:
    if value is None or not str(value).strip():
        return None
    first = parse_timestamp(first_seen) or now
    last = parse_timestamp(last_seen) or first
    if last < first:
        last = first
    return Indicator(
        key=identity_key(ioc_type, value, port),
        type=ioc_type,
        value=normalize_value(value),
        port=port,
        source=source,
        sources=frozenset([source]),
        severity=severity,
        confidence=max(0, min(100, int(confidence))),
        family=family,
        threat_type=threat_type,
        first_seen=first,
        last_seen=last,
        tags=tags,
        metadata={k: v for k, v in (metadata or {}).items() if v not in (None, "")},
    )


def map_feodo(raw: Dict, now: datetime) -> Optional[Indicator]:
    family = clean_family(raw.get("malware"))
    return build_indicator(
        "feodo",
        IndicatorType.C2_ENDPOINT,
        raw.get("ip_address"),
        by_status(FEODO_STATUS, raw.get("status"), Severity.HIGH),
        BASE_CONFIDENCE["feodo"],
        now,
        port=_int(raw.get("port")) or 443,
        first_seen=raw.get("first_seen"),
        last_seen=raw.get("last_online"),
        tags=derive_tags([family, "c2", raw.get("country")]),
        family=family,
        threat_type="botnet_cc",
        metadata={
            "status": raw.get("status"),
            "hostname": raw.get("hostname"),
            "as_number": raw.get("as_number"),
            "as_name": raw.get("as_name"),
            "country": raw.get("country"),
        },
    )


def map_urlhaus(raw: Dict, now: datetime) -> Optional[Indicator]:
    url = raw.get("url")
    tags = derive_tags(raw.get("tags"))
    family = next((t for t in sorted(tags) if t not in ARCH_TAGS), None)
    host = raw.get("host")
    if not host and url:
        try:
            host = urlparse(str(url)).hostname
        except ValueError:
            host = None
    return build_indicator(
        "urlhaus",
        IndicatorType.URL,
        url,
        by_status(URLHAUS_STATUS, raw.get("url_status"), Severity.MEDIUM),
        BASE_CONFIDENCE["urlhaus"],
        now,
        first_seen=raw.get("dateadded") or raw.get("date_added"),
        last_seen=raw.get("last_online"),
        tags=tags | derive_tags(raw.get("threat")),
        family=family,
        threat_type=raw.get("threat") or "malware_download",
        metadata={
            "host": host,
            "status": raw.get("url_status"),
            "reporter": raw.get("reporter"),
            "urlhaus_link": raw.get("urlhaus_link") or raw.get("urlhaus_reference"),
        },
    )


def _threatfox_type(ioc_type: str) -> IndicatorType:
    if "ip" in ioc_type:
        return IndicatorType.IP
    if "url" in ioc_type:
        return IndicatorType.URL
    if "hash" in ioc_type or ioc_type in ("md5", "sha1", "sha256"):
        return IndicatorType.FILE_HASH
    return IndicatorType.DOMAIN


def map_threatfox(raw: Dict, now: datetime) -> Optional[Indicator]:
    value = raw.get("ioc_value") or raw.get("ioc")
    ioc_type = str(raw.get("ioc_type") or "").lower()
    port = None
    if ioc_type == "ip:port" and value and ":" in str(value):
        host, _, port_text = str(value).rpartition(":")
        port = _int(port_text)
        if port is not None:
            value = host
    confidence = _int(raw.get("confidence_level"))
    if confidence is None:
        confidence = BASE_CONFIDENCE["threatfox"]
    return build_indicator(
        "threatfox",
        _threatfox_type(ioc_type),
        value,
        by_threshold(THREATFOX_CONFIDENCE, confidence, Severity.MEDIUM),
        confidence,
        now,
        port=port,
        first_seen=raw.get("first_seen_utc") or raw.get("first_seen"),
        last_seen=raw.get("last_seen_utc") or raw.get("last_seen"),
        tags=derive_tags(raw.get("tags"), raw.get("threat_type")),
        family=clean_family(raw.get("malware_printable") or raw.get("malware")),
        threat_type=raw.get("threat_type"),
        metadata={
            "id": raw.get("id"),
            "ioc_type": ioc_type,
            "malware": raw.get("malware"),
            "reference": raw.get("reference"),
            "reporter": raw.get("reporter"),
        },
    )


def map_malwarebazaar(raw: Dict, now: datetime) -> Optional[Indicator]:
    sha256 = raw.get("sha256_hash")
    family = clean_family(raw.get("signature"))
    return build_indicator(
        "malwarebazaar",
        IndicatorType.FILE_HASH,
        sha256,
        FIXED_SEVERITY["malwarebazaar"],
        BASE_CONFIDENCE["malwarebazaar"],
        now,
        first_seen=raw.get("first_seen"),
        last_seen=raw.get("last_seen"),
        tags=derive_tags(["malware", "sha256", family], raw.get("tags")),
        family=family,
        threat_type="malware_sample",
        metadata={
            "file_name": raw.get("file_name"),
            "file_type": raw.get("file_type"),
            "file_size": raw.get("file_size"),
            "md5": raw.get("md5_hash"),
            "sha1": raw.get("sha1_hash"),
            "download_url": f"https://bazaar.abuse.ch/sample/{sha256}/" if sha256 else None,
        },
    )


def map_sslbl(raw: Dict, now: datetime) -> Optional[Indicator]:
    port = _int(raw.get("port") or raw.get("dst_port"))
    reason = raw.get("malware") or raw.get("listing_reason") or ""
    family = clean_family(str(reason).replace("C&C", "").strip())
    return build_indicator(
        "sslbl",
        IndicatorType.C2_ENDPOINT if port else IndicatorType.IP,
        raw.get("ip_address") or raw.get("dst_ip"),
        FIXED_SEVERITY["sslbl"],
        BASE_CONFIDENCE["sslbl"],
        now,
        port=port,
        first_seen=raw.get("first_seen") or raw.get("firstseen"),
        last_seen=raw.get("last_online") or raw.get("last_seen"),
        tags=derive_tags(["ssl", "c2", family]),
        family=family,
        threat_type="botnet_cc",
        metadata={"listing_reason": reason},
    )


def map_openphish(raw: Dict, now: datetime) -> Optional[Indicator]:
    return build_indicator(
        "openphish",
        IndicatorType.URL,
        raw.get("url"),
        FIXED_SEVERITY["openphish"],
        BASE_CONFIDENCE["openphish"],
        now,
        tags=derive_tags("phishing"),
        threat_type="phishing",
    )


def map_phishtank(raw: Dict, now: datetime) -> Optional[Indicator]:
    verified = str(raw.get("verified") or "").lower() == "yes"
    target = raw.get("target")
    return build_indicator(
        "phishtank",
        IndicatorType.URL,
        raw.get("url"),
        by_status(PHISHTANK_ONLINE, raw.get("online"), Severity.MEDIUM),
        BASE_CONFIDENCE["phishtank_verified" if verified else "phishtank"],
        now,
        first_seen=raw.get("submission_time"),
        last_seen=raw.get("verification_time"),
        tags=derive_tags(["phishing", target if target and target != "Other" else None]),
        threat_type="phishing",
        metadata={
            "phish_id": raw.get("phish_id"),
            "detail_url": raw.get("phish_detail_url"),
            "target": target,
            "verified": verified,
        },
    )


def map_blocklist_de(raw: Dict, now: datetime) -> Optional[Indicator]:
    return build_indicator(
        "blocklist_de",
        IndicatorType.IP,
        raw.get("ip"),
        FIXED_SEVERITY["blocklist_de"],
        BASE_CONFIDENCE["blocklist_de"],
        now,
        tags=derive_tags("attacker"),
        threat_type="attacker",
    )


def map_ipsum(raw: Dict, now: datetime) -> Optional[Indicator]:
    hits = _int(raw.get("hits")) or 0
    return build_indicator(
        "ipsum",
        IndicatorType.IP,
        raw.get("ip"),
        by_threshold(IPSUM_HITS, hits, Severity.LOW),
        min(100, hits * 10),
        now,
        tags=derive_tags("blacklist"),
        threat_type="blacklisted",
        metadata={"hits": hits},
    )


def map_ransomwatch(raw: Dict, now: datetime) -> Optional[Indicator]:
    title = str(raw.get("post_title") or "").strip()
    # only posts that name the victim by its domain carry an indicator
    if not title or " " in title or "." not in title:
        return None
    group = clean_family(raw.get("group_name"))
    return build_indicator(
        "ransomwatch",
        IndicatorType.DOMAIN,
        title,
        FIXED_SEVERITY["ransomwatch"],
        BASE_CONFIDENCE["ransomwatch"],
        now,
        first_seen=raw.get("discovered"),
        last_seen=raw.get("published"),
        tags=derive_tags(["ransomware", "leak", group]),
        family=group,
        threat_type="ransomware_victim",
        metadata={"post_url": raw.get("post_url")},
    )


MAPPERS: Dict[str, Callable[[Dict, datetime], Optional[Indicator]]] = {
    "feodo": map_feodo,
    "urlhaus": map_urlhaus,
    "threatfox": map_threatfox,
    "malwarebazaar": map_malwarebazaar,
    "sslbl": map_sslbl,
    "openphish": map_openphish,
    "phishtank": map_phishtank,
    "blocklist_de": map_blocklist_de,
    "ipsum": map_ipsum,
    "ransomwatch": map_ransomwatch,
}


def canonicalize(source_name: str, raw: Any, now: Optional[datetime] = None) -> Optional[Indicator]:
    mapper = MAPPERS[source_name]
    if not isinstance(raw, dict):
        return None
    try:
        return mapper(raw, now or datetime.now(timezone.utc))
    except ValidationError as e:
        # a field of the wrong shape drops the record; identity_key errors are not caught here
        logger.debug(f"Dropping malformed {source_name} record: {e.errors()[0]['msg']}")
        return None
