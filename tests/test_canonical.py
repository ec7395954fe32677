from datetime import datetime, timezone

import pytest

from threatfeed.canonical import (
    MAPPERS,
    by_threshold,
    canonicalize,
    derive_tags,
    identity_key,
    parse_timestamp,
    THREATFOX_CONFIDENCE,
)
from threatfeed.adapters import all_adapters
from threatfeed.schemas import IndicatorType, Severity


class TestHelpers:
    def test_identity_key_normalizes_value(self):
        assert identity_key(IndicatorType.DOMAIN, "  Evil.COM ") == "domain:evil.com"

    def test_identity_key_includes_port(self):
        assert identity_key(IndicatorType.C2_ENDPOINT, "1.2.3.4", 443) == "c2-endpoint:1.2.3.4:443"

    def test_identity_key_rejects_empty(self):
        with pytest.raises(ValueError):
            identity_key(IndicatorType.IP, "   ")

    def test_same_value_different_type_differs(self):
        assert identity_key(IndicatorType.IP, "1.2.3.4") != identity_key(IndicatorType.C2_ENDPOINT, "1.2.3.4")

    def test_parse_abuse_ch_timestamp(self):
        assert parse_timestamp("2024-04-30 08:15:00 UTC") == datetime(2024, 4, 30, 8, 15, tzinfo=timezone.utc)

    def test_parse_iso_z(self):
        assert parse_timestamp("2024-04-30T08:15:00Z") == datetime(2024, 4, 30, 8, 15, tzinfo=timezone.utc)

    def test_parse_epoch(self):
        assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)

    def test_parse_garbage_is_none(self):
        assert parse_timestamp("yesterday-ish") is None
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None

    def test_derive_tags_splits_and_lowercases(self):
        assert derive_tags("Emotet, Heodo", ["C2", None, ""]) == frozenset({"emotet", "heodo", "c2"})

    def test_threshold_is_strictly_greater(self):
        assert by_threshold(THREATFOX_CONFIDENCE, 80, Severity.MEDIUM) == Severity.HIGH
        assert by_threshold(THREATFOX_CONFIDENCE, 81, Severity.MEDIUM) == Severity.CRITICAL
        assert by_threshold(THREATFOX_CONFIDENCE, 50, Severity.MEDIUM) == Severity.MEDIUM


def test_every_registered_feed_has_a_mapper():
    assert set(all_adapters()) == set(MAPPERS)


def test_unknown_feed_raises():
    with pytest.raises(KeyError):
        canonicalize("nope", {})


def test_non_dict_record_is_dropped(now):
    assert canonicalize("feodo", ["1.2.3.4"], now=now) is None


class TestFeodo:
    def test_online_is_critical(self, now):
        ind = canonicalize(
            "feodo",
            {
                "ip_address": "51.75.1.1",
                "port": "8080",
                "status": "online",
                "malware": "Emotet",
                "first_seen": "2024-04-01 10:00:00",
                "last_online": "2024-04-30",
                "hostname": None,
            },
            now=now,
        )
        assert ind.type == IndicatorType.C2_ENDPOINT
        assert ind.key == "c2-endpoint:51.75.1.1:8080"
        assert ind.severity == Severity.CRITICAL
        assert ind.confidence == 90
        assert ind.family == "Emotet"
        assert "emotet" in ind.tags and "c2" in ind.tags
        assert "hostname" not in ind.metadata

    def test_offline_is_high_and_port_defaults(self, now):
        ind = canonicalize("feodo", {"ip_address": "51.75.1.1", "status": "offline"}, now=now)
        assert ind.severity == Severity.HIGH
        assert ind.port == 443

    def test_missing_value_is_dropped(self, now):
        assert canonicalize("feodo", {"status": "online"}, now=now) is None


class TestUrlhaus:
    def test_status_table_and_family_skips_arch_tags(self, now):
        ind = canonicalize(
            "urlhaus",
            {
                "url": "http://Bad.example/x.sh",
                "url_status": "online",
                "tags": ["32-bit", "elf", "Mozi"],
                "threat": "malware_download",
                "dateadded": "2024-04-29 10:00:00 UTC",
            },
            now=now,
        )
        assert ind.severity == Severity.HIGH
        assert ind.confidence == 80
        assert ind.family == "mozi"
        assert ind.value == "http://bad.example/x.sh"
        assert ind.metadata["host"] == "bad.example"

    def test_offline_is_medium(self, now):
        ind = canonicalize("urlhaus", {"url": "http://a.example/", "url_status": "offline"}, now=now)
        assert ind.severity == Severity.MEDIUM


class TestThreatfox:
    @pytest.mark.parametrize(
        "confidence,severity",
        [(100, Severity.CRITICAL), (75, Severity.HIGH), (50, Severity.MEDIUM), (10, Severity.MEDIUM)],
    )
    def test_confidence_thresholds(self, now, confidence, severity):
        ind = canonicalize(
            "threatfox",
            {"ioc_value": "evil.example", "ioc_type": "domain", "confidence_level": confidence},
            now=now,
        )
        assert ind.severity == severity
        assert ind.confidence == confidence

    def test_ip_port_is_split(self, now):
        ind = canonicalize(
            "threatfox",
            {"ioc": "8.8.4.4:4444", "ioc_type": "ip:port", "confidence_level": 90, "malware_printable": "Cobalt Strike"},
            now=now,
        )
        assert ind.type == IndicatorType.IP
        assert ind.value == "8.8.4.4"
        assert ind.port == 4444
        assert ind.key == "ip:8.8.4.4:4444"
        assert ind.family == "Cobalt Strike"

    def test_hash_type(self, now):
        ind = canonicalize("threatfox", {"ioc": "a" * 64, "ioc_type": "sha256_hash"}, now=now)
        assert ind.type == IndicatorType.FILE_HASH
        assert ind.confidence == 50

    def test_unknown_family_is_none(self, now):
        ind = canonicalize("threatfox", {"ioc": "x.example", "ioc_type": "domain", "malware_printable": "Unknown malware"}, now=now)
        assert ind.family is None


class TestFixedSeverityFeeds:
    def test_malwarebazaar(self, now):
        ind = canonicalize("malwarebazaar", {"sha256_hash": "AB" * 32, "signature": "AgentTesla"}, now=now)
        assert ind.type == IndicatorType.FILE_HASH
        assert ind.severity == Severity.HIGH
        assert ind.confidence == 95
        assert ind.value == "ab" * 32
        assert ind.metadata["download_url"].endswith("/" + "AB" * 32 + "/")

    def test_openphish(self, now):
        ind = canonicalize("openphish", {"url": "https://login.example/"}, now=now)
        assert (ind.severity, ind.confidence, ind.threat_type) == (Severity.HIGH, 75, "phishing")

    def test_blocklist_de(self, now):
        ind = canonicalize("blocklist_de", {"ip": "9.9.9.9"}, now=now)
        assert (ind.type, ind.severity, ind.confidence) == (IndicatorType.IP, Severity.MEDIUM, 60)

    def test_sslbl_with_port(self, now):
        ind = canonicalize("sslbl", {"ip_address": "5.5.5.5", "port": 443, "listing_reason": "QakBot C&C"}, now=now)
        assert ind.type == IndicatorType.C2_ENDPOINT
        assert ind.family == "QakBot"


class TestPhishtank:
    def test_verified_online(self, now):
        ind = canonicalize(
            "phishtank",
            {"phish_id": "1", "url": "https://p.example/", "online": "yes", "verified": "yes", "target": "Other"},
            now=now,
        )
        assert ind.severity == Severity.HIGH
        assert ind.confidence == 90
        assert ind.tags == frozenset({"phishing"})

    def test_unverified(self, now):
        ind = canonicalize("phishtank", {"phish_id": "2", "url": "https://q.example/", "online": "no", "verified": "no"}, now=now)
        assert ind.severity == Severity.MEDIUM
        assert ind.confidence == 60


class TestIpsum:
    @pytest.mark.parametrize(
        "hits,severity,confidence",
        [(1, Severity.LOW, 10), (2, Severity.MEDIUM, 20), (4, Severity.HIGH, 40), (12, Severity.CRITICAL, 100)],
    )
    def test_hits_drive_severity(self, now, hits, severity, confidence):
        ind = canonicalize("ipsum", {"ip": "7.7.7.7", "hits": hits}, now=now)
        assert ind.severity == severity
        assert ind.confidence == confidence


class TestRansomwatch:
    def test_domain_title_becomes_indicator(self, now):
        ind = canonicalize(
            "ransomwatch",
            {"post_title": "Victim-Corp.com", "group_name": "lockbit3", "discovered": "2024-04-20 00:00:00.000000"},
            now=now,
        )
        assert ind.type == IndicatorType.DOMAIN
        assert ind.value == "victim-corp.com"
        assert ind.severity == Severity.CRITICAL
        assert ind.family == "lockbit3"

    def test_free_text_title_is_dropped(self, now):
        assert canonicalize("ransomwatch", {"post_title": "Victim Corp Ltd", "group_name": "x"}, now=now) is None


class TestSeenWindow:
    def test_defaults_to_now(self, now):
        ind = canonicalize("openphish", {"url": "https://a.example/"}, now=now)
        assert ind.first_seen == ind.last_seen == now

    def test_last_seen_never_before_first(self, now):
        ind = canonicalize(
            "feodo",
            {"ip_address": "1.1.1.1", "first_seen": "2024-04-10 00:00:00", "last_online": "2024-04-01"},
            now=now,
        )
        assert ind.last_seen >= ind.first_seen


class TestMalformedFields:
    def test_threatfox_non_string_threat_type_is_dropped(self, now):
        assert canonicalize("threatfox", {"ioc": "1.2.3.4", "ioc_type": "ip", "threat_type": 7}, now=now) is None

    def test_urlhaus_list_threat_is_dropped(self, now):
        assert canonicalize("urlhaus", {"url": "http://a.example/", "threat": ["a", "b"]}, now=now) is None

    def test_well_formed_neighbour_still_maps(self, now):
        ind = canonicalize("threatfox", {"ioc": "5.6.7.8", "ioc_type": "ip"}, now=now)
        assert ind.key == "ip:5.6.7.8"
