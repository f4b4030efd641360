#!/usr/bin/env python3
"""
Test suite for the record graph builder

Covers name normalization, record payload parsing, CNAME maps and chains,
terminal resolution, area classification and CSV loading.
"""

import os
import tempfile
import unittest

from zone_topology.core.graph_builder import (
    GraphIdAllocator,
    RecordGraphBuilder,
    build_address_maps,
    build_cname_map,
    candidate_hostnames,
    classify_areas,
    compute_cname_chains,
    records_fingerprint,
    resolve_name_to_terminal,
)
from zone_topology.core.models import Record
from zone_topology.parsers.csv import RecordCSVParser
from zone_topology.parsers.payload import (
    MxPayload,
    SrvPayload,
    extract_target,
    mx_priority,
    parse_payload,
)
from zone_topology.utils.validators import is_ip_address, normalize_name, validate_zone_name


def make_record(record_type, name, content, record_id=None, **kwargs):
    return Record(
        id=record_id or f"{record_type}-{name}-{content}",
        type=record_type,
        name=name,
        content=content,
        **kwargs,
    )


class TestNormalization(unittest.TestCase):
    """Test hostname normalization and IP detection."""

    def test_normalize_is_idempotent(self):
        """Normalizing twice gives the same result as normalizing once."""
        values = ["Example.COM.", "  www.Example.com..", "", None, "a.b", "MAIL.example.net"]

        for value in values:
            with self.subTest(value=value):
                once = normalize_name(value)
                self.assertEqual(normalize_name(once), once)

    def test_normalize_lowercases_and_strips_trailing_dot(self):
        self.assertEqual(normalize_name(" Edge.Example.NET. "), "edge.example.net")

    def test_is_ip_address(self):
        self.assertTrue(is_ip_address("203.0.113.5"))
        self.assertTrue(is_ip_address("2001:db8::1"))
        self.assertFalse(is_ip_address("edge.example.net"))
        self.assertFalse(is_ip_address(""))

    def test_validate_zone_name(self):
        self.assertTrue(validate_zone_name("example.com"))
        self.assertTrue(validate_zone_name("Example.com."))
        self.assertFalse(validate_zone_name(""))
        self.assertFalse(validate_zone_name("203.0.113.5"))
        self.assertFalse(validate_zone_name("bad..zone"))


class TestRecordPayload(unittest.TestCase):
    """Test per-type target extraction."""

    def test_cname_and_ns_targets(self):
        self.assertEqual(
            extract_target(make_record("CNAME", "www", "Edge.Example.NET.")), "edge.example.net"
        )
        self.assertEqual(extract_target(make_record("NS", "@", "ns1.example.net")), "ns1.example.net")

    def test_mx_target_after_priority(self):
        """MX record on the apex yields the exchange host and its priority."""
        record = make_record("MX", "@", "10 mail.example.net")

        self.assertEqual(extract_target(record), "mail.example.net")
        self.assertEqual(mx_priority(record), 10)
        self.assertIsInstance(parse_payload(record), MxPayload)

    def test_mx_priority_from_separate_field(self):
        record = make_record("MX", "@", "mail.example.net", priority=5)

        self.assertEqual(extract_target(record), "mail.example.net")
        self.assertEqual(mx_priority(record), 5)

    def test_srv_target_after_three_fields(self):
        record = make_record("SRV", "_sip._tcp", "10 5 5060 sip.example.com.")
        payload = parse_payload(record)

        self.assertIsInstance(payload, SrvPayload)
        self.assertEqual(payload.port, 5060)
        self.assertEqual(extract_target(record), "sip.example.com")

    def test_address_target_is_literal(self):
        self.assertEqual(extract_target(make_record("A", "edge", " 203.0.113.5 ")), "203.0.113.5")

    def test_malformed_content_yields_none(self):
        """Malformed or target-less content never raises."""
        malformed = [
            make_record("MX", "@", ""),
            make_record("MX", "@", "mail.example.net"),
            make_record("SRV", "_sip._tcp", "10 5"),
            make_record("CNAME", "www", ""),
            make_record("TXT", "@", "v=spf1 -all"),
            make_record("CAA", "@", "0 issue letsencrypt.org"),
        ]

        for record in malformed:
            with self.subTest(record=record):
                self.assertIsNone(extract_target(record))


class TestCnameMaps(unittest.TestCase):
    """Test CNAME and address maps, chains and terminal resolution."""

    def test_cname_map_last_duplicate_wins(self):
        records = [
            make_record("CNAME", "www", "one.example.net"),
            make_record("CNAME", "WWW.", "two.example.net"),
        ]

        self.assertEqual(build_cname_map(records), {"www": "two.example.net"})

    def test_address_maps_union_per_name(self):
        records = [
            make_record("A", "edge", "203.0.113.5"),
            make_record("A", "Edge.", "203.0.113.6"),
            make_record("A", "edge", "203.0.113.5", record_id="dup"),
            make_record("AAAA", "edge", "2001:db8::5"),
        ]

        ipv4, ipv6 = build_address_maps(records)

        self.assertEqual(ipv4, {"edge": ["203.0.113.5", "203.0.113.6"]})
        self.assertEqual(ipv6, {"edge": ["2001:db8::5"]})

    def test_transitive_chain_reported(self):
        records = [make_record("CNAME", "a", "b"), make_record("CNAME", "b", "c")]

        self.assertEqual(compute_cname_chains(records, 5), [{"start": "a", "chain": ["a", "b", "c"]}])

    def test_direct_cname_not_reported(self):
        self.assertEqual(compute_cname_chains([make_record("CNAME", "a", "b")], 5), [])

    def test_cycle_chain_stops(self):
        records = [make_record("CNAME", "a", "b"), make_record("CNAME", "b", "a")]

        chains = compute_cname_chains(records, 15)

        self.assertEqual(chains[0], {"start": "a", "chain": ["a", "b", "a"]})
        self.assertEqual(len(chains), 2)

    def test_resolve_terminal_cycle_is_bounded(self):
        """A direct cycle terminates within max_hops + 1 chain entries."""
        cname_map = {"a": "b", "b": "a"}

        for max_hops in (1, 2, 15):
            with self.subTest(max_hops=max_hops):
                resolved = resolve_name_to_terminal("a", cname_map, {}, {}, max_hops)
                self.assertLessEqual(len(resolved.chain), max_hops + 1)
                self.assertEqual(resolved.chain[0], "a")

    def test_resolve_terminal_respects_hop_limit(self):
        cname_map = {"a": "b", "b": "c", "c": "d"}

        resolved = resolve_name_to_terminal("a", cname_map, {"d": ["192.0.2.1"]}, {}, 1)

        self.assertEqual(resolved.chain, ("a", "b"))
        self.assertEqual(resolved.terminal, "b")
        self.assertEqual(resolved.ipv4, ())

    def test_hops_outside_range_rejected(self):
        for max_hops in (0, 16):
            with self.subTest(max_hops=max_hops):
                with self.assertRaises(ValueError):
                    RecordGraphBuilder([], "example.com", max_hops)

    def test_end_to_end_www_to_edge(self):
        """www CNAME to an in-zone A record resolves locally."""
        records = [
            make_record("CNAME", "www", "edge.example.net"),
            make_record("A", "edge.example.net", "203.0.113.5"),
        ]
        builder = RecordGraphBuilder(records, "example.com", 5)

        resolved = builder.resolve("www")

        self.assertEqual(resolved.chain, ("www", "edge.example.net"))
        self.assertEqual(resolved.terminal, "edge.example.net")
        self.assertEqual(resolved.ipv4, ("203.0.113.5",))
        self.assertEqual(resolved.ipv6, ())
        self.assertEqual(builder.cname_chains(), [])

    def test_end_to_end_mx_trail(self):
        builder = RecordGraphBuilder([make_record("MX", "@", "10 mail.example.net")], "example.com", 5)

        entries = builder.mx_entries()

        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]["priority"], 10)
        self.assertEqual(entries[0]["from"], "example.com")
        self.assertEqual(entries[0]["target"], "mail.example.net")


class TestClassification(unittest.TestCase):
    """Test area classification."""

    def test_email_by_name_hint(self):
        records = [make_record("TXT", "_dmarc", "v=DMARC1; p=none")]
        self.assertEqual(classify_areas("_dmarc.example.com", records, set()), ["email"])

    def test_email_by_txt_prefix(self):
        records = [make_record("TXT", "@", "v=spf1 include:_spf.example.net -all")]
        self.assertEqual(classify_areas("example.com", records, set()), ["email"])

    def test_infra_and_web(self):
        self.assertEqual(classify_areas("ns", [make_record("NS", "@", "ns1.example.net")], set()), ["infra"])
        self.assertEqual(classify_areas("www", [make_record("A", "www", "192.0.2.1")], set()), ["web"])

    def test_email_path_name(self):
        records = [make_record("A", "mail.example.net", "192.0.2.25")]
        areas = classify_areas("mail.example.net", records, {"mail.example.net"})
        self.assertEqual(areas, ["email", "web"])

    def test_misc_when_nothing_matched(self):
        self.assertEqual(classify_areas("note", [make_record("TXT", "note", "hello")], set()), ["misc"])


class TestIdentityAndCandidates(unittest.TestCase):
    """Test id allocation, candidates and fingerprints."""

    def test_allocator_is_deterministic(self):
        allocator = GraphIdAllocator()

        first = allocator.id_for("target", "a")
        second = allocator.id_for("ip", "a")

        self.assertEqual(first, "n_0")
        self.assertEqual(second, "n_1")
        self.assertEqual(allocator.id_for("target", "a"), first)
        self.assertIn(("ip", "a"), allocator)
        self.assertIsNone(allocator.get("target", "b"))

    def test_candidates_skip_ips_and_duplicates(self):
        records = [
            make_record("CNAME", "www", "Edge.example.net."),
            make_record("CNAME", "cdn", "edge.example.net"),
            make_record("NS", "@", "192.0.2.53"),
            make_record("MX", "@", "10 mail.example.net"),
            make_record("A", "edge", "203.0.113.5"),
        ]

        self.assertEqual(candidate_hostnames(records), ["edge.example.net", "mail.example.net"])

    def test_records_fingerprint_is_order_independent(self):
        first = make_record("A", "a", "192.0.2.1")
        second = make_record("CNAME", "b", "a")

        self.assertEqual(records_fingerprint([first, second]), records_fingerprint([second, first]))
        self.assertNotEqual(
            records_fingerprint([first]), records_fingerprint([make_record("A", "a", "192.0.2.2", record_id=first.id)])
        )


class TestRecordCSVParser(unittest.TestCase):
    """Test CSV record set loading."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        import shutil

        shutil.rmtree(self.temp_dir)

    def _write(self, content):
        path = os.path.join(self.temp_dir, "records.csv")
        with open(path, "w") as f:
            f.write(content)
        return path

    def test_parse_records(self):
        path = self._write(
            "id,type,name,content,ttl,priority,proxied\n"
            "1,CNAME,www,edge.example.net,300,,true\n"
            ",mx,@,mail.example.net,auto,10,\n"
            "3,A,,203.0.113.5,300,,\n"
        )

        records = RecordCSVParser(path).parse()

        self.assertEqual(len(records), 2)
        self.assertEqual(records[0].ttl, 300)
        self.assertTrue(records[0].proxied)
        self.assertEqual(records[1].id, "row-3")
        self.assertEqual(records[1].type, "MX")
        self.assertEqual(records[1].priority, 10)
        self.assertEqual(extract_target(records[1]), "mail.example.net")

    def test_missing_columns(self):
        path = self._write("name,value\nwww,1.2.3.4\n")

        with self.assertRaises(ValueError):
            RecordCSVParser(path).parse()

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            RecordCSVParser(os.path.join(self.temp_dir, "missing.csv")).parse()


if __name__ == "__main__":
    unittest.main()
