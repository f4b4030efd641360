#!/usr/bin/env python3
"""
Test suite for external resolution

Covers resolver configuration, the resolution cache, the DoH fallback
resolver, the batch backend resolver and the resolution coordinator.
"""

import threading
import time
import unittest
from unittest.mock import MagicMock, Mock, patch

import dns.resolver
import requests

from zone_topology.core.cache import ResolutionCache, cache_key
from zone_topology.core.coordinator import CoordinatorState, ResolutionCoordinator, compute_run_key
from zone_topology.core.models import ProgressState, Record, ResolutionResult
from zone_topology.resolvers.base_resolver import (
    BackendUnavailable,
    BatchResolver,
    ExternalResolver,
)
from zone_topology.resolvers.batch_resolver import BatchBackendResolver
from zone_topology.resolvers.doh_resolver import (
    CLOUDFLARE_DOH,
    GOOGLE_DOH,
    QUAD9_DOH,
    DoHClient,
    FallbackDoHResolver,
    resolve_doh_endpoints,
    select_dns_server,
)
from zone_topology.resolvers.mock_resolver import MockResolver
from zone_topology.resolvers.resolver_client import ResolverClient
from zone_topology.utils.cancellation import CancellationToken, OperationCancelled
from zone_topology.utils.validators import ConfigurationError, ResolverConfig


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_response(answers=None, ok=True):
    response = Mock()
    response.ok = ok
    response.status_code = 200 if ok else 503
    response.json.return_value = {"Answer": answers} if answers is not None else {}
    return response


def make_records():
    return [
        Record(id="1", type="CNAME", name="www", content="edge.example.net"),
        Record(id="2", type="MX", name="@", content="10 mail.example.net"),
    ]


def make_answers():
    return {
        "edge.example.net": ResolutionResult(
            chain=("edge.example.net", "edge.cdn.net"),
            terminal="edge.cdn.net",
            ipv4=("198.51.100.7",),
            requested_name="edge.example.net",
        ),
        "mail.example.net": ResolutionResult(
            chain=("mail.example.net",),
            terminal="mail.example.net",
            ipv4=("198.51.100.25",),
            requested_name="mail.example.net",
        ),
    }


class TestResolverConfig(unittest.TestCase):
    """Test configuration validation at the boundary."""

    def test_defaults(self):
        config = ResolverConfig.from_dict({})

        self.assertEqual(config.resolver_mode, "dns")
        self.assertEqual(config.dns_server, "1.1.1.1")
        self.assertEqual(config.doh_provider, "cloudflare")
        self.assertEqual(config.max_resolution_hops, 15)
        self.assertEqual(config.lookup_timeout_ms, 1200)
        self.assertEqual(config.tcp_service_ports, (80, 443, 22))
        self.assertTrue(config.scan_resolution_chain)

    def test_out_of_range_values_are_clamped(self):
        with self.assertLogs("zone_topology.utils.validators", level="WARNING"):
            config = ResolverConfig.from_dict({"max_resolution_hops": 40, "lookup_timeout_ms": 10})

        self.assertEqual(config.max_resolution_hops, 15)
        self.assertEqual(config.lookup_timeout_ms, 250)
        self.assertEqual(ResolverConfig.from_dict({"max_resolution_hops": 0}).max_resolution_hops, 1)

    def test_invalid_values_rejected(self):
        invalid = [
            {"resolver_mode": "tcp"},
            {"doh_provider": "opendns"},
            {"geo_provider": "maxmind"},
            {"max_resolution_hops": "many"},
            {"tcp_service_ports": [80, 70000]},
            {"tcp_service_ports": "80"},
            {"unknown_option": True},
            {"disable_ptr_lookups": "false"},
            {"use_backend": 1},
        ]

        for options in invalid:
            with self.subTest(options=options):
                with self.assertRaises(ConfigurationError):
                    ResolverConfig.from_dict(options)

    def test_cache_prefix_tracks_lookup_options(self):
        base = ResolverConfig.from_dict({})

        self.assertEqual(base.cache_prefix(), ResolverConfig.from_dict({}).cache_prefix())
        self.assertNotEqual(
            base.cache_prefix(), ResolverConfig.from_dict({"disable_ptr_lookups": True}).cache_prefix()
        )
        self.assertNotEqual(
            base.cache_prefix(), ResolverConfig.from_dict({"resolver_mode": "doh"}).cache_prefix()
        )


class TestServerSelection(unittest.TestCase):
    """Test DNS server selection and DoH endpoint ranking."""

    def test_custom_dns_server(self):
        config = ResolverConfig.from_dict({"dns_server": "custom", "custom_dns_server": "10.0.0.53"})
        self.assertEqual(select_dns_server(config), "10.0.0.53")

    def test_blank_server_uses_provider_address(self):
        config = ResolverConfig.from_dict({"dns_server": "", "doh_provider": "google"})
        self.assertEqual(select_dns_server(config), "8.8.8.8")

    def test_default_endpoint_ranking(self):
        self.assertEqual(
            resolve_doh_endpoints(ResolverConfig()), [CLOUDFLARE_DOH, GOOGLE_DOH, QUAD9_DOH]
        )

    def test_server_matched_endpoint_first(self):
        config = ResolverConfig.from_dict({"dns_server": "8.8.8.8"})
        self.assertEqual(resolve_doh_endpoints(config), [GOOGLE_DOH, CLOUDFLARE_DOH, QUAD9_DOH])

    def test_provider_endpoint_for_unknown_server(self):
        config = ResolverConfig.from_dict({"dns_server": "10.0.0.1", "doh_provider": "quad9"})
        self.assertEqual(resolve_doh_endpoints(config), [QUAD9_DOH, CLOUDFLARE_DOH, GOOGLE_DOH])

    def test_custom_url_first(self):
        url = "https://doh.example.org/dns-query"
        config = ResolverConfig.from_dict({"doh_provider": "custom", "doh_custom_url": url})
        self.assertEqual(resolve_doh_endpoints(config), [url, CLOUDFLARE_DOH, GOOGLE_DOH, QUAD9_DOH])

    def test_custom_url_matching_default_is_not_repeated(self):
        config = ResolverConfig.from_dict({"doh_provider": "custom", "doh_custom_url": GOOGLE_DOH})
        self.assertEqual(resolve_doh_endpoints(config), [GOOGLE_DOH, CLOUDFLARE_DOH, QUAD9_DOH])

    def test_secondary_server_address_matches_provider(self):
        config = ResolverConfig.from_dict({"dns_server": "1.0.0.1"})
        self.assertEqual(resolve_doh_endpoints(config), [CLOUDFLARE_DOH, GOOGLE_DOH, QUAD9_DOH])


class TestResolutionCache(unittest.TestCase):
    """Test TTL expiry, bounds and namespace invalidation."""

    def setUp(self):
        self.clock = FakeClock()
        self.cache = ResolutionCache(clock=self.clock)
        self.value = ResolutionResult(chain=("a",), terminal="a", ipv4=("192.0.2.1",))

    def test_hit_within_ttl(self):
        self.cache.put("k", self.value)
        self.clock.now += 300

        self.assertIs(self.cache.get("k"), self.value)
        self.assertEqual(self.cache.hits, 1)

    def test_miss_after_ttl(self):
        self.cache.put("k", self.value)
        self.clock.now += 300.5

        self.assertIsNone(self.cache.get("k"))
        self.assertEqual(self.cache.misses, 1)

    def test_entry_dropped_once_expired(self):
        self.cache.put("k", self.value)
        self.clock.now += 302

        self.assertIsNone(self.cache.peek("k"))
        self.assertEqual(len(self.cache), 0)

    def test_peek_leaves_counters_alone(self):
        self.cache.put("k", self.value)

        self.assertIs(self.cache.peek("k"), self.value)
        self.assertIsNone(self.cache.peek("missing"))
        self.assertEqual((self.cache.hits, self.cache.misses), (0, 0))

    def test_namespace_change_drops_entries(self):
        self.assertTrue(self.cache.bind("run-1"))
        self.cache.put("k", self.value)

        self.assertFalse(self.cache.bind("run-1"))
        self.assertEqual(len(self.cache), 1)
        self.assertTrue(self.cache.bind("run-2"))
        self.assertEqual(len(self.cache), 0)

    def test_oldest_evicted_beyond_bound(self):
        cache = ResolutionCache(max_entries=2, clock=self.clock)
        for key in ("a", "b", "c"):
            cache.put(key, self.value)
            self.clock.now += 1

        self.assertEqual(len(cache), 2)
        self.assertIsNone(cache.get("a"))
        self.assertIsNotNone(cache.get("c"))

    def test_clear(self):
        self.cache.put("k", self.value)
        self.assertEqual(self.cache.clear(), 1)
        self.assertEqual(len(self.cache), 0)

    def test_cache_key_normalizes_hostname(self):
        config = ResolverConfig()
        self.assertEqual(cache_key(config, "WWW.Example.com."), cache_key(config, "www.example.com"))


class TestDoHClient(unittest.TestCase):
    """Test cascading DoH queries."""

    def test_cascades_to_next_endpoint(self):
        session = Mock()
        session.get.side_effect = [
            requests.Timeout("timed out"),
            make_response([{"data": "203.0.113.5", "type": 1}]),
        ]
        client = DoHClient(session, [CLOUDFLARE_DOH, GOOGLE_DOH], 1200)

        self.assertEqual(client.query("edge.example.net", "A"), ["203.0.113.5"])
        self.assertEqual(client.queries, 2)
        self.assertEqual(session.get.call_args_list[1][0][0], GOOGLE_DOH)

    def test_filters_answers_by_type(self):
        session = Mock()
        session.get.return_value = make_response(
            [
                {"data": "Target.Example.NET.", "type": 5},
                {"data": "203.0.113.5", "type": 1},
            ]
        )
        client = DoHClient(session, [CLOUDFLARE_DOH], 1200)

        self.assertEqual(client.query("www.example.com", "CNAME"), ["target.example.net"])

    def test_request_shape_and_timeout_floor(self):
        session = Mock()
        session.get.return_value = make_response([])
        client = DoHClient(session, [CLOUDFLARE_DOH], 10)

        self.assertEqual(client.query("www.example.com", "AAAA"), [])

        kwargs = session.get.call_args[1]
        self.assertEqual(kwargs["params"], {"name": "www.example.com", "type": "AAAA"})
        self.assertEqual(kwargs["headers"], {"Accept": "application/dns-json"})
        self.assertEqual(kwargs["timeout"], (0.25, 0.25))

    def test_http_error_is_skipped(self):
        session = Mock()
        session.get.side_effect = [make_response(ok=False), make_response([{"data": "192.0.2.1", "type": 1}])]
        client = DoHClient(session, [CLOUDFLARE_DOH, GOOGLE_DOH], 1200)

        self.assertEqual(client.query("a.example.com", "A"), ["192.0.2.1"])


class CountingDoHResolver(FallbackDoHResolver):
    """Records how many hostnames are being resolved at once."""

    def __init__(self):
        super().__init__(session_factory=Mock)
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0

    def resolve_one(self, client, name, config):
        with self.lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(0.05)
        with self.lock:
            self.active -= 1
        return ResolutionResult(chain=(name,), terminal=name, ipv4=("192.0.2.1",), requested_name=name)


class TestFallbackDoHResolver(unittest.TestCase):
    """Test per-hostname DoH resolution."""

    ZONE = {
        ("www.example.com", "CNAME"): [{"data": "edge.example.net.", "type": 5}],
        ("edge.example.net", "A"): [{"data": "203.0.113.5", "type": 1}],
    }

    def _session(self):
        session = Mock()

        def get(url, params=None, headers=None, timeout=None):
            return make_response(self.ZONE.get((params["name"], params["type"]), []))

        session.get.side_effect = get
        return session

    def test_follows_chain_then_addresses(self):
        session = self._session()
        resolver = FallbackDoHResolver(session_factory=lambda: session)
        seen = []

        results = resolver.resolve(
            ["WWW.example.com."], ResolverConfig(), on_result=lambda name, result: seen.append(name)
        )

        result = results["www.example.com"]
        self.assertEqual(result.chain, ("www.example.com", "edge.example.net"))
        self.assertEqual(result.terminal, "edge.example.net")
        self.assertEqual(result.ipv4, ("203.0.113.5",))
        self.assertEqual(result.ipv6, ())
        self.assertIsNone(result.error)
        self.assertEqual(seen, ["www.example.com"])
        session.close.assert_called()

    def test_no_chain_scan(self):
        session = self._session()
        resolver = FallbackDoHResolver(session_factory=lambda: session)
        config = ResolverConfig.from_dict({"scan_resolution_chain": False})

        result = resolver.resolve(["www.example.com"], config)["www.example.com"]

        self.assertEqual(result.chain, ("www.example.com",))
        self.assertEqual(result.error, "no CNAME/A/AAAA records found")

    def test_worker_pool_bounds_concurrency(self):
        resolver = CountingDoHResolver()
        names = [f"host{i}.example.com" for i in range(6)]
        config = ResolverConfig.from_dict({"max_workers": 2})

        results = resolver.resolve(names, config)

        self.assertEqual(set(results), set(names))
        self.assertLessEqual(resolver.peak, 2)
        self.assertGreaterEqual(resolver.peak, 1)

    def test_cancelled_token_raises(self):
        session = self._session()
        resolver = FallbackDoHResolver(session_factory=lambda: session)
        token = CancellationToken()
        token.cancel("superseded")

        with self.assertRaises(OperationCancelled):
            resolver.resolve(["www.example.com"], ResolverConfig(), token=token)


class FakeAnswer:
    def __init__(self, text):
        self.text = text

    def to_text(self):
        return self.text


class FakeDNSResolver:
    def __init__(self, zone):
        self.zone = zone

    def resolve(self, name, rdtype, raise_on_no_answer=True):
        if (name, rdtype) not in self.zone:
            raise dns.resolver.NXDOMAIN()
        return [FakeAnswer(value) for value in self.zone[(name, rdtype)]]


class TestBatchBackendResolver(unittest.TestCase):
    """Test native batch resolution with a stubbed dnspython resolver."""

    ZONE = {
        ("www.example.com", "CNAME"): ["edge.example.net."],
        ("edge.example.net", "A"): ["203.0.113.5"],
        ("5.113.0.203.in-addr.arpa.", "PTR"): ["edge-host.example.net."],
    }

    def test_resolves_chain_addresses_and_ptr(self):
        backend = BatchBackendResolver(
            session_factory=Mock, resolver_factory=lambda config: FakeDNSResolver(self.ZONE)
        )
        config = ResolverConfig.from_dict({"disable_geo_lookups": True})

        batch = backend.resolve_batch(["www.example.com", "missing.example.com"], config)

        www, missing = batch.resolutions
        self.assertEqual(www.chain, ("www.example.com", "edge.example.net"))
        self.assertEqual(www.ipv4, ("203.0.113.5",))
        self.assertEqual(www.reverse_hostnames_by_ip, {"203.0.113.5": ("edge-host.example.net",)})
        self.assertEqual(missing.error, "no CNAME/A/AAAA records found")

    def test_unavailable_backend_returns_none(self):
        def unavailable(config):
            raise BackendUnavailable("no resolver")

        backend = BatchBackendResolver(session_factory=Mock, resolver_factory=unavailable)

        self.assertIsNone(backend.resolve_batch(["www.example.com"], ResolverConfig()))

    @patch("zone_topology.resolvers.batch_resolver.socket.create_connection")
    def test_service_probes(self, create_connection):
        create_connection.return_value = MagicMock()
        session = Mock()
        session.get.return_value = make_response([])
        backend = BatchBackendResolver(
            session_factory=lambda: session, resolver_factory=lambda config: FakeDNSResolver({})
        )
        config = ResolverConfig.from_dict({"disable_geo_lookups": True, "tcp_service_ports": [443, 2222]})

        batch = backend.resolve_batch([], config, service_hosts=["example.com"])

        self.assertEqual(len(batch.probes), 1)
        self.assertTrue(batch.probes[0].https_up)
        self.assertEqual([(p.port, p.up) for p in batch.tcp_probes], [(443, True), (2222, True)])


class GatedBackend(BatchResolver):
    """Backend stub that blocks batches containing slow names until released."""

    def __init__(self, answers, slow_names=()):
        self.mock = MockResolver(answers)
        self.slow_names = set(slow_names)
        self.gate = threading.Event()
        self.started = threading.Event()

    def resolve_batch(self, hostnames, config, service_hosts=(), token=None):
        if self.slow_names & set(hostnames):
            self.started.set()
            self.gate.wait(5)
        return self.mock.resolve_batch(hostnames, config, service_hosts)


class EmptyResolver(ExternalResolver):
    def resolve(self, names, config, token=None, on_result=None):
        return {}


class TestResolutionCoordinator(unittest.TestCase):
    """Test run keys, caching, progress, fallback and cancellation."""

    def setUp(self):
        self.records = make_records()
        self.config = ResolverConfig()
        self.clock = FakeClock()

    def test_run_indexes_requested_hops_and_terminal(self):
        backend = MockResolver(make_answers())
        coordinator = ResolutionCoordinator(backend=backend, clock=self.clock)

        results = coordinator.run(self.records, "example.com", self.config)

        self.assertEqual(
            set(results), {"edge.example.net", "edge.cdn.net", "mail.example.net"}
        )
        self.assertIs(results["edge.cdn.net"], results["edge.example.net"])
        self.assertEqual(coordinator.state, CoordinatorState.READY)

    def test_same_run_key_issues_no_calls(self):
        backend = MockResolver(make_answers())
        fallback = MockResolver(make_answers())
        coordinator = ResolutionCoordinator(backend=backend, fallback=fallback, clock=self.clock)

        first = coordinator.run(self.records, "example.com", self.config)
        second = coordinator.run(self.records, "example.com", self.config)

        self.assertIs(first, second)
        self.assertEqual(backend.calls, 1)
        self.assertEqual(fallback.calls, 0)

    def test_forced_run_served_from_cache(self):
        backend = MockResolver(make_answers())
        coordinator = ResolutionCoordinator(backend=backend, clock=self.clock)

        coordinator.run(self.records, "example.com", self.config)
        coordinator.run(self.records, "example.com", self.config, force=True)

        self.assertEqual(backend.calls, 1)

    def test_alias_indexing_does_not_count_misses(self):
        cache = ResolutionCache(clock=self.clock)
        coordinator = ResolutionCoordinator(backend=MockResolver(make_answers()), cache=cache)

        coordinator.run(self.records, "example.com", self.config)

        self.assertEqual(cache.misses, 2)
        self.assertEqual(cache.hits, 0)
        self.assertIsNotNone(cache.peek(cache_key(self.config, "edge.cdn.net")))

    def test_cache_expiry_triggers_new_call(self):
        backend = MockResolver(make_answers())
        coordinator = ResolutionCoordinator(backend=backend, clock=self.clock)

        coordinator.run(self.records, "example.com", self.config)
        self.clock.now += 301
        coordinator.run(self.records, "example.com", self.config, force=True)

        self.assertEqual(backend.calls, 2)

    def test_refresh_counter_invalidates_cache(self):
        backend = MockResolver(make_answers())
        coordinator = ResolutionCoordinator(backend=backend, clock=self.clock)

        coordinator.run(self.records, "example.com", self.config)
        coordinator.run(self.records, "example.com", self.config, refresh_counter=1)

        self.assertEqual(backend.calls, 2)

    def test_progress_invariant(self):
        coordinator = ResolutionCoordinator(backend=MockResolver(make_answers()), clock=self.clock)
        observed = []
        coordinator.add_progress_listener(observed.append)

        coordinator.run(self.records, "example.com", self.config)

        self.assertTrue(observed)
        for state in observed:
            self.assertLessEqual(state.done, state.total)
        self.assertEqual(observed[-1], ProgressState(running=False, total=3, done=3))
        self.assertEqual(coordinator.progress, observed[-1])

    def test_falls_back_when_backend_absent(self):
        backend = MockResolver(available=False)
        fallback = MockResolver(make_answers())
        coordinator = ResolutionCoordinator(backend=backend, fallback=fallback, clock=self.clock)

        results = coordinator.run(self.records, "example.com", self.config)

        self.assertEqual(fallback.calls, 1)
        self.assertEqual(results["mail.example.net"].ipv4, ("198.51.100.25",))

    def test_unresolved_candidates_get_placeholders(self):
        coordinator = ResolutionCoordinator(backend=None, fallback=EmptyResolver(), clock=self.clock)

        results = coordinator.run(self.records, "example.com", self.config)

        placeholder = results["mail.example.net"]
        self.assertEqual(placeholder.chain, ("mail.example.net",))
        self.assertEqual(placeholder.terminal, "mail.example.net")
        self.assertEqual(placeholder.ipv4, ())
        self.assertEqual(placeholder.error, "no records found")
        self.assertEqual(set(results), {"edge.example.net", "mail.example.net"})

    def test_run_key_changes_with_inputs(self):
        key = compute_run_key(self.records, "example.com", self.config)

        self.assertEqual(key, compute_run_key(list(reversed(self.records)), "Example.com.", self.config))
        self.assertNotEqual(key, compute_run_key(self.records, "example.org", self.config))
        self.assertNotEqual(key, compute_run_key(self.records, "example.com", self.config, 1))
        self.assertNotEqual(
            key,
            compute_run_key(self.records, "example.com", ResolverConfig.from_dict({"resolver_mode": "doh"})),
        )

    def test_superseded_run_never_published(self):
        """A late result from a superseded run does not overwrite the newer run."""
        slow_records = [Record(id="s", type="CNAME", name="old", content="slow.example.net")]
        fast_records = [Record(id="f", type="CNAME", name="new", content="fast.example.net")]
        answers = {
            "slow.example.net": ResolutionResult(
                chain=("slow.example.net",), terminal="slow.example.net", ipv4=("192.0.2.1",)
            ),
            "fast.example.net": ResolutionResult(
                chain=("fast.example.net",), terminal="fast.example.net", ipv4=("192.0.2.2",)
            ),
        }
        backend = GatedBackend(answers, slow_names={"slow.example.net"})
        coordinator = ResolutionCoordinator(backend=backend, clock=self.clock)
        observed = []

        future = coordinator.submit(slow_records, "example.com", self.config)
        self.assertTrue(backend.started.wait(5))
        coordinator.add_progress_listener(observed.append)
        fast_results = coordinator.run(fast_records, "example.com", self.config)
        backend.gate.set()

        self.assertIsNone(future.result(timeout=5))
        self.assertIs(coordinator.results, fast_results)
        self.assertNotIn("slow.example.net", coordinator.results)
        self.assertEqual(
            coordinator.published_key, compute_run_key(fast_records, "example.com", self.config)
        )
        self.assertEqual(observed[-1], ProgressState(running=False, total=1, done=1))
        coordinator.shutdown()

    def test_cancel_resets_progress(self):
        slow_records = [Record(id="s", type="CNAME", name="old", content="slow.example.net")]
        backend = GatedBackend({}, slow_names={"slow.example.net"})
        coordinator = ResolutionCoordinator(backend=backend, clock=self.clock)

        future = coordinator.submit(slow_records, "example.com", self.config)
        self.assertTrue(backend.started.wait(5))
        coordinator.cancel()
        backend.gate.set()

        self.assertIsNone(future.result(timeout=5))
        self.assertFalse(coordinator.progress.running)
        self.assertEqual(coordinator.state, CoordinatorState.IDLE)
        self.assertIsNone(coordinator.published_key)
        coordinator.shutdown()


class TestResolverClient(unittest.TestCase):
    """Test resolver implementation selection."""

    def test_default_uses_backend_and_doh(self):
        client = ResolverClient(ResolverConfig())

        self.assertIsInstance(client.backend, BatchBackendResolver)
        self.assertIsInstance(client.fallback, FallbackDoHResolver)

    def test_backend_disabled(self):
        client = ResolverClient(ResolverConfig.from_dict({"use_backend": False}))

        self.assertIsNone(client.backend)

    def test_offline_uses_mock(self):
        client = ResolverClient(ResolverConfig(), offline=True)

        self.assertIsInstance(client.fallback, MockResolver)
        self.assertIsNone(client.backend.resolve_batch(["a.example.com"], ResolverConfig()))



if __name__ == "__main__":
    unittest.main()
