"""
Step definitions for Zone Topology acceptance tests.
"""

import threading

from behave import given, then, when

from zone_topology.core.assembler import GraphAssembler
from zone_topology.core.coordinator import ResolutionCoordinator
from zone_topology.core.models import NodeKind, Record, ResolutionResult
from zone_topology.resolvers.mock_resolver import MockResolver
from zone_topology.utils.validators import ResolverConfig


def _split(values):
    return [value.strip() for value in values.split(",") if value.strip()]


def _node_summary(context, name):
    for entry in context.topology.summary.node_summaries:
        if entry["name"] == name:
            return entry
    raise AssertionError(f"No node summary for {name}")


def _coordinator(context):
    if context.coordinator is None:
        backend = getattr(context, "backend", None) or MockResolver(context.answers)
        context.backend = backend
        context.fallback = getattr(context, "fallback", None) or MockResolver(context.answers)
        context.coordinator = ResolutionCoordinator(backend=backend, fallback=context.fallback)
    return context.coordinator


@given('the zone "{zone}" has the records:')
def step_impl(context, zone):
    """Load the zone record set from the step table."""
    context.zone = zone
    context.records = [
        Record(id=row["id"], type=row["type"], name=row["name"], content=row["content"])
        for row in context.table
    ]
    context.resolver_config = ResolverConfig.from_dict(context.test_config["resolver"])


@given('the external resolver answers "{name}" with "{ip}"')
def step_impl(context, name, ip):
    context.answers[name] = ResolutionResult(
        chain=(name,), terminal=name, ipv4=(ip,), requested_name=name
    )


@given("the batch backend is unavailable")
def step_impl(context):
    context.backend = MockResolver(context.answers, available=False)
    context.fallback = MockResolver(context.answers)


@given("the external resolver is slow")
def step_impl(context):
    context.gate = threading.Event()
    context.backend = MockResolver(context.answers, gate=context.gate)


@when("I assemble the topology without external data")
def step_impl(context):
    context.topology = GraphAssembler().assemble(
        context.records, context.zone, context.resolver_config.max_resolution_hops
    )


@when("I run external resolution")
@when("I run external resolution again with the same inputs")
def step_impl(context):
    context.results = _coordinator(context).run(context.records, context.zone, context.resolver_config)


@when("I start external resolution in the background")
def step_impl(context):
    context.future = _coordinator(context).submit(context.records, context.zone, context.resolver_config)


@when('the zone records change to a CNAME "{name}" pointing at "{target}"')
def step_impl(context, name, target):
    context.records = [Record(id="2", type="CNAME", name=name, content=target)]


@when("I run external resolution with a responsive resolver")
def step_impl(context):
    context.coordinator.backend = MockResolver(context.answers)
    context.results = context.coordinator.run(context.records, context.zone, context.resolver_config)


@when("the slow resolver finishes")
def step_impl(context):
    context.gate.set()
    context.background_result = context.future.result(timeout=5)


@then('"{name}" resolves through "{chain}" to "{terminal}"')
def step_impl(context, name, chain, terminal):
    entry = _node_summary(context, name)
    assert [name] + entry["resolvedTo"] == _split(chain), entry
    assert entry["terminal"] == terminal, entry


@then('"{name}" has the IPv4 addresses "{addresses}"')
def step_impl(context, name, addresses):
    entry = _node_summary(context, name)
    assert entry["ipv4"] == _split(addresses), entry


@then("the summary reports no CNAME chains")
def step_impl(context):
    assert context.topology.summary.cname_chains == []


@then('the summary has an MX trail from "{source}" with priority {priority:d} to "{target}"')
def step_impl(context, source, priority, target):
    trails = [
        trail
        for trail in context.topology.summary.mx_trails
        if trail["from"] == source and trail["priority"] == priority and trail["target"] == target
    ]
    assert len(trails) == 1, context.topology.summary.mx_trails


@then('the graph has an "{label}" node')
def step_impl(context, label):
    assert any(
        node.kind == NodeKind.MX_PRIORITY and node.label == label for node in context.topology.nodes
    )


@then('the address "{ip}" is shared by "{names}"')
def step_impl(context, ip, names):
    assert {"ip": ip, "names": _split(names)} in context.topology.summary.shared_ips


@then("the batch backend was called {count:d} time")
def step_impl(context, count):
    assert context.backend.calls == count, context.backend.calls


@then("the fallback resolver was called {count:d} time")
def step_impl(context, count):
    assert context.fallback.calls == count, context.fallback.calls


@then('the published resolution for "{name}" has the IPv4 addresses "{addresses}"')
def step_impl(context, name, addresses):
    result = context.coordinator.results[name]
    assert list(result.ipv4) == _split(addresses), result


@then('no resolution for "{name}" is published')
def step_impl(context, name):
    assert name not in context.coordinator.results


@then("the background run publishes nothing")
def step_impl(context):
    assert context.background_result is None


@then("resolution progress is finished")
def step_impl(context):
    progress = context.coordinator.progress
    assert not progress.running
    assert progress.done == progress.total
