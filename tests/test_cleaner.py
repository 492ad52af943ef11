import concurrent.futures
import threading

import pytest

import cleaner
from conftest import FakeAgent, claim, pod, volume


@pytest.fixture
def scenario(claims, pods, volumes):
    claims.add(claim("data-0", node="node-a", volume_name="pv-123"))
    claims.add(claim("data-1", node="node-a", provisioner="other-provisioner", volume_name="pv-456"))
    volumes.add(volume("pv-123", claim="ns1/data-0", node="node-a"))
    volumes.add(volume("pv-456", claim="ns1/data-1", node="node-a", provisioner="other-provisioner"))
    pods.add(pod("app-0", claims=["data-0"]))
    pods.add(pod("app-1", claims=["data-1"]))

def test_node_cleanup_deletes_claim_volume_and_pods_in_order(scenario, agent, make_cleaner):
    result = make_cleaner().cleanup_node("node-a")
    assert agent.calls == [
        ("claim", "ns1/data-0"),
        ("volume", "pv-123"),
        ("pod", "ns1/app-0"),
    ]
    assert result.deleted == ["PersistentVolumeClaim ns1/data-0", "PersistentVolume pv-123", "Pod ns1/app-0"]
    assert result.failed == []

@pytest.mark.parametrize("strategy", ["index", "scan"])
def test_foreign_objects_are_never_touched(scenario, agent, make_cleaner, strategy):
    make_cleaner(strategy=strategy).cleanup_node("node-a")
    touched = {target for _, target in agent.calls}
    assert "ns1/data-1" not in touched
    assert "pv-456" not in touched
    assert "ns1/app-1" not in touched

def test_scan_strategy_follows_claim_ref(scenario, agent, make_cleaner):
    make_cleaner(strategy="scan").cleanup_node("node-a")
    assert agent.calls == [
        ("claim", "ns1/data-0"),
        ("volume", "pv-123"),
        ("pod", "ns1/app-0"),
    ]

def test_scan_strategy_falls_back_to_node_affinity(claims, volumes, agent, make_cleaner):
    claims.add(claim("data-0", node="node-a", volume_name="pv-1"))
    volumes.add(volume("pv-1", claim="ns1/data-0", node=None, affinity=["node-a"]))
    make_cleaner(strategy="scan").cleanup_node("node-a")
    assert ("claim", "ns1/data-0") in agent.calls

def test_scan_strategy_skips_missing_claims_and_unbound_volumes(volumes, agent, make_cleaner):
    volumes.add(volume("pv-1", claim="ns1/gone", node="node-a"))
    volumes.add(volume("pv-2", node="node-a"))
    assert make_cleaner(strategy="scan").cleanup_node("node-a").deleted == []
    assert agent.calls == []

def test_each_claim_gets_its_own_batch(claims, pods, agent, make_cleaner):
    for i in range(5):
        claims.add(claim(f"data-{i}", node="node-a", volume_name=f"pv-{i}"))
        pods.add(pod(f"app-{i}", claims=[f"data-{i}"]))
    claims.add(claim("other", node="node-b", volume_name="pv-other"))
    result = make_cleaner(workers=2).cleanup_node("node-a")
    assert len(result.deleted) == 15
    assert sorted(agent.calls) == sorted(
        [("claim", f"ns1/data-{i}") for i in range(5)]
        + [("volume", f"pv-{i}") for i in range(5)]
        + [("pod", f"ns1/app-{i}") for i in range(5)]
    )
    for i in range(5):
        positions = [agent.calls.index(call) for call in [("claim", f"ns1/data-{i}"), ("volume", f"pv-{i}"), ("pod", f"ns1/app-{i}")]]
        assert positions == sorted(positions)

def test_pod_using_several_claims_is_deleted_once(claims, pods, agent, make_cleaner):
    claims.add(claim("data-0", node="node-a"))
    claims.add(claim("logs-0", node="node-a"))
    pods.add(pod("app-0", claims=["data-0", "logs-0"]))
    make_cleaner().cleanup_node("node-a")
    assert agent.calls.count(("pod", "ns1/app-0")) == 1
    assert ("claim", "ns1/data-0") in agent.calls
    assert ("claim", "ns1/logs-0") in agent.calls

def test_pods_first_also_deletes_shared_pod_once(claims, pods, agent, make_cleaner):
    claims.add(claim("data-0", node="node-a"))
    claims.add(claim("logs-0", node="node-a"))
    pods.add(pod("app-0", claims=["data-0", "logs-0"]))
    make_cleaner(pods_first=True, workers=1).cleanup_node("node-a")
    assert agent.calls == [("pod", "ns1/app-0"), ("claim", "ns1/data-0"), ("claim", "ns1/logs-0")]

def test_handled_set():
    handled = cleaner.HandledSet()
    assert handled.mark("ns1/app-0")
    assert not handled.mark("ns1/app-0")
    assert handled.mark("ns1/app-1")

def test_pods_in_other_namespaces_with_same_claim_name_are_kept(claims, pods, agent, make_cleaner):
    claims.add(claim("data-0", node="node-a"))
    pods.add(pod("app-0", claims=["data-0"]))
    pods.add(pod("app-0", namespace="ns2", claims=["data-0"]))
    make_cleaner().cleanup_node("node-a")
    assert ("pod", "ns2/app-0") not in agent.calls

def test_unbound_claim_skips_volume(claims, agent, make_cleaner):
    claims.add(claim("data-0", node="node-a"))
    make_cleaner().cleanup_node("node-a")
    assert agent.calls == [("claim", "ns1/data-0")]

def test_failures_do_not_stop_the_batch(claims, pods, make_cleaner):
    agent = FakeAgent(fail=[("claim", "ns1/data-0"), ("volume", "pv-1"), ("pod", "ns1/app-0")])
    claims.add(claim("data-0", node="node-a", volume_name="pv-0"))
    claims.add(claim("data-1", node="node-a", volume_name="pv-1"))
    pods.add(pod("app-0", claims=["data-0"]))
    pods.add(pod("app-1", claims=["data-0"]))
    result = make_cleaner(agent=agent).cleanup_node("node-a")
    assert sorted(result.failed) == ["PersistentVolume pv-1", "PersistentVolumeClaim ns1/data-0", "Pod ns1/app-0"]
    assert sorted(result.deleted) == ["PersistentVolume pv-0", "PersistentVolumeClaim ns1/data-1", "Pod ns1/app-1"]
    assert str(result) == "3 deleted, 3 failed"

def test_pods_first(claims, pods, agent, make_cleaner):
    claims.add(claim("data-0", node="node-a", volume_name="pv-0"))
    pods.add(pod("app-0", claims=["data-0"]))
    make_cleaner(pods_first=True).cleanup_node("node-a")
    assert agent.calls == [("pod", "ns1/app-0"), ("claim", "ns1/data-0"), ("volume", "pv-0")]

def test_pod_deletion_can_be_disabled(claims, agent, make_cleaner):
    claims.add(claim("data-0", node="node-a", volume_name="pv-0"))
    node_cleaner = cleaner.Cleaner(agent=agent, claims=claims, delete_pods=False)
    try:
        node_cleaner.cleanup_node("node-a")
    finally:
        node_cleaner.shutdown()
    assert agent.calls == [("claim", "ns1/data-0"), ("volume", "pv-0")]

def test_unknown_or_empty_node(scenario, agent, make_cleaner):
    node_cleaner = make_cleaner()
    assert len(node_cleaner.cleanup_node("node-z")) == 0
    assert len(node_cleaner.cleanup_node("")) == 0
    assert agent.calls == []

def test_cleanup_claim_refuses_foreign_claim(agent, make_cleaner):
    result = make_cleaner().cleanup_claim(claim("data-1", provisioner="other-provisioner", volume_name="pv-456"))
    assert len(result) == 0
    assert agent.calls == []

def test_repeated_cleanup_issues_the_same_deletes(scenario, agent, make_cleaner):
    node_cleaner = make_cleaner()
    node_cleaner.cleanup_node("node-a")
    first = list(agent.calls)
    node_cleaner.cleanup_node("node-a")
    assert set(agent.calls) == set(first)

class BlockingAgent(FakeAgent):
    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def delete_claim(self, name, namespace, node=None):
        self.entered.set()
        self.release.wait(5)
        return super().delete_claim(name, namespace, node)

def test_concurrent_cleanup_of_same_claim_runs_once(claims, pods, make_cleaner):
    agent = BlockingAgent()
    claims.add(claim("data-0", node="node-a", volume_name="pv-0"))
    node_cleaner = make_cleaner(agent=agent)
    first = node_cleaner.submit_node("node-a")
    assert agent.entered.wait(5)
    second = node_cleaner.cleanup_claim(claims.get_by_key("ns1/data-0"))
    agent.release.set()
    first.result(5)
    assert len(second) == 0
    assert agent.calls == [("claim", "ns1/data-0"), ("volume", "pv-0")]

def test_concurrent_cleanup_of_different_nodes(claims, agent, make_cleaner):
    claims.add(claim("data-a", node="node-a"))
    claims.add(claim("data-b", node="node-b"))
    node_cleaner = make_cleaner()
    futures = [node_cleaner.submit_node(n) for n in ("node-a", "node-b")]
    concurrent.futures.wait(futures, timeout=5)
    assert sorted(agent.calls) == [("claim", "ns1/data-a"), ("claim", "ns1/data-b")]

def test_invalid_configuration(claims, pods, agent):
    with pytest.raises(ValueError):
        cleaner.Cleaner(agent=agent, claims=claims, pods=pods, strategy="guess")
    with pytest.raises(ValueError):
        cleaner.Cleaner(agent=agent, claims=claims, pods=pods, strategy="scan")
    with pytest.raises(ValueError):
        cleaner.Cleaner(agent=agent, claims=claims)

def test_resolution_failure_aborts_only_that_pass(agent, make_cleaner):
    class BrokenIndexer:
        def by_index(self, name, value):
            raise RuntimeError("broken")

    node_cleaner = make_cleaner()
    node_cleaner.claims = BrokenIndexer()
    assert len(node_cleaner.cleanup_node("node-a")) == 0
    assert agent.calls == []
