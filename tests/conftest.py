import threading

import pytest

import annotation
import cleaner
import index
import item
import store

EXPECTED = annotation.EXPECTED_PROVISIONER


def claim_annotations(node, provisioner=EXPECTED):
    annotations = {annotation.PROVISIONER_KEY: provisioner}
    if node is not None:
        annotations[annotation.SELECTED_NODE_KEY] = node
    return annotations

def raw_claim(name, namespace="ns1", node="node-a", provisioner=EXPECTED, volume_name="", version="1"):
    return {
        "metadata": {
            "name": name,
            "namespace": namespace,
            "annotations": claim_annotations(node, provisioner),
            "resourceVersion": version,
        },
        "spec": {"volumeName": volume_name},
    }

def raw_volume(name, claim=None, node="node-a", provisioner=EXPECTED, affinity=None, version="1"):
    spec = {}
    if claim is not None:
        namespace, claim_name = claim.split("/")
        spec["claimRef"] = {"kind": "PersistentVolumeClaim", "namespace": namespace, "name": claim_name}
    if affinity is not None:
        spec["nodeAffinity"] = {"required": {"nodeSelectorTerms": [
            {"matchExpressions": [{"key": item.HOSTNAME_LABEL, "operator": "In", "values": affinity}]}
        ]}}
    return {
        "metadata": {"name": name, "annotations": claim_annotations(node, provisioner), "resourceVersion": version},
        "spec": spec,
    }

def raw_pod(name, namespace="ns1", claims=(), version="1"):
    volumes = [{"name": f"vol-{i}", "persistentVolumeClaim": {"claimName": claim}} for i, claim in enumerate(claims)]
    volumes.append({"name": "config", "configMap": {"name": "cm"}})
    return {
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": version},
        "spec": {"volumes": volumes},
    }

def raw_node(name, version="1"):
    return {"metadata": {"name": name, "resourceVersion": version}}

def claim(name, **kwargs):
    return item.ClaimItem(data=raw_claim(name, **kwargs))

def volume(name, **kwargs):
    return item.VolumeItem(data=raw_volume(name, **kwargs))

def pod(name, **kwargs):
    return item.PodItem(data=raw_pod(name, **kwargs))

def node(name):
    return item.NodeItem(data=raw_node(name))

class FakeAgent(store.ClusterAgent):
    """Records deletes. Objects named in ``fail`` fail to delete."""

    def __init__(self, fail=()):
        self.calls = []
        self.fail = set(fail)
        self.lock = threading.Lock()

    def _delete(self, call):
        with self.lock:
            self.calls.append(call)
        return call not in self.fail

    def delete_claim(self, name, namespace, node=None):
        return self._delete(("claim", f"{namespace}/{name}"))

    def delete_volume(self, name, node=None):
        return self._delete(("volume", name))

    def delete_pod(self, name, namespace, node=None):
        return self._delete(("pod", f"{namespace}/{name}"))

@pytest.fixture
def annotation_filter():
    return annotation.AnnotationFilter()

@pytest.fixture
def claims(annotation_filter):
    return index.Indexer({index.CLAIM_BY_NODE: index.claim_by_node_index(annotation_filter)})

@pytest.fixture
def pods():
    return index.Indexer({index.POD_BY_CLAIM: index.pod_by_claim_index})

@pytest.fixture
def volumes():
    return index.Indexer()

@pytest.fixture
def nodes():
    return index.Indexer()

@pytest.fixture
def agent():
    return FakeAgent()

@pytest.fixture
def make_cleaner(agent, claims, pods, volumes, annotation_filter):
    made = []
    def factory(**kwargs):
        kwargs.setdefault("agent", agent)
        c = cleaner.Cleaner(claims=claims, pods=pods, volumes=volumes, annotation_filter=annotation_filter, **kwargs)
        made.append(c)
        return c
    yield factory
    for c in made:
        c.shutdown()
