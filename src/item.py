from typing import Any, Dict, List

HOSTNAME_LABEL = "kubernetes.io/hostname"


def meta_key(namespace: str, name: str) -> str: #same key format as client-go's MetaNamespaceKeyFunc
    if namespace:
        return f"{namespace}/{name}"
    return name

def _metadata(data: Dict) -> Dict:
    return data.get("metadata") or {}

class DictLikeItem:
    data = {}
    def __init__(self, data=None):
        self.data = {} if data is None else data

    def __getattr__(self, attr):
        if attr in self.data:
            return self.data[attr]
        else:
            raise AttributeError(f"'{type(self).__name__}' object has no attribute '{attr}'")

    def __setattr__(self, attr: str, value: object):
        if attr in self.data:
            self.data[attr] = value
        else:
            self.__dict__[attr] = value

    def __eq__(self, other):
        return type(self) is type(other) and self.data == other.data

    def __repr__(self):
        return f"{type(self).__name__}({self.key})"

    @property
    def key(self) -> str:
        return meta_key(self.data.get("namespace"), self.data.get("name"))

class NodeItem(DictLikeItem):
    def __init__(self, name: str=None, version: str=None, data: Any=None):
        super().__init__()
        if data is None:
            self.data["name"] = name
            self.data["version"] = version
        elif isinstance(data, NodeItem):
            self.data.update(data.data)
        else: #raw api object
            metadata = _metadata(data)
            self.data["name"] = metadata["name"]
            self.data["version"] = metadata.get("resourceVersion")

class ClaimItem(DictLikeItem):
    def __init__(self, name: str=None, namespace: str=None, annotations: Dict[str, str]=None, volume_name: str=None, version: str=None, data: Any=None):
        super().__init__()
        if data is None:
            self.data["name"] = name
            self.data["namespace"] = namespace
            self.data["annotations"] = dict(annotations or {})
            self.data["volume_name"] = volume_name or ""
            self.data["version"] = version
        elif isinstance(data, ClaimItem):
            self.data.update(data.data)
        else:
            metadata = _metadata(data)
            spec = data.get("spec") or {}
            self.data["name"] = metadata["name"]
            self.data["namespace"] = metadata.get("namespace")
            self.data["annotations"] = dict(metadata.get("annotations") or {})
            self.data["volume_name"] = spec.get("volumeName") or "" #empty until bound
            self.data["version"] = metadata.get("resourceVersion")

class VolumeItem(DictLikeItem):
    def __init__(self, name: str=None, annotations: Dict[str, str]=None, claim_ref: Dict[str, str]=None, affinity_nodes: List[str]=None, version: str=None, data: Any=None):
        super().__init__()
        if data is None:
            self.data["name"] = name
            self.data["annotations"] = dict(annotations or {})
            self.data["claim_ref"] = claim_ref
            self.data["affinity_nodes"] = list(affinity_nodes or [])
            self.data["version"] = version
        elif isinstance(data, VolumeItem):
            self.data.update(data.data)
        else:
            metadata = _metadata(data)
            spec = data.get("spec") or {}
            claim_ref = spec.get("claimRef")
            self.data["name"] = metadata["name"]
            self.data["annotations"] = dict(metadata.get("annotations") or {})
            self.data["claim_ref"] = None if not claim_ref else {
                "namespace": claim_ref.get("namespace"),
                "name": claim_ref.get("name"),
            }
            self.data["affinity_nodes"] = affinity_nodes_of(spec)
            self.data["version"] = metadata.get("resourceVersion")

    @property
    def claim_key(self) -> str:
        if not self.claim_ref or not self.claim_ref.get("name"):
            return ""
        return meta_key(self.claim_ref.get("namespace"), self.claim_ref["name"])

class PodItem(DictLikeItem):
    def __init__(self, name: str=None, namespace: str=None, claim_names: List[str]=None, version: str=None, data: Any=None):
        super().__init__()
        if data is None:
            self.data["name"] = name
            self.data["namespace"] = namespace
            self.data["claim_names"] = list(claim_names or [])
            self.data["version"] = version
        elif isinstance(data, PodItem):
            self.data.update(data.data)
        else:
            metadata = _metadata(data)
            spec = data.get("spec") or {}
            self.data["name"] = metadata["name"]
            self.data["namespace"] = metadata.get("namespace")
            self.data["claim_names"] = claim_names_of(spec)
            self.data["version"] = metadata.get("resourceVersion")

def affinity_nodes_of(spec: Dict) -> List[str]: #hostnames from spec.nodeAffinity.required, as written by local volume provisioners
    required = (spec.get("nodeAffinity") or {}).get("required") or {}
    nodes = []
    for term in required.get("nodeSelectorTerms") or []:
        for expr in term.get("matchExpressions") or []:
            if expr.get("key") != HOSTNAME_LABEL:
                continue
            for value in expr.get("values") or []:
                if value not in nodes:
                    nodes.append(value)
    return nodes

def claim_names_of(spec: Dict) -> List[str]:
    names = []
    for volume in spec.get("volumes") or []:
        claim = volume.get("persistentVolumeClaim")
        if claim is None:
            continue
        name = claim.get("claimName")
        if name and name not in names:
            names.append(name)
    return names

ITEM_CLASSES = {
    "node": NodeItem,
    "claim": ClaimItem,
    "volume": VolumeItem,
    "pod": PodItem,
}

def item_from_raw(kind: str, raw: Dict) -> DictLikeItem:
    return ITEM_CLASSES[kind](data=raw)
