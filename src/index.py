import threading
import typing

import annotation
import item

CLAIM_BY_NODE = "claimByNode"
POD_BY_CLAIM = "podByClaim"

IndexFunc = typing.Callable[[item.DictLikeItem], typing.List[str]]


def claim_by_node_index(annotation_filter: annotation.AnnotationFilter) -> IndexFunc:
    def index_func(claim: item.ClaimItem) -> typing.List[str]:
        if not annotation_filter.is_owned(claim.annotations):
            return []
        return [annotation_filter.anchor_node(claim.annotations)] #may be "", which matches no real node
    return index_func

def pod_by_claim_index(pod: item.PodItem) -> typing.List[str]: #claims are namespaced, so key by "<namespace>/<claim>"
    return [item.meta_key(pod.namespace, claim_name) for claim_name in pod.claim_names]

class Indexer:
    """Keyed store of watched objects with reverse indices.

    Every index function maps an object to the list of index values it is
    filed under. Indices are kept up to date on every add, update and delete
    so lookups never have to rescan the store. All reads and writes take the
    same lock, so a reader never observes an object under both its old and new
    index values.
    """

    def __init__(self, indexers: typing.Dict[str, IndexFunc]=None):
        self._lock = threading.RLock()
        self._items: typing.Dict[str, item.DictLikeItem] = {}
        self._indexers: typing.Dict[str, IndexFunc] = {}
        self._indices: typing.Dict[str, typing.Dict[str, typing.Set[str]]] = {}
        for name, index_func in (indexers or {}).items():
            self.add_indexer(name, index_func)

    def add_indexer(self, name: str, index_func: IndexFunc):
        with self._lock:
            if name in self._indexers:
                raise ValueError(f"indexer {name} already exists")
            self._indexers[name] = index_func
            index = self._indices[name] = {}
            for key, obj in self._items.items():
                for value in self._index_values(index_func, obj):
                    index.setdefault(value, set()).add(key)

    @staticmethod
    def _index_values(index_func: IndexFunc, obj: item.DictLikeItem) -> typing.Set[str]:
        return set(index_func(obj) or [])

    def _unindex(self, key: str, obj: item.DictLikeItem):
        for name, index_func in self._indexers.items():
            index = self._indices[name]
            for value in self._index_values(index_func, obj):
                bucket = index.get(value)
                if bucket is None:
                    continue
                bucket.discard(key)
                if not bucket:
                    del index[value]

    def _index(self, key: str, obj: item.DictLikeItem):
        for name, index_func in self._indexers.items():
            index = self._indices[name]
            for value in self._index_values(index_func, obj):
                index.setdefault(value, set()).add(key)

    def add(self, obj: item.DictLikeItem):
        self.update(obj)

    def update(self, obj: item.DictLikeItem) -> typing.Optional[item.DictLikeItem]:
        key = obj.key
        with self._lock:
            old = self._items.get(key)
            if old is not None:
                self._unindex(key, old)
            self._items[key] = obj
            self._index(key, obj)
            return old

    def delete(self, obj: item.DictLikeItem) -> typing.Optional[item.DictLikeItem]:
        key = obj.key
        with self._lock:
            old = self._items.pop(key, None)
            if old is not None:
                self._unindex(key, old)
            return old

    def replace(self, objs: typing.Iterable[item.DictLikeItem]):
        with self._lock:
            self._items = {}
            self._indices = {name: {} for name in self._indexers}
            for obj in objs:
                self._items[obj.key] = obj
                self._index(obj.key, obj)

    def get(self, obj: item.DictLikeItem) -> typing.Optional[item.DictLikeItem]:
        return self.get_by_key(obj.key)

    def get_by_key(self, key: str) -> typing.Optional[item.DictLikeItem]:
        with self._lock:
            return self._items.get(key)

    def list(self) -> typing.List[item.DictLikeItem]:
        with self._lock:
            return [self._items[key] for key in sorted(self._items)]

    def list_keys(self) -> typing.List[str]:
        with self._lock:
            return sorted(self._items)

    def by_index(self, index_name: str, value: str) -> typing.List[item.DictLikeItem]:
        with self._lock:
            keys = self._indices[index_name].get(value, ())
            return [self._items[key] for key in sorted(keys)]

    def index_keys(self, index_name: str, value: str) -> typing.List[str]:
        with self._lock:
            return sorted(self._indices[index_name].get(value, ()))

    def __len__(self):
        with self._lock:
            return len(self._items)
