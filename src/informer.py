import logging
import random
import threading
import typing

import kubernetes
from kubernetes.client.rest import ApiException
import urllib3

import index
import item

LIST_FUNCS = { #kind -> CoreV1Api list call covering the whole cluster
    "node": "list_node",
    "claim": "list_persistent_volume_claim_for_all_namespaces",
    "volume": "list_persistent_volume",
    "pod": "list_pod_for_all_namespaces",
}

MAX_BACKOFF = 30


class Informer:
    """Keeps a local, indexed copy of one resource kind.

    Lists the kind once, then follows a watch stream from the list's
    resourceVersion. Every change is applied to the indexer before the
    registered handlers are called with ``{"type", "object", "old_object"}``.
    A re-list (after 410 Gone or a broken stream) replaces the store and
    reports the difference as ADDED/MODIFIED/DELETED events, so deletions
    that happened while the stream was down are not lost.
    """

    def __init__(self, kind: str, list_func: typing.Callable, indexers: typing.Dict[str, index.IndexFunc]=None, timeout_seconds: int=300, request_timeout: float=60, initial_backoff: float=1):
        self.kind = kind
        self.list_func = list_func
        self.indexer = index.Indexer(indexers)
        self.timeout_seconds = timeout_seconds
        self.request_timeout = request_timeout
        self.initial_backoff = initial_backoff
        self.handlers = []
        self.api_client = kubernetes.client.ApiClient()
        self._synced = threading.Event()
        self._stop = threading.Event()
        self._watcher = None
        self._watcher_lock = threading.Lock()
        self._thread = None

    def add_handler(self, handler):
        self.handlers.append(handler)

    def add_indexer(self, name: str, index_func: index.IndexFunc):
        self.indexer.add_indexer(name, index_func)

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def stopped(self) -> bool:
        return self._stop.is_set()

    def _to_item(self, obj) -> item.DictLikeItem:
        raw = obj if isinstance(obj, dict) else self.api_client.sanitize_for_serialization(obj)
        return item.item_from_raw(self.kind, raw)

    def _dispatch(self, event_type: str, obj: item.DictLikeItem, old: item.DictLikeItem=None):
        event = {"type": event_type, "object": obj, "old_object": old}
        for handler in self.handlers:
            try:
                handler.handle(event)
            except Exception as e:
                logging.exception(f"[Reaper]Handler fails on {event_type} event of {self.kind} {obj.key}.\n%s", e)

    def list_and_replace(self) -> typing.Optional[str]:
        result = self.list_func(_request_timeout=self.request_timeout)
        objs = [self._to_item(obj) for obj in result.items]
        before = {obj.key: obj for obj in self.indexer.list()}
        self.indexer.replace(objs)
        after = {obj.key: obj for obj in objs}
        for key, obj in after.items():
            old = before.get(key)
            if old is None:
                self._dispatch("ADDED", obj)
            elif old != obj:
                self._dispatch("MODIFIED", obj, old)
        for key, old in before.items():
            if key not in after:
                self._dispatch("DELETED", old, old)
        self._synced.set()
        logging.info(f"[Reaper]Listed {len(objs)} {self.kind} objects.")
        metadata = getattr(result, "metadata", None)
        return getattr(metadata, "resource_version", None)

    def process_event(self, event: typing.Dict) -> typing.Optional[str]:
        event_type = event["type"]
        raw = event.get("raw_object")
        if event_type not in ("ADDED", "MODIFIED", "DELETED") or not raw:
            return None #BOOKMARK or ERROR, nothing to store
        obj = item.item_from_raw(self.kind, raw)
        if event_type == "DELETED":
            old = self.indexer.delete(obj)
            self._dispatch(event_type, obj, old)
        else:
            old = self.indexer.update(obj)
            self._dispatch("ADDED" if old is None else "MODIFIED", obj, old)
        return obj.version

    def run(self):
        resource_version = None
        listed = False
        backoff = self.initial_backoff
        while not self.stopped():
            try:
                if not listed:
                    resource_version = self.list_and_replace()
                    listed = True
                watcher = kubernetes.watch.Watch()
                with self._watcher_lock:
                    self._watcher = watcher
                if self.stopped():
                    break
                for event in watcher.stream(self.list_func, resource_version=resource_version, timeout_seconds=self.timeout_seconds):
                    if self.stopped():
                        break
                    version = self.process_event(event)
                    if version:
                        resource_version = version
                backoff = self.initial_backoff
            except ApiException as e:
                if e.status == 410: #resourceVersion compacted away
                    logging.warning(f"[Reaper]Watch of {self.kind} expired, re-listing.")
                    listed = False
                    continue
                if e.status in (401, 403):
                    logging.error(f"[Reaper]Access to {self.kind} denied ({e.status}). Check the RBAC of the controller.")
                else:
                    logging.error(f"[Reaper]Fail to list/watch {self.kind}: {e.status} {e.reason}")
                listed = False
                self._stop.wait(backoff * (0.5 + random.random()))
                backoff = min(backoff * 2, MAX_BACKOFF)
            except (urllib3.exceptions.HTTPError, OSError) as e:
                logging.error(f"[Reaper]Fail to list/watch {self.kind}: {e}")
                listed = False
                self._stop.wait(backoff * (0.5 + random.random()))
                backoff = min(backoff * 2, MAX_BACKOFF)
            except Exception as e:
                logging.exception(f"[Reaper]Unexpected failure in informer of {self.kind}.\n%s", e)
                listed = False
                self._stop.wait(backoff * (0.5 + random.random()))
                backoff = min(backoff * 2, MAX_BACKOFF)
        logging.info(f"[Reaper]Informer of {self.kind} has been stopped.")

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name=f"informer-{self.kind}", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self):
        self._stop.set()
        with self._watcher_lock:
            if self._watcher is not None:
                self._watcher.stop()

    def join(self, timeout: float=None):
        if self._thread is not None:
            self._thread.join(timeout)

class InformerFactory:
    def __init__(self, v1: kubernetes.client.CoreV1Api, timeout_seconds: int=300, request_timeout: float=60):
        self.v1 = v1
        self.timeout_seconds = timeout_seconds
        self.request_timeout = request_timeout
        self.informers: typing.Dict[str, Informer] = {}

    def informer(self, kind: str, indexers: typing.Dict[str, index.IndexFunc]=None) -> Informer:
        if kind not in self.informers:
            list_func = getattr(self.v1, LIST_FUNCS[kind])
            self.informers[kind] = Informer(kind, list_func, timeout_seconds=self.timeout_seconds, request_timeout=self.request_timeout)
        informer = self.informers[kind]
        for name, index_func in (indexers or {}).items():
            informer.add_indexer(name, index_func)
        return informer

    def start(self):
        for informer in self.informers.values():
            informer.start()
        logging.info(f"[Reaper]Informers of {', '.join(self.informers)} started.")

    def stop(self):
        for informer in self.informers.values():
            informer.stop()

    def join(self, timeout: float=None):
        for informer in self.informers.values():
            informer.join(timeout)

    def has_synced(self) -> bool:
        return all(informer.has_synced() for informer in self.informers.values())

    def status(self) -> typing.Dict[str, typing.Dict]:
        return {
            kind: {"synced": informer.has_synced(), "items": len(informer.indexer)}
            for kind, informer in self.informers.items()
        }
