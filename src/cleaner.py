import concurrent.futures
import logging
import threading
import typing

import annotation
import index
import item
import store

STRATEGIES = ("index", "scan")


class CleanupResult:
    def __init__(self, deleted: typing.List[str]=None, failed: typing.List[str]=None):
        self.deleted = [] if deleted is None else deleted
        self.failed = [] if failed is None else failed

    def record(self, target: str, success: bool):
        (self.deleted if success else self.failed).append(target)

    def merge(self, other: "CleanupResult"):
        self.deleted.extend(other.deleted)
        self.failed.extend(other.failed)
        return self

    def __len__(self):
        return len(self.deleted) + len(self.failed)

    def __str__(self):
        return f"{len(self.deleted)} deleted, {len(self.failed)} failed"

class HandledSet:
    """Keys already acted on within one batch, shared by its worker threads."""

    def __init__(self):
        self._keys = set()
        self._lock = threading.Lock()

    def mark(self, key: str) -> bool: #False when another claim of the batch got there first
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

class Cleaner:
    """Deletes the claims, volumes and pods anchored to a removed node.

    Claims are resolved either through the claimByNode index of the claim
    store ("index") or by walking the volume store and following each owned
    volume's claimRef ("scan"). Each claim is then cleaned up as one unit of
    work on a bounded pool: claim, then its bound volume, then the pods using
    it (pods go first when ``pods_first`` is set). Every delete is best effort;
    a failure is logged and never stops the rest of the batch.
    """

    def __init__(self, agent: store.ClusterAgent, claims: index.Indexer, pods: index.Indexer=None, volumes: index.Indexer=None,
                 annotation_filter: annotation.AnnotationFilter=None, strategy: str="index", workers: int=8, node_workers: int=4,
                 delete_pods: bool=True, pods_first: bool=False):
        if strategy not in STRATEGIES:
            raise ValueError(f"unknown cleanup strategy {strategy}, expected one of {', '.join(STRATEGIES)}")
        if strategy == "scan" and volumes is None:
            raise ValueError("the scan strategy needs the volume store")
        if delete_pods and pods is None:
            raise ValueError("deleting pods needs the pod store")
        self.agent = agent
        self.claims = claims
        self.pods = pods
        self.volumes = volumes
        self.annotation_filter = annotation_filter or annotation.AnnotationFilter()
        self.strategy = strategy
        self.delete_pods = delete_pods
        self.pods_first = pods_first
        self.claim_pool = concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="reaper-claim")
        self.node_pool = concurrent.futures.ThreadPoolExecutor(max_workers=node_workers, thread_name_prefix="reaper-node")
        self._inflight = set()
        self._inflight_lock = threading.Lock()

    def volume_on_node(self, volume: item.VolumeItem, node_name: str) -> bool:
        anchor = self.annotation_filter.anchor_node(volume.annotations)
        if anchor:
            return anchor == node_name
        return node_name in volume.affinity_nodes

    def _scan_volumes(self, node_name: str) -> typing.List[item.ClaimItem]:
        claims = {}
        for volume in self.volumes.list():
            if not self.annotation_filter.is_owned(volume.annotations) or not volume.claim_key:
                continue
            if not self.volume_on_node(volume, node_name):
                continue
            claim = self.claims.get_by_key(volume.claim_key)
            if claim is None:
                logging.debug(f"[Reaper]Claim {volume.claim_key} of volume {volume.name} isn't in the store. Skip it.")
                continue
            claims[claim.key] = claim
        return [claims[key] for key in sorted(claims)]

    def claims_for_node(self, node_name: str) -> typing.List[item.ClaimItem]:
        if not node_name: #unanchored claims are indexed under ""
            return []
        if self.strategy == "index":
            return self.claims.by_index(index.CLAIM_BY_NODE, node_name)
        return self._scan_volumes(node_name)

    def cleanup_node(self, node_name: str) -> CleanupResult:
        try:
            claims = self.claims_for_node(node_name)
        except Exception as e:
            logging.exception(f"[Reaper]Fail to resolve claims of node {node_name}.\n%s", e)
            return CleanupResult()
        if not claims:
            logging.info(f"[Reaper]No claims anchored to node {node_name}.")
            return CleanupResult()
        logging.info(f"[Reaper]Cleaning up {len(claims)} claims of node {node_name}: {', '.join(claim.key for claim in claims)}")
        result = self.cleanup_claims(claims, node_name=node_name)
        logging.info(f"[Reaper]Cleanup of node {node_name} finished: {result}.")
        return result

    def cleanup_claims(self, claims: typing.Iterable[item.ClaimItem], node_name: str=None) -> CleanupResult:
        handled_pods = HandledSet() #a pod using several claims of the batch is deleted once
        futures = [self.claim_pool.submit(self.cleanup_claim, claim, node_name, handled_pods) for claim in claims]
        result = CleanupResult()
        for future in futures:
            result.merge(future.result())
        return result

    def cleanup_claim(self, claim: item.ClaimItem, node_name: str=None, handled_pods: HandledSet=None) -> CleanupResult:
        result = CleanupResult()
        if not self.annotation_filter.is_owned(claim.annotations):
            logging.debug(f"[Reaper]Claim {claim.key} isn't created by {self.annotation_filter.expected_provisioner}. Skip it.")
            return result
        node_name = node_name or self.annotation_filter.anchor_node(claim.annotations)
        with self._inflight_lock:
            if claim.key in self._inflight:
                logging.debug(f"[Reaper]Claim {claim.key} is already being cleaned up.")
                return result
            self._inflight.add(claim.key)
        try:
            if self.delete_pods and self.pods_first:
                self._cleanup_pods(claim, node_name, result, handled_pods)
            result.record(f"PersistentVolumeClaim {claim.key}", self.agent.delete_claim(claim.name, claim.namespace, node=node_name))
            if claim.volume_name:
                result.record(f"PersistentVolume {claim.volume_name}", self.agent.delete_volume(claim.volume_name, node=node_name))
            else:
                logging.debug(f"[Reaper]Claim {claim.key} isn't bound to a volume.")
            if self.delete_pods and not self.pods_first:
                self._cleanup_pods(claim, node_name, result, handled_pods)
        finally:
            with self._inflight_lock:
                self._inflight.discard(claim.key)
        return result

    def _cleanup_pods(self, claim: item.ClaimItem, node_name: str, result: CleanupResult, handled_pods: HandledSet=None):
        pods = self.pods.by_index(index.POD_BY_CLAIM, claim.key)
        if not pods:
            logging.debug(f"[Reaper]No pods use claim {claim.key}.")
        for pod in pods:
            if handled_pods is not None and not handled_pods.mark(pod.key):
                logging.debug(f"[Reaper]Pod {pod.key} is already handled in this batch.")
                continue
            result.record(f"Pod {pod.key}", self.agent.delete_pod(pod.name, pod.namespace, node=node_name))

    def submit_node(self, node_name: str) -> concurrent.futures.Future:
        return self.node_pool.submit(self.cleanup_node, node_name)

    def shutdown(self, wait: bool=True):
        self.node_pool.shutdown(wait=wait, cancel_futures=not wait)
        self.claim_pool.shutdown(wait=wait, cancel_futures=not wait)
