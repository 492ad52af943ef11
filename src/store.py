import abc
import logging
import time
import typing

import kubernetes
from kubernetes.client.rest import ApiException
import urllib3


class ClusterAgent(abc.ABC):
    """Write side of the cluster. Every delete is idempotent: an object that
    is already gone counts as deleted. Returns whether the object is gone."""

    @abc.abstractmethod
    def delete_claim(self, name: str, namespace: str, node: str=None) -> bool:
        pass

    @abc.abstractmethod
    def delete_volume(self, name: str, node: str=None) -> bool:
        pass

    @abc.abstractmethod
    def delete_pod(self, name: str, namespace: str, node: str=None) -> bool:
        pass

class KubeAgent(ClusterAgent):
    RETRY_STATUS = (429, 500, 502, 503, 504)

    def __init__(self, v1: kubernetes.client.CoreV1Api, timeout: float=10, retries: int=0, retry_interval: float=1):
        super().__init__()
        self.v1 = v1
        self.timeout = timeout
        self.retries = retries
        self.retry_interval = retry_interval

    def _delete(self, kind: str, target: str, node: typing.Optional[str], process: typing.Callable, **kwargs) -> bool:
        on_node = f" of node {node}" if node else ""
        attempt = 0
        while True:
            try:
                process(
                    body=kubernetes.client.V1DeleteOptions(propagation_policy="Background"),
                    _request_timeout=self.timeout,
                    **kwargs
                )
            except ApiException as e:
                if e.status == 404:
                    logging.info(f"[Reaper]{kind} {target}{on_node} is already gone.")
                    return True
                if e.status in self.RETRY_STATUS and attempt < self.retries:
                    attempt += 1
                    logging.warning(f"[Reaper]Retrying to delete {kind} {target}{on_node} ({attempt}/{self.retries}): {e.status} {e.reason}")
                    time.sleep(self.retry_interval)
                    continue
                logging.error(f"[Reaper]Fail to delete {kind} {target}{on_node}: {e.status} {e.reason}")
                return False
            except urllib3.exceptions.HTTPError as e:
                if attempt < self.retries:
                    attempt += 1
                    logging.warning(f"[Reaper]Retrying to delete {kind} {target}{on_node} ({attempt}/{self.retries}): {e}")
                    time.sleep(self.retry_interval)
                    continue
                logging.error(f"[Reaper]Fail to delete {kind} {target}{on_node}: {e}")
                return False
            else:
                logging.info(f"[Reaper]{kind} {target}{on_node} deleted.")
                return True

    def delete_claim(self, name: str, namespace: str, node: str=None) -> bool:
        return self._delete("PersistentVolumeClaim", f"{namespace}/{name}", node, self.v1.delete_namespaced_persistent_volume_claim, name=name, namespace=namespace)

    def delete_volume(self, name: str, node: str=None) -> bool:
        return self._delete("PersistentVolume", name, node, self.v1.delete_persistent_volume, name=name)

    def delete_pod(self, name: str, namespace: str, node: str=None) -> bool:
        return self._delete("Pod", f"{namespace}/{name}", node, self.v1.delete_namespaced_pod, name=name, namespace=namespace)
