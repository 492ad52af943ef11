import logging
import time
import typing

import informer


class CacheSyncError(Exception):
    def __init__(self, kinds: typing.List[str], timeout: float):
        super().__init__()
        self.kinds = kinds
        self.timeout = timeout

    def __str__(self):
        return f"Informers of {', '.join(self.kinds)} did not sync within {self.timeout}s"

def sync_template(target: object, kwargs: dict, process: typing.Callable, intersection: float=1, timeout=20) -> bool:
    time_cnt = 0
    while timeout is None or time_cnt < timeout:
        if process(**kwargs) != target:
            time.sleep(intersection)
            time_cnt += intersection
        else:
            return True
    return False

def informer_synced_sync(factory: informer.InformerFactory, intersection: float=0.5, timeout=60) -> bool:
    synced = sync_template(
        target=True,
        kwargs={},
        process=factory.has_synced,
        intersection=intersection,
        timeout=timeout
    )
    if synced:
        logging.info(f"[Reaper]Informers of {', '.join(factory.informers)} have synced.")
    else:
        logging.error("[Reaper]Fail to sync informers in the given time.")
    return synced

def wait_for_cache_sync(factory: informer.InformerFactory, intersection: float=0.5, timeout=60):
    if not informer_synced_sync(factory, intersection=intersection, timeout=timeout):
        pending = [kind for kind, informer_ in factory.informers.items() if not informer_.has_synced()]
        raise CacheSyncError(pending, timeout)
