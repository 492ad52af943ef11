import copy
import logging
import os
import signal
import sys
import threading

import kubernetes
import yaml

import annotation
import cleaner
import handler
import index
import informer
import reconcile
import server
import store
import sync

DEFAULT_CONFIG = {
    "log": {
        "filename": None, #None logs to stderr
        "filemode": "a",
        "format": None,
        "level": "INFO",
    },
    "annotations": {
        "provisioner_key": annotation.PROVISIONER_KEY,
        "selected_node_key": annotation.SELECTED_NODE_KEY,
        "expected_provisioner": annotation.EXPECTED_PROVISIONER,
    },
    "cleaner": {
        "strategy": "index",
        "workers": 8,
        "node_workers": 4,
        "delete_timeout": 10,
        "retries": 0,
        "retry_interval": 1,
        "delete_pods": True,
        "pods_first": False,
    },
    "sync": {
        "timeout": 60,
        "intersection": 0.5,
    },
    "watch": {
        "timeout_seconds": 300,
        "request_timeout": 60,
    },
    "server": {
        "enabled": True,
        "port": 7890,
    },
}


def merge_config(default: dict, override: dict) -> dict:
    merged = copy.deepcopy(default)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = value
    return merged

def load_config(filename="config.yaml"):
    if not os.path.exists(filename):
        return merge_config(DEFAULT_CONFIG, {})
    with open(filename, "r") as f:
        config = yaml.safe_load(f)
    return merge_config(DEFAULT_CONFIG, config)

def init_logger(filename=None, filemode=None, format=None, level="INFO"):
    if format is None:
        format = "%(asctime)s[%(levelname)s][%(threadName)s]: %(message)s"
    if filemode is None:
        filemode = "a"
    datefmt = "%Y/%m/%d %H:%M:%S"
    level = getattr(logging, level.upper())
    if filename is None:
        logging.basicConfig(format=format, datefmt=datefmt, level=level)
    else:
        logging.basicConfig(filename=filename, filemode=filemode, format=format, datefmt=datefmt, level=level)

def init_kubeAPI():
    kubernetes.config.load_config() #will load config file or incluster config automatically
    return kubernetes.client.CoreV1Api()

def init_informers(v1: kubernetes.client.CoreV1Api, annotation_filter: annotation.AnnotationFilter, strategy: str="index", delete_pods: bool=True,
                   timeout_seconds: int=300, request_timeout: float=60) -> informer.InformerFactory:
    factory = informer.InformerFactory(v1, timeout_seconds=timeout_seconds, request_timeout=request_timeout)
    factory.informer("node")
    factory.informer("claim", indexers={index.CLAIM_BY_NODE: index.claim_by_node_index(annotation_filter)})
    if delete_pods:
        factory.informer("pod", indexers={index.POD_BY_CLAIM: index.pod_by_claim_index})
    if strategy == "scan":
        factory.informer("volume")
    return factory

def init_cleaner(agent: store.ClusterAgent, factory: informer.InformerFactory, annotation_filter: annotation.AnnotationFilter, strategy: str="index",
                 workers: int=8, node_workers: int=4, delete_pods: bool=True, pods_first: bool=False, **kwargs) -> cleaner.Cleaner:
    def indexer_of(kind):
        return factory.informers[kind].indexer if kind in factory.informers else None
    return cleaner.Cleaner(
        agent=agent,
        claims=indexer_of("claim"),
        pods=indexer_of("pod"),
        volumes=indexer_of("volume"),
        annotation_filter=annotation_filter,
        strategy=strategy,
        workers=workers,
        node_workers=node_workers,
        delete_pods=delete_pods,
        pods_first=pods_first,
    )

def init_signal(stop: threading.Event):
    def on_signal(signum, frame):
        logging.info(f"[Reaper]Received signal {signum}, shutting down.")
        stop.set()
    signal.signal(signal.SIGTERM, on_signal)
    signal.signal(signal.SIGINT, on_signal)

def init_server(factory: informer.InformerFactory, ready: threading.Event, stop: threading.Event, enabled: bool=True, port: int=7890):
    if not enabled:
        return None
    reaper_server = server.make_server(factory, ready, port=port)
    def serve():
        server.start_server(reaper_server)
        stop.set() #shutdown path was requested
    threading.Thread(target=serve, name="reaper-server", daemon=True).start()
    return reaper_server

def quit_elegantly(factory: informer.InformerFactory, node_cleaner: cleaner.Cleaner, reaper_server=None):
    factory.stop()
    if reaper_server is not None:
        reaper_server.shutdown()
        reaper_server.server_close()
    node_cleaner.shutdown(wait=False) #in-flight deletes are bounded by their request timeout
    factory.join(timeout=5)
    logging.info("[Reaper]Reaper has been stopped.")

def main():
    reaper_config = load_config(os.environ.get("REAPER_CONFIG", "config.yaml"))
    init_logger(**reaper_config["log"])
    annotation_filter = annotation.AnnotationFilter(**reaper_config["annotations"])
    cleaner_config = reaper_config["cleaner"]

    v1 = init_kubeAPI()
    factory = init_informers(v1, annotation_filter, strategy=cleaner_config["strategy"], delete_pods=cleaner_config["delete_pods"], **reaper_config["watch"])
    agent = store.KubeAgent(v1, timeout=cleaner_config["delete_timeout"], retries=cleaner_config["retries"], retry_interval=cleaner_config["retry_interval"])
    node_cleaner = init_cleaner(agent, factory, annotation_filter, **cleaner_config)
    factory.informers["node"].add_handler(handler.NodeEventHandler(node_cleaner))

    stop = threading.Event()
    ready = threading.Event()
    init_signal(stop)
    reaper_server = init_server(factory, ready, stop, **reaper_config["server"])
    factory.start()
    try:
        sync.wait_for_cache_sync(factory, **reaper_config["sync"])
    except sync.CacheSyncError as e:
        logging.critical(f"[Reaper]{e}. Refuse to reconcile against an incomplete view.")
        quit_elegantly(factory, node_cleaner, reaper_server)
        sys.exit(1)

    reconcile.reconcile_on_startup(
        claims=factory.informers["claim"].indexer,
        nodes=factory.informers["node"].indexer,
        claim_cleaner=node_cleaner,
        annotation_filter=annotation_filter,
    )
    ready.set()
    stop.wait()
    quit_elegantly(factory, node_cleaner, reaper_server)

if __name__ == "__main__":
    main()
