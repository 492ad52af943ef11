import concurrent.futures
import logging
import typing

import cleaner
import item


class NodeEventHandler:
    def __init__(self, node_cleaner: cleaner.Cleaner):
        self.handle_func = {
            "ADDED": self.event_add,
            "MODIFIED": self.event_modify,
            "DELETED": self.event_delete,
        }
        self.cleaner = node_cleaner

    def handle(self, event: typing.Dict):
        event_type = event["type"]
        node = event["object"]
        if event_type not in self.handle_func:
            return
        logging.debug(f"[Reaper]{event_type} event: node {node.name}")
        self.handle_func[event_type](node)

    def event_add(self, node: item.NodeItem):
        pass

    def event_modify(self, node: item.NodeItem):
        pass

    def event_delete(self, node: item.NodeItem):
        logging.info(f"[Reaper]Node {node.name} deleted.")
        self.on_node_removed(node.name)

    def on_node_removed(self, name: str) -> concurrent.futures.Future: #returns at once, the watch stream must not wait for deletes
        future = self.cleaner.submit_node(name)
        future.add_done_callback(lambda f: self._report(name, f))
        return future

    @staticmethod
    def _report(name: str, future: concurrent.futures.Future):
        if future.cancelled():
            logging.warning(f"[Reaper]Cleanup of node {name} was cancelled.")
            return
        e = future.exception()
        if e is not None:
            logging.error(f"[Reaper]Cleanup of node {name} failed: {e!r}")
