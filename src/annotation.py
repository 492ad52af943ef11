import typing

PROVISIONER_KEY = "volume.kubernetes.io/storage-provisioner"
SELECTED_NODE_KEY = "volume.kubernetes.io/selected-node"
EXPECTED_PROVISIONER = "rancher.io/local-path"


def is_owned(annotations: typing.Optional[typing.Dict[str, str]], key: str=PROVISIONER_KEY, expected: str=EXPECTED_PROVISIONER) -> bool:
    if not annotations:
        return False
    return annotations.get(key) == expected

def selected_node(annotations: typing.Optional[typing.Dict[str, str]], key: str=SELECTED_NODE_KEY) -> str: #"" means unanchored
    if not annotations:
        return ""
    return annotations.get(key) or ""

class AnnotationFilter:
    """Scopes every action to the objects created by one provisioner."""

    def __init__(self, provisioner_key: str=None, selected_node_key: str=None, expected_provisioner: str=None):
        self.provisioner_key = provisioner_key or PROVISIONER_KEY
        self.selected_node_key = selected_node_key or SELECTED_NODE_KEY
        self.expected_provisioner = expected_provisioner or EXPECTED_PROVISIONER

    def is_owned(self, annotations: typing.Optional[typing.Dict[str, str]]) -> bool:
        return is_owned(annotations, key=self.provisioner_key, expected=self.expected_provisioner)

    def anchor_node(self, annotations: typing.Optional[typing.Dict[str, str]]) -> str:
        return selected_node(annotations, key=self.selected_node_key)
