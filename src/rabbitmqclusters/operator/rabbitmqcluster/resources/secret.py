from typing import Any, Dict

from ....crds.rabbitmqcluster import ClusterIdentity
from .common import SUFFIX_DEFAULT_USER, child_metadata

USERNAME_KEY = "username"
PASSWORD_KEY = "password"


def build_default_user_secret(identity: ClusterIdentity) -> Dict[str, Any]:
    """
    Builds the default-user Secret without its data.

    Credentials are random and therefore not part of the desired state; the
    credential provisioner fills them in when the Secret is first created.
    """
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": child_metadata(identity, SUFFIX_DEFAULT_USER),
        "type": "Opaque",
    }
