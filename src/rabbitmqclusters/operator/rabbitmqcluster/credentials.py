"""
Default-user credential provisioning.

The Secret is written exactly once per cluster identity. Later passes never
touch it, whatever happens to the cluster spec; if someone deletes it, a new one
with new random values is generated and every consumer has to pick up the
new credentials.
"""
import base64
import copy
import secrets
from typing import Any, Dict, Tuple

from .resources.secret import PASSWORD_KEY, USERNAME_KEY


def _b64(value: str) -> str:
    return base64.b64encode(value.encode()).decode()


def generate_credentials() -> Tuple[str, str]:
    """Returns a fresh random (username, password) pair."""
    username = f"user-{secrets.token_hex(8)}"
    password = secrets.token_urlsafe(24)
    return username, password


def provision_credentials(desired_secret: Dict[str, Any]) -> Dict[str, Any]:
    """
    Returns a copy of the desired Secret with newly generated credentials.

    The desired descriptor itself stays free of secret material so it
    remains a pure function of the cluster spec.
    """
    username, password = generate_credentials()
    body = copy.deepcopy(desired_secret)
    body["data"] = {
        USERNAME_KEY: _b64(username),
        PASSWORD_KEY: _b64(password),
    }
    return body


def read_credentials(secret: Dict[str, Any]) -> Tuple[str, str]:
    """Decodes (username, password) from a live default-user Secret."""
    data = secret.get("data") or {}
    try:
        username = base64.b64decode(data[USERNAME_KEY]).decode()
        password = base64.b64decode(data[PASSWORD_KEY]).decode()
    except (KeyError, ValueError) as e:
        raise ValueError(f"default-user Secret is missing usable credentials: {e}") from e
    return username, password
