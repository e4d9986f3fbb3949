"""Known Testkube Cloud instances and their host aliases."""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass

DEFAULT_INSTANCE = "app.testkube.io"

# REST path suffixes probed, in order, when connecting to a self-hosted API.
KNOWN_SUFFIXES: Sequence[str] = ("", "/v1", "/results/v1")


@dataclass(frozen=True, kw_only=True)
class KnownInstance:
    """Base URLs of a hosted Testkube instance."""

    api: str
    ws: str
    dashboard: str


INSTANCE_ALIASES: Mapping[str, str] = {
    "api.testkube.io": "app.testkube.io",
    "api.testkube.xyz": "app.testkube.xyz",
    "api.testkube.dev": "app.testkube.dev",
    # Legacy cloud hostnames
    "cloud.testkube.io": "app.testkube.io",
    "cloud.testkube.xyz": "app.testkube.xyz",
    "cloud.testkube.dev": "app.testkube.dev",
}

KNOWN_INSTANCES: Mapping[str, KnownInstance] = {
    f"app.testkube.{tld}": KnownInstance(
        api=f"https://api.testkube.{tld}",
        ws=f"wss://websockets.testkube.{tld}",
        dashboard=f"https://app.testkube.{tld}",
    )
    for tld in ("io", "xyz", "dev")
}


def detect_instance(host: str) -> KnownInstance | None:
    """Find the hosted instance a host (or one of its aliases) belongs to."""
    return KNOWN_INSTANCES.get(INSTANCE_ALIASES.get(host, host))
