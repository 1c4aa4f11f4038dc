from __future__ import annotations
import os

HOME = os.environ.get("RELAYCI_HOME", ".relayci")
CACHE_DIR = os.environ.get("RELAYCI_CACHE_DIR", os.path.join(HOME, "cache"))
PUBLISH_DIR = os.environ.get("RELAYCI_PUBLISH_DIR", os.path.join(HOME, "pages"))
PAGES_URL = os.environ.get("RELAYCI_PAGES_URL", "")
TRUNK = os.environ.get("RELAYCI_TRUNK", "main")
CACHE_KEEP = int(os.environ.get("RELAYCI_CACHE_KEEP", "3"))


def color_mode() -> str:
    """
    Terminal colour flag: "always", "never" or "auto".

    Read on every call so tests and the CLI can flip it through the env.
    """
    value = os.environ.get("RELAYCI_COLOR", "auto").strip().lower()
    if value in ("always", "1", "true", "yes"):
        return "always"
    if value in ("never", "0", "false", "no"):
        return "never"
    return "auto"
