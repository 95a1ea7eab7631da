"""Debug utility for Bundle Registry.

Provides a single debug() function that can be toggled via the
BUNDLE_REGISTRY_DEBUG environment variable. Used for low-level filesystem
tracing where a structured log event would be too noisy.

Usage:
    from bundle_registry.utils.debug import debug

    debug("Copied prompt file")
    debug(f"Pruned {count} directories")

Environment:
    BUNDLE_REGISTRY_DEBUG: Set to '1', 'true', 'yes' (case-insensitive) to
                           enable debug output. Any other value or unset
                           disables it.
"""

import os
import sys
from typing import Any

# Determine if debug mode is enabled at module import time
_DEBUG_ENABLED = os.environ.get("BUNDLE_REGISTRY_DEBUG", "").lower() in (
    "1",
    "true",
    "yes",
)


def debug(msg: Any) -> None:
    """Print debug message if BUNDLE_REGISTRY_DEBUG is enabled.

    Args:
        msg: Message to print. Will be converted to string.

    Note:
        The environment variable is read at module import time. Changing it
        after import has no effect unless the module is reloaded.
    """
    if _DEBUG_ENABLED:
        print(f"[DEBUG] {msg}", file=sys.stdout)
