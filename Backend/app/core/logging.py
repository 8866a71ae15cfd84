import sys
import os
from datetime import datetime
from typing import Any, Optional


# ═══════════════════════════════════════════════════════════════════════════════
# LOG FILTERING
# ═══════════════════════════════════════════════════════════════════════════════
# Only these scopes are shown at INFO level
# Everything else is gated behind DEBUG

INFO_SCOPES = {
    "APP",          # Startup / shutdown
    "REALTIME",     # Connection lifecycle
    "AUTH",         # Token verification outcomes
    "WEBHOOK",      # Producer call sites
    "MONITORING",   # Metrics registration
}

# DEBUG-only scopes (hidden by default)
DEBUG_SCOPES = {
    "HEARTBEAT",
    "DISPATCH",
}


def debug_enabled() -> bool:
    return os.getenv("CAPYCODE_DEBUG", "false").lower() == "true"


def log(scope: str, message: str, data: Any = None, user_id: Optional[str] = None) -> None:
    """
    Unified logging function for the CapyCode backend.

    Only INFO_SCOPES are shown by default.
    Set CAPYCODE_DEBUG=true to see all scopes.
    """
    if not debug_enabled() and scope not in INFO_SCOPES:
        return

    timestamp = datetime.now().strftime("%H:%M:%S")
    prefix = f"[{timestamp}] [{scope}]"

    if user_id:
        prefix += f" [{user_id[:8]}]"

    print(f"{prefix} {message}")

    if data:
        print(f"  Data: {data}")

    sys.stdout.flush()


def log_section(scope: str, title: str) -> None:
    """
    Log a section header with visual separator.
    """
    timestamp = datetime.now().strftime("%H:%M:%S")
    print(f"\n{'='*60}")
    print(f"[{timestamp}] [{scope}] {title}")
    print(f"{'='*60}")
    sys.stdout.flush()
