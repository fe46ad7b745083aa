from __future__ import annotations

from typing import Any


def __getattr__(name: str) -> Any:
    # Resolved lazily so MAILROOM_SETTINGS_MODULE is honoured at first access.
    if name == "settings":
        from mailroom import monkay

        return monkay.settings
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
