"""Services package.

Keep this module lightweight: core modules import `services.logger`, so
importing `services` must not pull in the engine (which imports core back).
Heavier exports resolve lazily on first attribute access.
"""

from __future__ import annotations

import importlib

from .event_bus import EventBus, Events
from .logger import get_logger, setup_logging

__all__ = ["EventBus", "Events", "get_logger", "setup_logging"]


_LAZY_EXPORTS = {
    # Local vs durable drift comparison
    "StateVerifier": ("services.state_verifier", "StateVerifier"),
    "POSITION_TOLERANCE": ("services.state_verifier", "POSITION_TOLERANCE"),
    # Change feed -> CardStore
    "ChangeFeedMerger": ("services.change_feed_merger", "ChangeFeedMerger"),
    # Per-participant context object
    "MatrixEngine": ("services.matrix_engine", "MatrixEngine"),
    "CardView": ("services.matrix_engine", "CardView"),
}


def __getattr__(name: str):
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        module = importlib.import_module(module_name)
        value = getattr(module, attr)
        globals()[name] = value
        if name not in __all__:
            __all__.append(name)
        return value
    raise AttributeError(f"module 'services' has no attribute {name!r}")
