from .registry import ActionSpec, action, invoke, registered, resolve, validate_step

# built-in actions register themselves on import
from . import artifacts, cache, checkout, pages  # noqa: E402,F401

__all__ = ["ActionSpec", "action", "invoke", "registered", "resolve", "validate_step"]
