import os
from threading import RLock

DEFAULT_EXPO_PUSH_URL = "https://exp.host/--/api/v2/push/send"

_lock = RLock()
_state = {
    # seed from environment on boot; can be overridden at runtime
    "PUSH_ENABLED": os.getenv("PUSH_ENABLED", "1") == "1",
    "EXPO_PUSH_URL": os.getenv("EXPO_PUSH_URL", DEFAULT_EXPO_PUSH_URL).strip(),
}

def set_push_config(enabled: bool | None = None, url: str | None = None) -> None:
    with _lock:
        if enabled is not None:
            _state["PUSH_ENABLED"] = bool(enabled)
        if url is not None:
            _state["EXPO_PUSH_URL"] = (url or "").strip() or DEFAULT_EXPO_PUSH_URL

def get_push_url() -> str:
    with _lock:
        return _state.get("EXPO_PUSH_URL", DEFAULT_EXPO_PUSH_URL)

def push_enabled() -> bool:
    with _lock:
        return bool(_state.get("PUSH_ENABLED", False))
