import threading
import time
from flask import url_for


_lock = threading.Lock()
_last = 0


def next_token() -> int:
    """Strictly increasing per process, even if the wall clock steps back."""
    global _last
    with _lock:
        _last = max(_last + 1, time.time_ns() // 1_000_000)
        return _last


def cache_busted_url(location_id) -> str:
    token = next_token()
    try:
        return url_for("images.serve_image", location_id=location_id, t=token)
    except RuntimeError:
        # Outside a request (jobs, scripts) we return the relative path
        return f"/api/locations/{location_id}/image?t={token}"
