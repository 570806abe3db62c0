import os

from slowapi import Limiter
from slowapi.util import get_remote_address

from chatcore.config.base.settings import RATE_LIMIT_SETTINGS

GENERATION_LIMIT = os.getenv("CHATCORE_GENERATION_RATE_LIMIT", RATE_LIMIT_SETTINGS["generation_limit"])


def get_limiter():
    # In-process counters unless a shared backend (e.g. redis://) is configured
    storage_uri = os.getenv("RATE_LIMIT_STORAGE_URI", RATE_LIMIT_SETTINGS["storage_uri"])
    return Limiter(
        key_func=get_remote_address,
        storage_uri=storage_uri,
        strategy="fixed-window",
    )


limiter = get_limiter()

if os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "false":
    limiter.enabled = False
