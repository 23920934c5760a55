# src/intuneinv/http/throttle.py
import time

# Graph retries use one fixed pause between attempts; no growth, no jitter.
FIXED_DELAY_SECONDS = 5.0
DEFAULT_MAX_ATTEMPTS = 3

def sleep_backoff(seconds: float) -> None:
    if seconds > 0:
        time.sleep(seconds)
