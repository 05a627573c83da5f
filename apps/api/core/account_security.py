"""
Sign-in lockout.

Tracks failed password sign-ins per email and refuses further attempts for
a while once too many failures pile up inside the window. In-memory and
per-process; the credential directory consults it before checking a hash.
"""
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
import threading

MAX_FAILED_ATTEMPTS = 5
LOCKOUT_DURATION_MINUTES = 15
ATTEMPT_WINDOW_MINUTES = 30

# {normalized email: [failure timestamps]}
_failed_attempts: Dict[str, List[datetime]] = {}
_lock = threading.Lock()


def _key(email: str) -> str:
    return (email or "").strip().lower()


def _recent_failures(key: str, now: datetime) -> List[datetime]:
    cutoff = now - timedelta(minutes=ATTEMPT_WINDOW_MINUTES)
    recent = [ts for ts in _failed_attempts.get(key, []) if ts > cutoff]
    if recent:
        _failed_attempts[key] = recent
    else:
        _failed_attempts.pop(key, None)
    return recent


def record_login_attempt(email: str, success: bool) -> None:
    """A success wipes the failure history for the email."""
    key = _key(email)
    now = datetime.now(timezone.utc)
    with _lock:
        if success:
            _failed_attempts.pop(key, None)
            return
        _recent_failures(key, now)
        _failed_attempts.setdefault(key, []).append(now)


def is_account_locked(email: str) -> Tuple[bool, Optional[int]]:
    """
    Returns:
        Tuple of (is_locked, seconds_until_unlock or None)
    """
    now = datetime.now(timezone.utc)
    with _lock:
        failures = _recent_failures(_key(email), now)
        if len(failures) < MAX_FAILED_ATTEMPTS:
            return False, None
        lockout_end = max(failures) + timedelta(minutes=LOCKOUT_DURATION_MINUTES)
        if now < lockout_end:
            return True, int((lockout_end - now).total_seconds())
        return False, None

