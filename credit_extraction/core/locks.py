"""Per-document locking utilities.

Status changes and entity replacement for one document are applied under the
same lock so readers never observe entities from two extraction runs at once.
Locks are in-process; a multi-worker deployment needs a shared lock such as
a database row lock around the same sections.
"""

from __future__ import annotations

from contextlib import contextmanager
import threading
from typing import Dict, List

# document_id -> [RLock, number of threads holding or waiting on it]
_locks: Dict[str, List] = {}
_master_lock = threading.Lock()


@contextmanager
def document_lock(document_id: str):
    """Context manager acquiring a re-entrant lock for ``document_id``.

    An entry lives only while some thread holds or waits on it, so deleted
    documents do not leave locks behind.
    """
    with _master_lock:
        entry = _locks.setdefault(document_id, [threading.RLock(), 0])
        entry[1] += 1
    lock = entry[0]
    lock.acquire()
    try:
        yield
    finally:
        lock.release()
        with _master_lock:
            entry[1] -= 1
            if entry[1] == 0 and _locks.get(document_id) is entry:
                del _locks[document_id]
