import threading
import time

from credit_extraction.core import locks
from credit_extraction.core.locks import document_lock


def test_lock_entry_is_dropped_after_last_release():
    with document_lock("doc-locks"):
        with document_lock("doc-locks"):
            assert "doc-locks" in locks._locks
        assert "doc-locks" in locks._locks
    assert "doc-locks" not in locks._locks


def test_waiting_thread_keeps_lock_alive():
    entered = threading.Event()
    order = []

    def waiter():
        entered.set()
        with document_lock("doc-wait"):
            order.append("waiter")

    with document_lock("doc-wait"):
        thread = threading.Thread(target=waiter, daemon=True)
        thread.start()
        entered.wait(5)
        for _ in range(200):
            if locks._locks["doc-wait"][1] == 2:
                break
            time.sleep(0.005)
        order.append("holder")
    thread.join(5)

    assert order == ["holder", "waiter"]
    assert "doc-wait" not in locks._locks


def test_deleting_a_document_leaves_no_lock(memory_store):
    memory_store.delete_document("doc-1")
    assert "doc-1" not in locks._locks
