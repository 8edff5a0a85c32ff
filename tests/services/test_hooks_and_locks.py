"""
Tests for post-commit hooks and per-invoice locks.

Covers:
- Hooks run inline or on the pool; failures are logged, not raised
- Finished hooks are dropped without an explicit drain
- One holder per invoice key; different invoices never contend
- Lock entries disappear once nobody holds or waits for them
"""

import threading
import time

import pytest

from billing_services.hooks import HookDispatcher, PostCommitHook
from billing_services.invoice_service import InvoiceService
from billing_services.locks import InvoiceLockRegistry


class TestHookDispatcher:
    def test_synchronous_runs_inline(self):
        seen = []
        HookDispatcher(synchronous=True).dispatch(
            [PostCommitHook("record", seen.append, args=(1,)), PostCommitHook("record", seen.append, args=(2,))]
        )
        assert seen == [1, 2]

    def test_pool_drain(self):
        seen = []
        dispatcher = HookDispatcher(max_workers=2)
        try:
            dispatcher.dispatch([PostCommitHook("record", seen.append, args=(n,)) for n in range(5)])
            dispatcher.drain(timeout=5)
        finally:
            dispatcher.shutdown()
        assert sorted(seen) == [0, 1, 2, 3, 4]

    def test_finished_hooks_are_not_retained(self):
        done = threading.Semaphore(0)
        dispatcher = HookDispatcher(max_workers=2)
        try:
            for _ in range(200):
                dispatcher.dispatch([PostCommitHook("record", done.release)])
            for _ in range(200):
                assert done.acquire(timeout=5)

            deadline = time.monotonic() + 5
            while dispatcher.pending_count and time.monotonic() < deadline:
                time.sleep(0.01)
            assert dispatcher.pending_count == 0
        finally:
            dispatcher.shutdown()

    def test_running_hook_is_pending_until_done(self):
        release = threading.Event()
        dispatcher = HookDispatcher(max_workers=1)
        try:
            dispatcher.dispatch([PostCommitHook("blocked", release.wait, args=(5,))])
            assert dispatcher.pending_count == 1
            release.set()
            dispatcher.drain(timeout=5)
            assert dispatcher.pending_count == 0
        finally:
            release.set()
            dispatcher.shutdown()

    def test_service_defaults_to_pool(self, session_factory):
        service = InvoiceService(session_factory)
        try:
            assert service._dispatcher._executor is not None
        finally:
            service._dispatcher.shutdown()

    def test_failure_logged_and_others_still_run(self, captured_logs):
        seen = []

        def fail():
            raise ValueError("catalog offline")

        HookDispatcher(synchronous=True).dispatch(
            [
                PostCommitHook("product_catalog_upsert", fail),
                PostCommitHook("record", lambda value: seen.append(value), kwargs={"value": "ok"}),
            ]
        )

        assert seen == ["ok"]
        [record] = [r for r in captured_logs() if r["message"] == "post_commit_hook_failed"]
        assert record["hook"] == "product_catalog_upsert"


class TestInvoiceLockRegistry:
    def test_serializes_same_invoice(self):
        locks = InvoiceLockRegistry()
        active = []
        overlaps = []

        def work():
            with locks.hold("electronics", "inv-1"):
                active.append(1)
                if len(active) > 1:
                    overlaps.append(len(active))
                time.sleep(0.01)
                active.pop()

        threads = [threading.Thread(target=work) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert overlaps == []

    def test_different_invoices_do_not_block(self):
        locks = InvoiceLockRegistry()
        with locks.hold("electronics", "inv-1"):
            acquired = threading.Event()

            def other():
                with locks.hold("electronics", "inv-2"):
                    acquired.set()

            t = threading.Thread(target=other)
            t.start()
            assert acquired.wait(timeout=2)
            t.join()

    def test_entry_evicted_after_release(self):
        locks = InvoiceLockRegistry()
        with locks.hold("electronics", "inv-1"):
            assert len(locks) == 1
        assert len(locks) == 0

    def test_entry_kept_while_another_thread_waits(self):
        locks = InvoiceLockRegistry()
        waiting = threading.Event()
        done = threading.Event()

        def waiter():
            waiting.set()
            with locks.hold("electronics", "inv-1"):
                done.set()

        with locks.hold("electronics", "inv-1"):
            t = threading.Thread(target=waiter)
            t.start()
            assert waiting.wait(timeout=2)
            time.sleep(0.05)
            assert not done.is_set()
            assert len(locks) == 1
        t.join(timeout=2)

        assert done.is_set()
        assert len(locks) == 0

    def test_entry_evicted_when_body_raises(self):
        locks = InvoiceLockRegistry()
        with pytest.raises(RuntimeError):
            with locks.hold("electronics", "inv-1"):
                raise RuntimeError("write failed")
        assert len(locks) == 0

    def test_many_invoices_leave_nothing_behind(self):
        locks = InvoiceLockRegistry()

        def work(n):
            for _ in range(20):
                with locks.hold("electronics", f"inv-{n % 5}"):
                    pass

        threads = [threading.Thread(target=work, args=(n,)) for n in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(locks) == 0
