"""
Unit tests for per-document locks.
"""

import threading

import pytest

from content_flow.core.locking import DocumentLocks


class TestDocumentLocks:

    def setup_method(self):
        self.locks = DocumentLocks()

    def test_entry_dropped_after_release(self):
        with self.locks.hold("doc-1"):
            assert len(self.locks) == 1

        assert len(self.locks) == 0

    def test_entry_dropped_when_body_raises(self):
        with pytest.raises(RuntimeError):
            with self.locks.hold("doc-1"):
                raise RuntimeError("boom")

        assert len(self.locks) == 0

    def test_many_documents_do_not_accumulate(self):
        for i in range(1000):
            with self.locks.hold(f"doc-{i}"):
                pass

        assert len(self.locks) == 0

    def test_same_document_is_exclusive(self):
        entered = threading.Event()
        order = []

        def second():
            entered.wait()
            with self.locks.hold("doc-1"):
                order.append("second")

        thread = threading.Thread(target=second)
        thread.start()
        with self.locks.hold("doc-1"):
            entered.set()
            thread.join(timeout=0.2)
            assert thread.is_alive()
            order.append("first")
        thread.join()

        assert order == ["first", "second"]
        assert len(self.locks) == 0

    def test_different_documents_run_in_parallel(self):
        with self.locks.hold("doc-1"):
            done = threading.Event()

            def other():
                with self.locks.hold("doc-2"):
                    done.set()

            thread = threading.Thread(target=other)
            thread.start()
            assert done.wait(timeout=1)
            thread.join()
