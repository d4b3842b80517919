"""Unit tests for the processing guard."""

from __future__ import annotations

import threading

from canvas_personas.workflow.guard import ProcessingGuard


def test_concurrent_claims_succeed_exactly_once() -> None:
    guard = ProcessingGuard()
    barrier = threading.Barrier(16)
    results: list[bool] = []
    lock = threading.Lock()

    def claim() -> None:
        barrier.wait()
        won = guard.try_claim("note-1")
        with lock:
            results.append(won)

    threads = [threading.Thread(target=claim) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 1
    assert results.count(False) == 15


def test_release_is_idempotent() -> None:
    guard = ProcessingGuard()

    guard.release("never-claimed")
    assert guard.try_claim("x")
    guard.release("x")
    guard.release("x")
    guard.release("x")

    assert not guard.is_claimed("x")
    assert guard.try_claim("x")


def test_claimed_context_releases_only_its_own_claim() -> None:
    guard = ProcessingGuard()

    with guard.claimed("x") as first:
        assert first
        with guard.claimed("x") as second:
            assert not second
        assert guard.is_claimed("x")
    assert not guard.is_claimed("x")


def test_claimed_context_releases_on_error() -> None:
    guard = ProcessingGuard()

    try:
        with guard.claimed("x"):
            raise RuntimeError("boom")
    except RuntimeError:
        pass

    assert not guard.is_claimed("x")
