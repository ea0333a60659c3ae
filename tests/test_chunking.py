from datetime import datetime, timedelta

import pytest

from sellerledger.services.sync_orchestrator import SyncOrchestrator, build_date_chunks, clamp_days_back

END = datetime(2024, 3, 31, 11, 58, 0)


def test_chunks_tile_the_window_newest_first():
    chunks = build_date_chunks(END, 95, chunk_days=30)

    assert len(chunks) == 4
    assert chunks[0].end == END
    assert chunks[-1].start == END - timedelta(days=95)
    for newer, older in zip(chunks, chunks[1:]):
        assert older.end == newer.start
    assert all(chunk.end - chunk.start <= timedelta(days=30) for chunk in chunks)
    assert chunks[-1].end - chunks[-1].start == timedelta(days=5)


def test_short_window_is_a_single_chunk():
    [chunk] = build_date_chunks(END, 7)
    assert chunk.start == END - timedelta(days=7)
    assert chunk.end == END


def test_exact_multiple_has_no_empty_chunk():
    chunks = build_date_chunks(END, 60, chunk_days=30)
    assert len(chunks) == 2
    assert chunks[-1].start == END - timedelta(days=60)


def test_chunk_days_must_be_positive():
    with pytest.raises(ValueError):
        build_date_chunks(END, 10, chunk_days=0)


def test_days_back_is_clamped_to_retention():
    assert clamp_days_back(1000, 729) == 729
    assert clamp_days_back(45, 729) == 45
    with pytest.raises(ValueError):
        clamp_days_back(0, 729)


def test_orchestrator_window_ends_before_now():
    now = datetime(2024, 3, 31, 12, 0, 0)
    orchestrator = SyncOrchestrator(clock=lambda: now, client_factory=lambda account: None)

    chunks = orchestrator._window(1000)

    assert chunks[0].end == now - timedelta(minutes=2)
    assert chunks[-1].start == chunks[0].end - timedelta(days=729)
    assert len(chunks) == 25
