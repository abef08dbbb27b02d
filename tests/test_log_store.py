from __future__ import annotations

import asyncio
import os
import threading

import pytest

from caster.services import log_store as log_store_mod
from caster.services.log_store import LogStore, render_log_html


@pytest.mark.unit
async def test_capacity_keeps_most_recent(tmp_path):
    store = LogStore(tmp_path, capacity=500)
    for i in range(501):
        await store.append(f"entry {i}", "info")

    entries = store.entries
    assert len(entries) == 500
    assert entries[0].message == "entry 1"
    assert entries[-1].message == "entry 500"

    doc = store.path.read_text(encoding="utf-8")
    assert "entry 500" in doc
    assert "entry 0<" not in doc
    assert "Showing 500 latest logs (max reached)" in doc
    assert doc.rstrip().endswith("</html>")


@pytest.mark.unit
async def test_no_temp_file_left_behind(tmp_path):
    store = LogStore(tmp_path)
    await store.append("hello", "success")
    assert sorted(p.name for p in tmp_path.iterdir()) == [store.path.name]


@pytest.mark.unit
async def test_concurrent_appends_are_written_in_order(tmp_path):
    store = LogStore(tmp_path)
    await asyncio.gather(*(store.append(f"m{i}", "info") for i in range(20)))

    assert [e.message for e in store.entries] == [f"m{i}" for i in range(20)]
    assert store.writes == 20
    doc = store.path.read_text(encoding="utf-8")
    assert doc.index("m0<") < doc.index("m19<")


@pytest.mark.unit
async def test_failed_rename_keeps_previous_document(tmp_path, monkeypatch):
    store = LogStore(tmp_path)
    await store.append("first", "info")
    before = store.path.read_text(encoding="utf-8")
    real_replace = os.replace

    def _crash(src, dst):
        raise OSError("simulated crash before rename")

    monkeypatch.setattr(log_store_mod.os, "replace", _crash)
    with pytest.raises(OSError):
        await store.append("second", "info")
    assert store.path.read_text(encoding="utf-8") == before

    # The queue is not poisoned by the failed write
    monkeypatch.setattr(log_store_mod.os, "replace", real_replace)
    await store.append("third", "info")
    assert "third" in store.path.read_text(encoding="utf-8")


@pytest.mark.unit
async def test_clear_renders_empty_document(tmp_path):
    store = LogStore(tmp_path)
    await store.append("something", "error")
    await store.clear()
    assert store.entries == []
    doc = store.path.read_text(encoding="utf-8")
    assert "No log entries yet" in doc
    assert "something" not in doc


@pytest.mark.unit
def test_render_escapes_and_colours_by_level():
    from caster.types import LogEntry

    doc = render_log_html(
        [
            LogEntry("2024-01-01T10:00:00+00:00", "error", "<b>bad</b> & worse"),
            LogEntry("2024-01-01T10:00:01+00:00", "success", "done"),
        ]
    )
    assert "&lt;b&gt;bad&lt;/b&gt; &amp; worse" in doc
    assert "#ff0000" in doc and "#00ffff" in doc
    assert "Showing 2 latest logs" in doc
    assert "(max reached)" not in doc


@pytest.mark.unit
async def test_document_is_written_off_the_event_loop(tmp_path, monkeypatch):
    writer_threads: list[int] = []
    real_write = log_store_mod.atomic_write

    def _recording_write(path, content):
        writer_threads.append(threading.get_ident())
        real_write(path, content)

    monkeypatch.setattr(log_store_mod, "atomic_write", _recording_write)
    store = LogStore(tmp_path)
    await store.append("hello", "info")
    await store.clear()

    assert len(writer_threads) == 2
    assert threading.get_ident() not in writer_threads
    assert "No log entries yet" in store.path.read_text(encoding="utf-8")
