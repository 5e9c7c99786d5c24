from __future__ import annotations

from pathlib import Path

import scorecard_import.services.progress as progress
from scorecard_import.services.progress import ProgressTracker


def test_tracker_disabled_outside_tty(monkeypatch):
    monkeypatch.setattr(progress, "is_tty_enabled", lambda: False)
    with ProgressTracker(2) as tracker:
        tracker.start_file(Path("a.xlsx"))
        tracker.finish_file(status="success")
        assert tracker.pbar is None
    assert tracker.current_file == 1


def test_tracker_drives_tqdm_in_tty(monkeypatch):
    calls = []

    class FakeBar:
        def __init__(self, **kwargs):
            calls.append(("init", kwargs["total"]))

        def set_description(self, text):
            calls.append(("desc", text))

        def update(self, n):
            calls.append(("update", n))

        def set_postfix(self, **kwargs):
            calls.append(("postfix", kwargs))

        def close(self):
            calls.append(("close",))

    monkeypatch.setattr(progress, "is_tty_enabled", lambda: True)
    monkeypatch.setattr(progress, "tqdm", FakeBar)
    with ProgressTracker(1) as tracker:
        tracker.start_file(Path("march.xlsx"))
        tracker.finish_file(status="partial")
    assert calls[0] == ("init", 1)
    assert ("desc", "Reconciling reports (march.xlsx)") in calls
    assert ("update", 1) in calls
    assert ("postfix", {"status": "partial"}) in calls
    assert calls[-1] == ("close",)
    assert tracker.pbar is None
