import pytest

from keiyaku.editor.history import HistoryManager, HistoryRecorder


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def test_undo_redo_walkthrough():
    history = HistoryManager()
    history.initialize("A")
    history.push("B")
    history.push("C")

    assert history.undo() == "B"
    assert history.undo() == "A"
    assert history.undo() is None
    assert history.redo() == "B"

    # A new push drops the redo branch
    history.push("D")
    assert not history.can_redo()
    assert history.redo() is None
    assert history.undo() == "B"
    assert history.undo() == "A"
    assert not history.can_undo()


def test_initial_state():
    history = HistoryManager()
    assert history.current is None
    assert history.current_index == -1
    assert not history.can_undo()
    assert not history.can_redo()

    history.initialize("A")
    assert history.current == "A"
    assert history.current_index == 0
    assert not history.can_undo()


def test_capacity_evicts_oldest():
    history = HistoryManager(capacity=3)
    history.initialize("s0")
    for i in range(1, 6):
        history.push(f"s{i}")

    assert len(history) == 3
    assert history.current == "s5"
    assert history.current_index == 2
    assert history.undo() == "s4"
    assert history.undo() == "s3"
    assert history.undo() is None


def test_push_after_undo_at_capacity():
    history = HistoryManager(capacity=3)
    history.initialize("a")
    history.push("b")
    history.push("c")
    history.undo()
    history.undo()
    history.push("x")

    assert len(history) == 2
    assert history.current == "x"
    assert history.undo() == "a"


def test_clear():
    history = HistoryManager()
    history.initialize("A")
    history.push("B")
    history.clear()
    assert len(history) == 0
    assert history.current is None
    assert not history.can_undo()


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        HistoryManager(capacity=0)


def test_recorder_coalesces_keystrokes():
    clock = FakeClock()
    history = HistoryManager()
    history.initialize("")
    recorder = HistoryRecorder(history, wait=0.5, clock=clock)

    for state in ("甲", "甲は", "甲は支払う"):
        recorder.record(state)
        clock.advance(0.1)
        assert not recorder.poll()

    clock.advance(0.5)
    assert recorder.poll()
    assert len(history) == 2
    assert history.current == "甲は支払う"
    assert not recorder.has_pending
    assert not recorder.poll()


def test_recorder_skips_unchanged_state():
    history = HistoryManager()
    history.initialize("A")
    recorder = HistoryRecorder(history)
    recorder.record("A")
    assert not recorder.flush()
    assert len(history) == 1


def test_composition_records_only_the_committed_text():
    clock = FakeClock()
    history = HistoryManager()
    history.initialize("")
    recorder = HistoryRecorder(history, wait=0.5, clock=clock)

    recorder.record("本")
    recorder.begin_composition()
    # Flushed on entry
    assert history.current == "本"
    assert recorder.composing

    for state in ("本k", "本けい", "本契"):
        recorder.record(state)
        clock.advance(1.0)
        assert not recorder.poll()

    assert recorder.end_composition("本契約")
    assert not recorder.composing
    assert [history.undo(), history.undo()] == ["本", ""]


def test_cancelled_composition_records_nothing():
    history = HistoryManager()
    history.initialize("A")
    recorder = HistoryRecorder(history)

    recorder.begin_composition()
    recorder.record("Aか")
    assert not recorder.end_composition(None)
    assert len(history) == 1
    assert not recorder.has_pending
