import json
import threading
from pathlib import Path

import pytest

from mediawall.services.corpus import ImplementedWorkCorpus
from mediawall.services.suggestions import (
    MAX_SUGGESTION_LENGTH,
    AlreadyImplementedError,
    CooldownActiveError,
    CooldownTracker,
    DuplicateSuggestionError,
    InvalidSuggestionError,
    SuggestionBacklog,
    sanitize_suggestion,
)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture()
def corpus_files(tmp_path: Path):
    history = tmp_path / "history.jsonl"
    report = tmp_path / "reports.md"
    return history, report


@pytest.fixture()
def backlog(tmp_path: Path, corpus_files) -> SuggestionBacklog:
    history, report = corpus_files
    instance = SuggestionBacklog(
        tmp_path / "suggestions.json",
        ImplementedWorkCorpus(history, report),
        now=lambda: "2024-06-01T12:00:00.000Z",
    )
    instance.ensure()
    return instance


def test_sanitize_collapses_whitespace_and_caps_length() -> None:
    assert sanitize_suggestion("  more   slow\n\tfades  ") == "more slow fades"
    assert len(sanitize_suggestion("a" * 2000)) == MAX_SUGGESTION_LENGTH


@pytest.mark.parametrize("value", ["", "   \n ", None, 42, ["text"]])
def test_sanitize_rejects_empty_or_non_text(value) -> None:
    with pytest.raises(InvalidSuggestionError):
        sanitize_suggestion(value)


def test_submit_appends_entry(backlog: SuggestionBacklog) -> None:
    live = backlog.submit("Add a night mode")

    assert [entry.to_dict() for entry in live] == [
        {"text": "Add a night mode", "timestamp": "2024-06-01T12:00:00.000Z"}
    ]
    stored = json.loads(backlog.path.read_text(encoding="utf-8"))
    assert stored["suggestions"][0]["text"] == "Add a night mode"


def test_submit_rejects_case_insensitive_duplicate(backlog: SuggestionBacklog) -> None:
    backlog.submit("Add a night mode")

    with pytest.raises(DuplicateSuggestionError) as excinfo:
        backlog.submit("  add A   NIGHT mode ")

    assert len(excinfo.value.suggestions) == 1
    assert len(backlog.list()) == 1


def test_submit_reports_already_implemented(backlog: SuggestionBacklog, corpus_files) -> None:
    _history, report = corpus_files
    report.write_text("## cycle\nImplemented: Bigger like button for phones\n", encoding="utf-8")

    with pytest.raises(AlreadyImplementedError):
        backlog.submit("bigger LIKE button")

    assert backlog.list() == []


def test_list_purges_suggestions_found_in_history(backlog: SuggestionBacklog, corpus_files) -> None:
    history, _report = corpus_files
    backlog.submit("Shuffle the playlist")
    backlog.submit("Show the clock")

    history.write_text(
        json.dumps({"summary": "Now we shuffle the playlist on every loop", "changes": []}) + "\n",
        encoding="utf-8",
    )

    remaining = [entry.text for entry in backlog.list()]

    assert remaining == ["Show the clock"]
    stored = json.loads(backlog.path.read_text(encoding="utf-8"))
    assert [entry["text"] for entry in stored["suggestions"]] == ["Show the clock"]


def test_list_skips_malformed_entries(tmp_path: Path, corpus_files) -> None:
    history, report = corpus_files
    path = tmp_path / "suggestions.json"
    path.write_text(
        json.dumps({"suggestions": ["legacy string", {"text": ""}, {"text": "Keep me", "timestamp": "t"}]}),
        encoding="utf-8",
    )
    backlog = SuggestionBacklog(path, ImplementedWorkCorpus(history, report))

    assert [entry.text for entry in backlog.list()] == ["Keep me"]


def test_corrupt_backlog_reads_as_empty(tmp_path: Path, corpus_files) -> None:
    history, report = corpus_files
    path = tmp_path / "suggestions.json"
    path.write_text("{oops", encoding="utf-8")
    backlog = SuggestionBacklog(path, ImplementedWorkCorpus(history, report))

    assert backlog.list() == []
    assert len(backlog.submit("Fresh start")) == 1


def test_cooldown_blocks_until_window_passes() -> None:
    clock = FakeClock()
    tracker = CooldownTracker(60, clock=clock)

    tracker.reserve("1.2.3.4")

    clock.now += 30
    with pytest.raises(CooldownActiveError) as excinfo:
        tracker.reserve("1.2.3.4")
    assert excinfo.value.retry_after == pytest.approx(30)

    tracker.reserve("5.6.7.8")

    clock.now += 31
    tracker.reserve("1.2.3.4")
    assert len(tracker) == 2


def test_cooldown_rejection_does_not_extend_window() -> None:
    clock = FakeClock()
    tracker = CooldownTracker(60, clock=clock)
    tracker.reserve("client")

    clock.now += 59
    with pytest.raises(CooldownActiveError):
        tracker.reserve("client")
    clock.now += 2

    tracker.reserve("client")


def test_cooldown_release_allows_immediate_retry() -> None:
    tracker = CooldownTracker(60, clock=FakeClock())
    tracker.reserve("client")

    tracker.release("client")
    tracker.release("never-seen")

    tracker.reserve("client")
    assert len(tracker) == 1


def test_cooldown_reserve_is_exclusive_across_threads() -> None:
    tracker = CooldownTracker(60, clock=FakeClock())
    outcomes = []
    lock = threading.Lock()

    def _attempt() -> None:
        try:
            tracker.reserve("same-client")
        except CooldownActiveError:
            result = "blocked"
        else:
            result = "accepted"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_attempt) for _ in range(16)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("accepted") == 1
    assert outcomes.count("blocked") == 15
