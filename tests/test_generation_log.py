import threading

from generation_log import GenerationLogStore
from schemas import BatchLogRecord, PromptLogEntry


def make_record(batch_id, questions_generated=0):
    return BatchLogRecord(
        id=batch_id,
        timestamp="2025-01-01T00:00:00+00:00",
        mode="ollama",
        model="gemma3:latest",
        question_type_counts={"MCQ": 1},
        total_elapsed_seconds=1.5,
        questions_generated=questions_generated,
        questions=[],
        prompts=[PromptLogEntry(question_type="MCQ", prompt="p", response="r", elapsed_seconds=1.5)],
        source_text="source",
    )


def test_empty_store_lists_nothing(log_store):
    assert log_store.list_all() == []
    assert log_store.find_by_id("missing") is None


def test_records_are_appended_in_order(log_store):
    log_store.append(make_record("a"))
    log_store.append(make_record("b"))

    assert [r.id for r in log_store.list_all()] == ["a", "b"]
    assert log_store.find_by_id("b").prompts[0].response == "r"


def test_one_line_per_record(log_store):
    log_store.append(make_record("a"))
    log_store.append(make_record("b"))

    lines = log_store.path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert lines[0].startswith('{"id":"a"')


def test_unreadable_lines_are_skipped(log_store):
    log_store.append(make_record("a"))
    with open(log_store.path, "a", encoding="utf-8") as f:
        f.write("{not json\n\n")
    log_store.append(make_record("b"))

    assert [r.id for r in log_store.list_all()] == ["a", "b"]


def test_clear_removes_everything(log_store):
    log_store.append(make_record("a"))
    log_store.clear()

    assert log_store.count() == 0
    log_store.clear()


def test_store_reopens_existing_file(tmp_path):
    path = str(tmp_path / "log.jsonl")
    GenerationLogStore(path).append(make_record("a"))

    assert GenerationLogStore(path).find_by_id("a") is not None


def test_concurrent_appends_do_not_interleave(log_store):
    threads = [threading.Thread(target=log_store.append, args=(make_record(f"batch-{i}"),)) for i in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(r.id for r in log_store.list_all()) == sorted(f"batch-{i}" for i in range(20))
