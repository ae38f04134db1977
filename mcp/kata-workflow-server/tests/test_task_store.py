"""
Tests for the file-backed task store

Run with: pytest tests/test_task_store.py -v
"""

import json
import pytest
from pathlib import Path

import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from kata_workflow_server.errors import NotFoundError, StoreError
from kata_workflow_server.task_store import (
    FileTaskStore,
    Task,
    TaskStatus,
    parse_status,
)


@pytest.fixture
def store(tmp_path):
    return FileTaskStore(tmp_path / "tasks", "S1")


class TestCreate:

    def test_ids_are_sequential(self, store):
        first = store.create("one", workflow_id="WF-1")
        second = store.create("two", workflow_id="WF-1", depends_on=[first])

        assert (first, second) == ("1", "2")
        assert store.get(second).depends_on == ("1",)

    def test_new_task_is_open(self, store):
        task_id = store.create("one", workflow_id="WF-1", description="details")
        task = store.get(task_id)

        assert task.status is TaskStatus.OPEN
        assert task.workflow_id == "WF-1"
        assert task.description == "details"
        assert task.created_at is not None

    def test_file_layout(self, store, tmp_path):
        store.create("one", workflow_id="WF-1", metadata={"phase": "p0"})
        data = json.loads((tmp_path / "tasks" / "S1" / "1.json").read_text())

        assert data["workflowId"] == "WF-1"
        assert data["status"] == "open"
        assert data["metadata"] == {"phase": "p0"}

    def test_unwritable_root_is_store_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        store = FileTaskStore(blocker, "S1")
        with pytest.raises(StoreError) as exc:
            store.create("x", workflow_id="WF-1")
        assert exc.value.operation == "create"


class TestUpdate:

    def test_status_change(self, store):
        task_id = store.create("one", workflow_id="WF-1")
        task = store.update(task_id, status=TaskStatus.CLOSED)

        assert task.status is TaskStatus.CLOSED
        assert store.status(task_id) is TaskStatus.CLOSED

    def test_missing_task(self, store):
        with pytest.raises(NotFoundError):
            store.update("99", status=TaskStatus.CLOSED)

    def test_non_numeric_id(self, store):
        with pytest.raises(NotFoundError):
            store.get("../1")


class TestList:

    def test_filters_by_workflow(self, store):
        store.create("a", workflow_id="WF-1")
        store.create("b", workflow_id="WF-2")
        store.create("c", workflow_id="WF-1")

        assert [t.title for t in store.list(workflow_id="WF-1")] == ["a", "c"]

    def test_numeric_order(self, store):
        for i in range(11):
            store.create(f"t{i}", workflow_id="WF-1")
        ids = [t.id for t in store.list(workflow_id="WF-1")]
        assert ids == [str(i) for i in range(1, 12)]

    def test_empty_when_no_directory(self, store):
        assert store.list(workflow_id="WF-1") == []

    def test_skips_agent_tasks_without_workflow(self, store):
        store.create("ours", workflow_id="WF-1")
        (store.task_dir / "2.json").write_text(json.dumps({"id": "2", "subject": "agent note", "status": "pending"}))

        assert [t.title for t in store.list(workflow_id="WF-1")] == ["ours"]

    def test_reads_native_task_format(self, store):
        store.task_dir.mkdir(parents=True)
        (store.task_dir / "1.json").write_text(json.dumps({
            "id": "1",
            "subject": "Native task",
            "status": "in_progress",
            "blockedBy": [],
            "metadata": {"workflowId": "WF-1"},
        }))

        [task] = store.list(workflow_id="WF-1")
        assert task.title == "Native task"
        assert task.status is TaskStatus.IN_PROGRESS

    def test_malformed_file_is_store_error(self, store):
        store.task_dir.mkdir(parents=True)
        (store.task_dir / "1.json").write_text("{oops")

        with pytest.raises(StoreError) as exc:
            store.list(workflow_id="WF-1")
        assert exc.value.operation == "list"
        assert "1.json" in str(exc.value)

    def test_non_object_metadata_is_store_error(self, store):
        store.create("ours", workflow_id="WF-1")
        (store.task_dir / "2.json").write_text(json.dumps({"id": "2", "subject": "agent note", "metadata": "x"}))

        with pytest.raises(StoreError) as exc:
            store.list(workflow_id="WF-1")
        assert exc.value.operation == "list"
        assert "2.json" in str(exc.value)

    def test_get_non_object_metadata_is_store_error(self, store):
        store.task_dir.mkdir(parents=True)
        (store.task_dir / "1.json").write_text(json.dumps({"id": "1", "workflowId": "WF-1", "metadata": ["x"]}))

        with pytest.raises(StoreError, match="metadata"):
            store.get("1")


class TestStatus:

    @pytest.mark.parametrize("raw, expected", [
        ("open", TaskStatus.OPEN),
        ("pending", TaskStatus.OPEN),
        ("in-progress", TaskStatus.IN_PROGRESS),
        ("in_progress", TaskStatus.IN_PROGRESS),
        ("completed", TaskStatus.CLOSED),
        ("Closed", TaskStatus.CLOSED),
    ])
    def test_aliases(self, raw, expected):
        assert parse_status(raw) is expected

    def test_unknown_status(self):
        with pytest.raises(ValueError):
            parse_status("stalled")

    def test_task_without_workflow_rejected(self):
        with pytest.raises(ValueError):
            Task.from_dict({"id": "1", "title": "x"})
