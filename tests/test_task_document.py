from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from conftest import make_task_document
from ralph_dispatch.queue.contracts import (
    TASK_DOCUMENT_FILENAME,
    read_task_document,
    task_document_from_dict,
    validate_task_document,
    write_task_document,
)
from ralph_dispatch.queue.errors import ReconciliationSkip, ValidationError

pytestmark = [
    allure.epic("Job Queue"),
    allure.feature("Task Document Contract"),
]


def _valid_payload() -> dict[str, object]:
    return make_task_document().to_dict()


def test_valid_document_has_no_errors() -> None:
    assert validate_task_document(_valid_payload()) == []


def test_wire_keys_are_camel_case() -> None:
    payload = _valid_payload()

    assert set(payload) == {"project", "branchName", "description", "userStories"}
    story = payload["userStories"][0]
    assert story["id"] == "US-001"
    assert story["acceptanceCriteria"] == ["criterion 1"]
    assert story["passes"] is False
    assert story["notes"] == ""


def test_optional_story_fields_default() -> None:
    payload = _valid_payload()
    for story in payload["userStories"]:
        del story["passes"]
        del story["notes"]

    document = task_document_from_dict(payload)

    assert all(story.passes is False for story in document.user_stories)
    assert all(story.notes == "" for story in document.user_stories)


@pytest.mark.parametrize(
    ("mutate", "expected_path"),
    [
        (lambda doc: doc.update(project=""), "project"),
        (lambda doc: doc.update(branchName="feature/demo"), "branchName"),
        (lambda doc: doc.update(branchName="ralph/Upper"), "branchName"),
        (lambda doc: doc.update(userStories=[]), "userStories"),
        (lambda doc: doc["userStories"][0].update(id="US-1"), "userStories[0].id"),
        (lambda doc: doc["userStories"][0].update(title=""), "userStories[0].title"),
        (lambda doc: doc["userStories"][0].update(title="x" * 201), "userStories[0].title"),
        (
            lambda doc: doc["userStories"][0].update(acceptanceCriteria=[]),
            "userStories[0].acceptanceCriteria",
        ),
        (lambda doc: doc["userStories"][0].update(priority=0), "userStories[0].priority"),
        (lambda doc: doc["userStories"][0].update(priority=True), "userStories[0].priority"),
        (lambda doc: doc["userStories"][1].update(id="US-001"), "userStories[1].id"),
    ],
)
def test_invalid_fields_are_reported(mutate, expected_path: str) -> None:
    payload = _valid_payload()
    mutate(payload)

    errors = validate_task_document(payload)

    assert [error.path for error in errors] == [expected_path]


def test_story_id_rejects_trailing_newline() -> None:
    payload = _valid_payload()
    payload["userStories"][0]["id"] = "US-001\n"

    assert [error.path for error in validate_task_document(payload)] == ["userStories[0].id"]


def test_from_dict_raises_with_all_field_errors() -> None:
    payload = _valid_payload()
    payload["project"] = ""
    payload["branchName"] = "main"

    with pytest.raises(ValidationError) as excinfo:
        task_document_from_dict(payload)

    assert {error.path for error in excinfo.value.errors} == {"project", "branchName"}


def test_write_then_read_workspace_file(tmp_path: Path) -> None:
    document = make_task_document()

    path = write_task_document(tmp_path, document)

    assert path == tmp_path / TASK_DOCUMENT_FILENAME
    assert json.loads(path.read_text("utf-8"))["branchName"] == "ralph/demo-feature"
    assert read_task_document(tmp_path) == document


def test_read_missing_file_is_reconciliation_skip(tmp_path: Path) -> None:
    with pytest.raises(ReconciliationSkip):
        read_task_document(tmp_path)


def test_read_malformed_json_is_reconciliation_skip(tmp_path: Path) -> None:
    (tmp_path / TASK_DOCUMENT_FILENAME).write_text("{not json", "utf-8")

    with pytest.raises(ReconciliationSkip, match="invalid JSON"):
        read_task_document(tmp_path)


def test_read_schema_violation_is_reconciliation_skip(tmp_path: Path) -> None:
    payload = _valid_payload()
    payload["userStories"] = []
    (tmp_path / TASK_DOCUMENT_FILENAME).write_text(json.dumps(payload), "utf-8")

    with pytest.raises(ReconciliationSkip, match="userStories"):
        read_task_document(tmp_path)


def test_read_non_utf8_file_is_reconciliation_skip(tmp_path: Path) -> None:
    (tmp_path / TASK_DOCUMENT_FILENAME).write_bytes(b"\xff\xfe{not utf8")

    with pytest.raises(ReconciliationSkip, match="Cannot read"):
        read_task_document(tmp_path)


def test_read_deeply_nested_json_is_reconciliation_skip(tmp_path: Path) -> None:
    (tmp_path / TASK_DOCUMENT_FILENAME).write_text("[" * 200_000 + "]" * 200_000, "utf-8")

    with pytest.raises(ReconciliationSkip, match="nested too deeply"):
        read_task_document(tmp_path)
