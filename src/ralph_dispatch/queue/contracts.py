"""Task document ("PRD") contract shared with the sandbox through ``prd.json``."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ralph_dispatch.queue.errors import FieldError, ReconciliationSkip, ValidationError

TASK_DOCUMENT_FILENAME = "prd.json"
STORY_TITLE_MAX_CHARS = 200

_STORY_ID_PATTERN = re.compile(r"US-\d{3}", re.ASCII)
_BRANCH_NAME_PATTERN = re.compile(r"ralph/[a-z0-9-]+")


@dataclass(slots=True)
class UserStory:
    """One trackable requirement inside a task document."""

    story_id: str
    title: str
    description: str
    acceptance_criteria: list[str]
    priority: int
    passes: bool = False
    notes: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.story_id,
            "title": self.title,
            "description": self.description,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "priority": self.priority,
            "passes": self.passes,
            "notes": self.notes,
        }


@dataclass(slots=True)
class TaskDocument:
    """Work item handed to the sandbox and read back after the run."""

    project: str
    branch_name: str
    description: str
    user_stories: list[UserStory] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the wire keys the sandbox expects."""

        return {
            "project": self.project,
            "branchName": self.branch_name,
            "description": self.description,
            "userStories": [story.to_dict() for story in self.user_stories],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2)


def validate_task_document(raw: object) -> list[FieldError]:
    """Return field-level errors for a wire-format task document."""

    if not isinstance(raw, dict):
        return [FieldError("prd", "must be an object")]

    errors: list[FieldError] = []
    project = raw.get("project")
    if not isinstance(project, str) or not project.strip():
        errors.append(FieldError("project", "must be a non-empty string"))

    branch_name = raw.get("branchName")
    if not isinstance(branch_name, str) or _BRANCH_NAME_PATTERN.fullmatch(branch_name) is None:
        errors.append(FieldError("branchName", "must match ralph/[a-z0-9-]+"))

    if not isinstance(raw.get("description"), str):
        errors.append(FieldError("description", "must be a string"))

    stories = raw.get("userStories")
    if not isinstance(stories, list) or not stories:
        errors.append(FieldError("userStories", "must be a non-empty array"))
        return errors

    seen_ids: set[str] = set()
    for index, story in enumerate(stories):
        errors.extend(_validate_story(story, prefix=f"userStories[{index}]", seen_ids=seen_ids))
    return errors


def _validate_story(story: object, *, prefix: str, seen_ids: set[str]) -> list[FieldError]:
    if not isinstance(story, dict):
        return [FieldError(prefix, "must be an object")]

    errors: list[FieldError] = []
    story_id = story.get("id")
    if not isinstance(story_id, str) or _STORY_ID_PATTERN.fullmatch(story_id) is None:
        errors.append(FieldError(f"{prefix}.id", "must match US-NNN"))
    elif story_id in seen_ids:
        errors.append(FieldError(f"{prefix}.id", f"duplicate story id {story_id}"))
    else:
        seen_ids.add(story_id)

    title = story.get("title")
    if not isinstance(title, str) or not 1 <= len(title) <= STORY_TITLE_MAX_CHARS:
        errors.append(
            FieldError(f"{prefix}.title", f"must be 1-{STORY_TITLE_MAX_CHARS} characters"),
        )

    if not isinstance(story.get("description"), str):
        errors.append(FieldError(f"{prefix}.description", "must be a string"))

    criteria = story.get("acceptanceCriteria")
    if (
        not isinstance(criteria, list)
        or not criteria
        or not all(isinstance(item, str) for item in criteria)
    ):
        errors.append(
            FieldError(f"{prefix}.acceptanceCriteria", "must be a non-empty array of strings"),
        )

    priority = story.get("priority")
    if isinstance(priority, bool) or not isinstance(priority, int) or priority < 1:
        errors.append(FieldError(f"{prefix}.priority", "must be a positive integer"))

    if not isinstance(story.get("passes", False), bool):
        errors.append(FieldError(f"{prefix}.passes", "must be a boolean"))
    if not isinstance(story.get("notes", ""), str):
        errors.append(FieldError(f"{prefix}.notes", "must be a string"))
    return errors


def task_document_from_dict(raw: object) -> TaskDocument:
    """Validate and build a task document, raising ``ValidationError``."""

    errors = validate_task_document(raw)
    if errors:
        raise ValidationError(errors)
    assert isinstance(raw, dict)  # noqa: S101
    return TaskDocument(
        project=raw["project"],
        branch_name=raw["branchName"],
        description=raw["description"],
        user_stories=[
            UserStory(
                story_id=story["id"],
                title=story["title"],
                description=story["description"],
                acceptance_criteria=list(story["acceptanceCriteria"]),
                priority=story["priority"],
                passes=story.get("passes", False),
                notes=story.get("notes", ""),
            )
            for story in raw["userStories"]
        ],
    )


def task_document_from_json(text: str) -> TaskDocument:
    """Parse the stored/wire JSON form."""

    try:
        raw = json.loads(text)
    except json.JSONDecodeError as error:
        raise ValidationError([FieldError("prd", f"invalid JSON: {error.msg}")]) from error
    except RecursionError as error:
        raise ValidationError([FieldError("prd", "JSON nested too deeply")]) from error
    return task_document_from_dict(raw)


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), "utf-8")


def write_task_document(workspace_dir: Path, document: TaskDocument) -> Path:
    """Materialize the task document at its well-known workspace path."""

    path = workspace_dir / TASK_DOCUMENT_FILENAME
    write_json(path, document.to_dict())
    return path


def read_task_document(workspace_dir: Path) -> TaskDocument:
    """Read the task document back; any problem becomes ``ReconciliationSkip``."""

    path = workspace_dir / TASK_DOCUMENT_FILENAME
    try:
        text = path.read_text("utf-8")
    except (OSError, UnicodeDecodeError) as error:
        raise ReconciliationSkip(f"Cannot read {path}: {error}") from error
    try:
        return task_document_from_json(text)
    except ValidationError as error:
        raise ReconciliationSkip(f"Invalid task document in {path}: {error}") from error
