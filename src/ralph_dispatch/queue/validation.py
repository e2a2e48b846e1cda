"""Field-level validation for queue payloads."""

from __future__ import annotations

import re
from urllib.parse import urlparse

from ralph_dispatch.queue.contracts import validate_task_document
from ralph_dispatch.queue.errors import FieldError
from ralph_dispatch.queue.models import (
    JobCreate,
    JobTrigger,
    RepositoryCreate,
    RepositoryUpdate,
)

REPOSITORY_NAME_MAX_CHARS = 100
REPOSITORY_SLUG_MAX_CHARS = 50

_SLUG_PATTERN = re.compile(r"[a-z0-9-]+")


def validate_job_create(payload: JobCreate) -> list[FieldError]:
    errors: list[FieldError] = []
    if not isinstance(payload.repository_id, str) or not payload.repository_id:
        errors.append(FieldError("repository_id", "must be a non-empty string"))
    if not isinstance(payload.triggered_by, JobTrigger):
        errors.append(FieldError("triggered_by", "must be one of chat, dashboard, api"))
    if not _is_int(payload.priority):
        errors.append(FieldError("priority", "must be an integer"))
    if not _is_int(payload.max_iterations) or payload.max_iterations < 1:
        errors.append(FieldError("max_iterations", "must be a positive integer"))
    errors.extend(
        FieldError(f"task_document.{error.path}", error.message)
        for error in validate_task_document(payload.task_document.to_dict())
    )
    return errors


def validate_repository_create(payload: RepositoryCreate) -> list[FieldError]:
    errors: list[FieldError] = []
    errors.extend(_check_name(payload.name))
    errors.extend(_check_slug(payload.slug))
    errors.extend(_check_git_url(payload.git_url))
    errors.extend(_check_non_empty("docker_image", payload.docker_image))
    errors.extend(_check_non_empty("branch", payload.branch))
    errors.extend(_check_keywords(payload.keywords))
    return errors


def validate_repository_update(payload: RepositoryUpdate) -> list[FieldError]:
    """Validate only the fields the update actually sets."""

    errors: list[FieldError] = []
    if payload.name is not None:
        errors.extend(_check_name(payload.name))
    if payload.slug is not None:
        errors.extend(_check_slug(payload.slug))
    if payload.git_url is not None:
        errors.extend(_check_git_url(payload.git_url))
    if payload.docker_image is not None:
        errors.extend(_check_non_empty("docker_image", payload.docker_image))
    if payload.branch is not None:
        errors.extend(_check_non_empty("branch", payload.branch))
    if payload.keywords is not None:
        errors.extend(_check_keywords(payload.keywords))
    return errors


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_name(name: object) -> list[FieldError]:
    if not isinstance(name, str) or not 1 <= len(name) <= REPOSITORY_NAME_MAX_CHARS:
        return [FieldError("name", f"must be 1-{REPOSITORY_NAME_MAX_CHARS} characters")]
    return []


def _check_slug(slug: object) -> list[FieldError]:
    if (
        not isinstance(slug, str)
        or len(slug) > REPOSITORY_SLUG_MAX_CHARS
        or _SLUG_PATTERN.fullmatch(slug) is None
    ):
        return [
            FieldError(
                "slug",
                f"must be 1-{REPOSITORY_SLUG_MAX_CHARS} chars of lowercase letters, "
                "digits and hyphens",
            ),
        ]
    return []


def _check_git_url(git_url: object) -> list[FieldError]:
    if isinstance(git_url, str):
        if git_url.startswith("git@"):
            return []
        parsed = urlparse(git_url)
        if parsed.scheme and parsed.netloc:
            return []
    return [FieldError("git_url", "must be a URL or git@host:path")]


def _check_non_empty(path: str, value: object) -> list[FieldError]:
    if not isinstance(value, str) or not value.strip():
        return [FieldError(path, "must be a non-empty string")]
    return []


def _check_keywords(keywords: object) -> list[FieldError]:
    if not isinstance(keywords, list) or not all(isinstance(item, str) for item in keywords):
        return [FieldError("keywords", "must be a list of strings")]
    return []
