"""Event payloads for the server's events API."""

from __future__ import annotations

import json

from .models import BuildSnapshot, NotificationState

MAX_FIELD_LENGTH = 255
MAX_URL_FIELD_LENGTH = 450

SOURCE = "jenkins"


def abbreviate(text: str | None, max_width: int) -> str | None:
    """Cut ``text`` to ``max_width`` characters, ending in "..." when cut."""
    if text is None:
        return None
    if max_width < 4:
        raise ValueError("Minimum abbreviation width is 4")
    if len(text) <= max_width:
        return text
    return text[: max_width - 3] + "..."


def build_description(build: BuildSnapshot, state: NotificationState, root_url: str) -> str:
    if build.description and build.description.strip():
        return build.description
    if state == NotificationState.INPROGRESS:
        return f"building on {root_url}"
    return f"built by {root_url}"


def deployment_payload(
    build: BuildSnapshot,
    state: NotificationState,
    key: str,
    entity_id: str,
    root_url: str,
) -> dict:
    return {
        "eventType": "CUSTOM_DEPLOYMENT",
        "deploymentName": f"{state.value} - {abbreviate(build.full_display_name, MAX_FIELD_LENGTH)}",
        "deploymentVersion": abbreviate(key, MAX_FIELD_LENGTH),
        "attachRules": {"entityIds": [entity_id]},
        "customProperties": {
            "description": abbreviate(build_description(build, state, root_url), MAX_FIELD_LENGTH),
        },
        "ciBackLink": abbreviate(build.run_url(root_url), MAX_URL_FIELD_LENGTH),
        "source": SOURCE,
    }


def annotation_payload(
    build: BuildSnapshot,
    state: NotificationState,
    key: str,
    entity_id: str,
    root_url: str,
) -> dict:
    name = abbreviate(build.full_display_name, MAX_FIELD_LENGTH)
    return {
        "eventType": "CUSTOM_ANNOTATION",
        "annotationType": f"{state.value} Jenkins Job",
        "annotationDescription": f"{state.value} - {name} {abbreviate(key, MAX_FIELD_LENGTH)}",
        "attachRules": {"entityIds": [entity_id]},
        "customProperties": {
            "description": abbreviate(build_description(build, state, root_url), MAX_FIELD_LENGTH),
            "ciBackLink": abbreviate(build.run_url(root_url), MAX_URL_FIELD_LENGTH),
        },
        "source": SOURCE,
    }


def build_payload(
    build: BuildSnapshot,
    state: NotificationState,
    key: str,
    entity_id: str,
    root_url: str,
) -> dict:
    """Deployment event for successful builds, annotation event otherwise."""
    if state == NotificationState.SUCCESSFUL:
        return deployment_payload(build, state, key, entity_id, root_url)
    return annotation_payload(build, state, key, entity_id, root_url)


def serialize_payload(payload: dict) -> bytes:
    return json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
