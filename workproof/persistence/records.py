"""Typed views over record store rows, plus field normalisers.

The record store returns linked fields as lists (of ids or of ``{"id": ...}``
objects), dates as ``{"date": ...}`` objects and single selects as option
ids or ``{"value": ..., "label": ...}`` objects. The helpers here flatten
those shapes once, at the repository boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

UNTITLED_JOB = "Untitled Job"


def extract_linked_ids(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict) and value.get("id"):
        return [str(value["id"])]
    if isinstance(value, list):
        ids: list[str] = []
        for entry in value:
            if isinstance(entry, str) and entry:
                ids.append(entry)
            elif isinstance(entry, dict) and entry.get("id"):
                ids.append(str(entry["id"]))
        return ids
    return []


def extract_linked_id(value: Any) -> str | None:
    ids = extract_linked_ids(value)
    return ids[0] if ids else None


def unwrap_date(value: Any) -> str | None:
    if not value:
        return None
    if isinstance(value, dict):
        inner = value.get("date")
        return str(inner) if inner else None
    return str(value)


def extract_option(value: Any, options: dict[str, str] | None = None) -> str | None:
    """Resolve a single-select value to its label, lower-cased."""
    options = options or {}
    if not value:
        return None
    if isinstance(value, dict):
        raw = value.get("value") or value.get("label")
        if not isinstance(raw, str):
            return None
        return options.get(raw, raw.lower())
    if isinstance(value, str):
        return options.get(value, value.lower())
    return None


def as_float(value: Any) -> float | None:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def as_text(value: Any) -> str | None:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        # Rich text / address fields carry a plain-text rendering.
        for key in ("sys_root", "text", "location_address", "value"):
            if value.get(key):
                return str(value[key])
        return None
    return str(value)


@dataclass(frozen=True)
class JobRecord:
    id: str
    title: str | None
    client_name: str | None
    address: str | None
    postcode: str | None
    owner_ids: tuple[str, ...] = ()

    @property
    def display_title(self) -> str:
        """Title used in pack hashes and documents."""
        return self.title or self.client_name or UNTITLED_JOB


@dataclass(frozen=True)
class TaskRecord:
    id: str
    job_id: str | None
    title: str | None
    status: str | None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"


@dataclass(frozen=True)
class RemoteEvidence:
    id: str
    task_id: str | None
    capture_id: str | None
    content_hash: str | None
    photo_ref: str | None
    captured_at: str | None
    worker_id: str | None
    latitude: float | None
    longitude: float | None
    gps_accuracy_m: float | None
    photo_stage: str | None
    evidence_type: str | None
    notes: str | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class AuditPackRecord:
    id: str
    job_id: str | None
    title: str | None
    generated_at: str | None
    evidence_count: int
    pack_hash: str | None
    downloaded_at: str | None = None
    shared_with: str | None = None
