from __future__ import annotations

import json
from dataclasses import fields
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple

import pandas as pd
from dateutil import parser as dateparser

from .errors import UpstreamUnavailableError
from .models import (
    Allocation,
    CapacityEntry,
    EngineConfig,
    Project,
    Resource,
    Skill,
    Snapshot,
)

RESOURCES_FILE = "resources.json"
PROJECTS_FILE = "projects.csv"
ALLOCATIONS_FILE = "allocations.csv"
CAPACITY_FILE = "capacity.csv"
CONFIG_FILE = "config.json"

_PROJECT_REQUIRED_COLUMNS = {"id", "name"}
_ALLOCATION_REQUIRED_COLUMNS = {
    "id",
    "resource_id",
    "project_id",
    "start_date",
    "end_date",
    "utilization",
}
_CAPACITY_REQUIRED_COLUMNS = {"resource_id", "year", "month"}

_WEIGHT_FIELDS = ("project_match_weights", "resource_match_weights")
_POSITIVE_INT_FIELDS = ("default_match_limit", "default_horizon_days", "experience_horizon_days")
_PERCENT_FIELDS = (
    "org_overallocated_threshold",
    "org_underallocated_threshold",
    "rebalance_over_threshold",
    "rebalance_under_threshold",
    "bench_threshold_pct",
    "high_margin_project_pct",
    "low_margin_project_pct",
    "reallocation_utilization_ceiling",
    "min_reallocation_capacity",
    "max_new_allocation_pct",
    "cost_reduction_step",
    "cost_reduction_floor",
)
_FRACTION_FIELDS = ("reduction_fraction",)
_UNIT_FIELDS = ("team_fit_with_history", "team_fit_without_history")
_POSITIVE_FLOAT_FIELDS = ("experience_normalizer", "recency_decay")


def _require_columns(df: pd.DataFrame, required: Iterable[str], source: str) -> None:
    missing = sorted(col for col in required if col not in df.columns)
    if missing:
        raise ValueError(f"{source} missing required columns: {', '.join(missing)}")


def _is_missing(value: object) -> bool:
    return value is None or (isinstance(value, float) and pd.isna(value))


def _optional(value: object) -> Optional[object]:
    return None if _is_missing(value) else value


def _parse_date(value: object, field_name: str) -> date:
    parsed = _parse_optional_date(value, field_name)
    if parsed is None:
        raise ValueError(f"missing date in '{field_name}'")
    return parsed


def _parse_optional_date(value: object, field_name: str) -> Optional[date]:
    if _is_missing(value):
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    try:
        return dateparser.isoparse(str(value)).date()
    except (ValueError, TypeError) as exc:
        raise ValueError(f"invalid date in '{field_name}': {value}") from exc


def _parse_optional_number(value: object, field_name: str) -> Optional[float]:
    if _is_missing(value):
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid number in '{field_name}': {value}") from exc


def _parse_list_field(value: object, field_name: str) -> Tuple[str, ...]:
    """Accept a JSON array, a ';'-separated string or a sequence."""
    if _is_missing(value):
        return ()
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return ()
        if stripped.startswith("[") and stripped.endswith("]"):
            try:
                parsed = json.loads(stripped)
            except json.JSONDecodeError as exc:
                raise ValueError(f"invalid JSON array in '{field_name}'") from exc
            return tuple(str(item).strip() for item in parsed if str(item).strip())
        return tuple(part.strip() for part in stripped.split(";") if part.strip())
    if isinstance(value, Sequence):
        return tuple(str(item).strip() for item in value if str(item).strip())
    raise ValueError(f"unsupported value for '{field_name}': {value!r}")


def _parse_skill(entry: object, owner: str) -> Skill:
    if isinstance(entry, str):
        return Skill(id=entry.strip(), name=entry.strip())
    if isinstance(entry, dict):
        skill_id = entry.get("id")
        if skill_id is None or str(skill_id).strip() == "":
            raise ValueError(f"skill without id for {owner}")
        return Skill(
            id=str(skill_id).strip(),
            name=str(entry.get("name") or skill_id).strip(),
            category=str(entry.get("category") or "").strip(),
        )
    raise ValueError(f"unsupported skill entry for {owner}: {entry!r}")


def _read_csv(path: str | Path, id_columns: Iterable[str]) -> pd.DataFrame:
    return pd.read_csv(path, dtype={col: str for col in id_columns})


def load_resources(path: str | Path) -> pd.DataFrame:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, list):
        raise ValueError("resources file must be a JSON array")
    rows = []
    seen = set()
    for entry in data:
        if not isinstance(entry, dict):
            raise ValueError("resource entries must be objects")
        resource_id = entry.get("id")
        name = entry.get("name")
        if resource_id is None or str(resource_id).strip() == "":
            raise ValueError("resource id is required")
        resource_id = str(resource_id).strip()
        if resource_id in seen:
            raise ValueError(f"duplicate resource id '{resource_id}'")
        seen.add(resource_id)
        if not name or not isinstance(name, str):
            raise ValueError(f"resource name is required for {resource_id}")
        skills = entry.get("skills") or []
        if not isinstance(skills, list):
            raise ValueError(f"skills must be an array for {resource_id}")
        billing_rate = _parse_optional_number(entry.get("billing_rate"), "billing_rate")
        cost_rate = _parse_optional_number(entry.get("cost_rate"), "cost_rate")
        for label, rate in (("billing_rate", billing_rate), ("cost_rate", cost_rate)):
            if rate is not None and rate < 0:
                raise ValueError(f"{label} must not be negative for {resource_id}")
        rows.append(
            {
                "id": resource_id,
                "name": name.strip(),
                "role": str(entry.get("role") or ""),
                "billing_rate": billing_rate,
                "cost_rate": cost_rate,
                "skills": tuple(_parse_skill(skill, resource_id) for skill in skills),
            }
        )
    return pd.DataFrame(rows, columns=["id", "name", "role", "billing_rate", "cost_rate", "skills"])


def load_projects(path: str | Path) -> pd.DataFrame:
    df = _read_csv(path, ["id"])
    _require_columns(df, _PROJECT_REQUIRED_COLUMNS, PROJECTS_FILE)
    if df["id"].duplicated().any():
        duplicates = ", ".join(sorted(df.loc[df["id"].duplicated(), "id"].unique()))
        raise ValueError(f"{PROJECTS_FILE} contains duplicate ids: {duplicates}")
    for column, default in (("client", ""), ("status", "Active"), ("description", "")):
        if column not in df.columns:
            df[column] = default
        df[column] = df[column].fillna(default).astype(str)
    for column in ("start_date", "end_date"):
        if column not in df.columns:
            df[column] = None
        df[column] = df[column].map(lambda value, field=column: _parse_optional_date(value, field))
    for column in ("budget", "actual_cost"):
        if column not in df.columns:
            df[column] = None
        df[column] = df[column].map(lambda value, field=column: _parse_optional_number(value, field))
    if "required_skills" not in df.columns:
        df["required_skills"] = ""
    df["required_skills"] = df["required_skills"].map(
        lambda value: _parse_list_field(value, "required_skills")
    )
    return df


def load_allocations(path: str | Path) -> pd.DataFrame:
    df = _read_csv(path, ["id", "resource_id", "project_id"])
    _require_columns(df, _ALLOCATION_REQUIRED_COLUMNS, ALLOCATIONS_FILE)
    try:
        df["utilization"] = pd.to_numeric(df["utilization"])
    except ValueError as exc:
        raise ValueError("invalid numeric value in column 'utilization'") from exc
    if df["utilization"].isna().any():
        raise ValueError("column 'utilization' contains missing values")
    if (df["utilization"] < 0).any():
        raise ValueError("column 'utilization' contains negative values")
    for column in ("start_date", "end_date"):
        df[column] = df[column].map(lambda value, field=column: _parse_date(value, field))
    if "notes" not in df.columns:
        df["notes"] = ""
    df["notes"] = df["notes"].fillna("").astype(str)
    return df


def load_capacity(path: str | Path) -> pd.DataFrame:
    df = _read_csv(path, ["resource_id"])
    _require_columns(df, _CAPACITY_REQUIRED_COLUMNS, CAPACITY_FILE)
    for column in ("year", "month"):
        try:
            df[column] = pd.to_numeric(df[column]).astype(int)
        except (ValueError, TypeError) as exc:
            raise ValueError(f"invalid integer value in column '{column}'") from exc
    if ((df["month"] < 1) | (df["month"] > 12)).any():
        raise ValueError("column 'month' must be between 1 and 12")
    for column, default in (("available_capacity", 100.0), ("planned_time_off", 0.0)):
        if column not in df.columns:
            df[column] = default
        try:
            df[column] = pd.to_numeric(df[column]).fillna(default)
        except ValueError as exc:
            raise ValueError(f"invalid numeric value in column '{column}'") from exc
    return df


def _skill_catalog(resources_df: pd.DataFrame) -> Dict[str, Skill]:
    catalog: Dict[str, Skill] = {}
    for skills in resources_df["skills"]:
        for skill in skills:
            catalog.setdefault(skill.id, skill)
    return catalog


def snapshot_from_frames(
    resources_df: pd.DataFrame,
    projects_df: pd.DataFrame,
    allocations_df: pd.DataFrame,
    capacity_df: Optional[pd.DataFrame] = None,
) -> Snapshot:
    catalog = _skill_catalog(resources_df)
    resources = tuple(
        Resource(
            id=row.id,
            name=row.name,
            role=row.role,
            billing_rate=None if _is_missing(row.billing_rate) else float(row.billing_rate),
            cost_rate=None if _is_missing(row.cost_rate) else float(row.cost_rate),
            skills=tuple(row.skills),
        )
        for row in resources_df.itertuples(index=False)
    )
    projects = tuple(
        Project(
            id=row.id,
            name=row.name,
            client=row.client,
            status=row.status,
            start_date=_optional(row.start_date),
            end_date=_optional(row.end_date),
            required_skills=tuple(catalog.get(skill_id, Skill(skill_id, skill_id)) for skill_id in row.required_skills),
            description=row.description,
            budget=_optional(row.budget),
            actual_cost=_optional(row.actual_cost),
        )
        for row in projects_df.itertuples(index=False)
    )
    allocations = tuple(
        Allocation(
            id=row.id,
            resource_id=row.resource_id,
            project_id=row.project_id,
            start_date=row.start_date,
            end_date=row.end_date,
            utilization=float(row.utilization),
            notes=row.notes,
        )
        for row in allocations_df.itertuples(index=False)
    )
    capacity: Tuple[CapacityEntry, ...] = ()
    if capacity_df is not None:
        capacity = tuple(
            CapacityEntry(
                resource_id=row.resource_id,
                year=int(row.year),
                month=int(row.month),
                available_capacity=float(row.available_capacity),
                planned_time_off=float(row.planned_time_off),
            )
            for row in capacity_df.itertuples(index=False)
        )
    return Snapshot(resources=resources, projects=projects, allocations=allocations, capacity=capacity)


def load_snapshot(input_dir: str | Path) -> Snapshot:
    """Read a snapshot directory.

    Missing or unreadable inputs surface as ``UpstreamUnavailableError`` so
    callers can decide whether to fall back to a sample dataset.
    """
    base = Path(input_dir)
    try:
        resources_df = load_resources(base / RESOURCES_FILE)
        projects_df = load_projects(base / PROJECTS_FILE)
        allocations_df = load_allocations(base / ALLOCATIONS_FILE)
        capacity_path = base / CAPACITY_FILE
        capacity_df = load_capacity(capacity_path) if capacity_path.exists() else None
    except (OSError, ValueError, pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise UpstreamUnavailableError(str(base), str(exc)) from exc
    return snapshot_from_frames(resources_df, projects_df, allocations_df, capacity_df)


def _number(data: dict, name: str, default: float) -> float:
    value = data.get(name, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be a number")
    return float(value)


def _validate_weights(raw: object, name: str, default: Dict[str, float]) -> Dict[str, float]:
    if raw is None:
        return dict(default)
    if not isinstance(raw, dict):
        raise ValueError(f"{name} must be an object")
    unknown = set(raw) - set(default)
    if unknown:
        raise ValueError(f"{name} has unknown components: {', '.join(sorted(unknown))}")
    weights: Dict[str, float] = {}
    for component, default_weight in default.items():
        value = raw.get(component, default_weight)
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            raise ValueError(f"{name}[{component}] must be a non-negative number")
        weights[component] = float(value)
    return weights


def load_config(path: str | Path) -> EngineConfig:
    data = json.loads(Path(path).read_text())
    if not isinstance(data, dict):
        raise ValueError("config file must be a JSON object")
    defaults = EngineConfig()
    known = {f.name for f in fields(EngineConfig)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"unknown config keys: {', '.join(sorted(unknown))}")
    values: Dict[str, object] = {}

    for name in _WEIGHT_FIELDS:
        values[name] = _validate_weights(data.get(name), name, getattr(defaults, name))

    for name in _POSITIVE_INT_FIELDS:
        value = data.get(name, getattr(defaults, name))
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValueError(f"{name} must be a positive integer")
        values[name] = value

    for name in _PERCENT_FIELDS:
        value = _number(data, name, getattr(defaults, name))
        if value < 0:
            raise ValueError(f"{name} must not be negative")
        values[name] = value

    for name in _FRACTION_FIELDS + _UNIT_FIELDS:
        value = _number(data, name, getattr(defaults, name))
        if not (0 <= value <= 1):
            raise ValueError(f"{name} must be in [0, 1]")
        values[name] = value

    for name in _POSITIVE_FLOAT_FIELDS:
        value = _number(data, name, getattr(defaults, name))
        if value <= 0:
            raise ValueError(f"{name} must be positive")
        values[name] = value

    statuses = data.get("matchable_project_statuses", list(defaults.matchable_project_statuses))
    if not isinstance(statuses, list) or not all(isinstance(item, str) for item in statuses):
        raise ValueError("matchable_project_statuses must be an array of strings")
    values["matchable_project_statuses"] = tuple(statuses)

    if values["org_underallocated_threshold"] > values["org_overallocated_threshold"]:
        raise ValueError("org_underallocated_threshold must not exceed org_overallocated_threshold")
    if values["rebalance_under_threshold"] > values["rebalance_over_threshold"]:
        raise ValueError("rebalance_under_threshold must not exceed rebalance_over_threshold")

    logging_level = data.get("logging_level", defaults.logging_level)
    if not isinstance(logging_level, str):
        raise ValueError("logging_level must be a string")
    values["logging_level"] = logging_level
    return EngineConfig(**values)


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)


def write_json(payload: object, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    Path(path).write_text(json.dumps(payload, indent=2, default=str) + "\n")
