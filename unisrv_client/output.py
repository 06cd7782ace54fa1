"""
Rendering of command results as a table, JSON or YAML.

Models are dumped with their wire aliases so `--format json` output matches
what the API returns.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import yaml
from pydantic import BaseModel
from tabulate import tabulate  # type: ignore[import-untyped]

FORMATS = ("table", "json", "yaml")
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime(TIMESTAMP_FORMAT)
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def table(rows: Sequence[Dict[str, Any]], columns: List[str]) -> str:
    """Rows as a simple table; only `columns` are shown, in that order."""
    data = [[cell(row.get(column)) for column in columns] for row in rows]
    result: str = tabulate(data, headers=columns, tablefmt="simple")
    return result


def plain(value: Any) -> Any:
    """Models, UUIDs and datetimes reduced to JSON types."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)
    elif isinstance(value, (list, tuple)):
        value = [
            v.model_dump(mode="json", by_alias=True) if isinstance(v, BaseModel) else v
            for v in value
        ]
    return json.loads(json.dumps(value, default=_json_default))


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def render(value: Any, output_format: str, columns: Optional[List[str]] = None) -> str:
    """
    Render a result in the requested output format.

    Args:
        value: A model, a list of models or row dicts (rows only for tables)
        output_format: 'table', 'json' or 'yaml'
        columns: Table columns; required for the table format

    Raises:
        ValueError: If the format is unknown or a table has no columns
    """
    if output_format == "json":
        return json.dumps(plain(value), indent=2)
    if output_format == "yaml":
        text: str = yaml.safe_dump(
            plain(value), default_flow_style=False, sort_keys=False, allow_unicode=True
        )
        return text
    if output_format == "table":
        if columns is None:
            raise ValueError("Table output needs columns")
        return table(value, columns)
    raise ValueError(f"Unknown format: {output_format}. Use one of: {', '.join(FORMATS)}.")
