"""
Table Selection Utility Module

This module parses include_tables lists in 'schema.table' format and applies
them to discovered tables, marking which ones a job will transfer.
"""

import json
import re
from typing import List, Optional, Sequence, Tuple, Union
import logging

from mssql_bcp_transfer.table_catalog import TableWithRowsCount, TableWithSize

logger = logging.getLogger(__name__)

Table = Union[TableWithRowsCount, TableWithSize]


def parse_schema_table(entry: str) -> Tuple[str, str]:
    """
    Parse single 'schema.table' entry.

    Handles:
    - Simple format: "dbo.Users" -> ("dbo", "Users")
    - Bracketed format: "[dbo].[My Table]" -> ("dbo", "My Table")

    Raises:
        ValueError: If format is invalid (no dot separator found)
    """
    entry = entry.strip()

    match = re.match(r'^\[([^\]]+)\]\.\[([^\]]+)\]$', entry)
    if match:
        return (match.group(1), match.group(2))

    parts = entry.split('.', 1)
    if len(parts) != 2 or not parts[0].strip() or not parts[1].strip():
        raise ValueError(
            f"Invalid table format '{entry}': must be 'schema.table' or '[schema].[table]'"
        )

    return (parts[0].strip(), parts[1].strip())


def expand_include_tables_param(include_tables_raw) -> List[str]:
    """
    Expand and normalize an include_tables parameter.

    Handles:
    - List of strings: ["dbo.Users", "dbo.Posts"]
    - JSON string: '["dbo.Users", "dbo.Posts"]'
    - Comma-separated string: "dbo.Users,dbo.Posts"
    - List with comma-separated items: ["dbo.Users,dbo.Posts"]

    Returns:
        Normalized list of schema.table strings
    """
    if include_tables_raw is None:
        return []

    if isinstance(include_tables_raw, str):
        include_tables_raw = include_tables_raw.strip()
        if not include_tables_raw:
            return []

        try:
            parsed = json.loads(include_tables_raw)
            if isinstance(parsed, list):
                include_tables_raw = parsed
            else:
                include_tables_raw = [str(parsed)]
        except json.JSONDecodeError:
            include_tables_raw = [t.strip() for t in include_tables_raw.split(',') if t.strip()]

    if isinstance(include_tables_raw, (list, tuple)):
        expanded = []
        for item in include_tables_raw:
            if isinstance(item, str):
                if ',' in item:
                    expanded.extend([t.strip() for t in item.split(',') if t.strip()])
                elif item.strip():
                    expanded.append(item.strip())
        return expanded

    logger.warning(
        "expand_include_tables_param received unsupported type %s; returning empty list.",
        type(include_tables_raw).__name__,
    )
    return []


def select_tables(tables: Sequence[Table], include_tables: Optional[List[str]] = None) -> List[Table]:
    """
    Mark tables for transfer and return the selection.

    With an empty include list every table is selected. Otherwise only the
    named tables are, in catalog order.

    Args:
        tables: Tables discovered in the database or archive
        include_tables: schema.table entries to transfer

    Returns:
        The selected tables, in the order they appear in ``tables``

    Raises:
        ValueError: If an entry is malformed or names an unknown table
    """
    wanted = [parse_schema_table(entry) for entry in include_tables or []]
    known = {(t.schema, t.table) for t in tables}
    missing = [f"{s}.{t}" for s, t in wanted if (s, t) not in known]
    if missing:
        raise ValueError(f"Tables not found: {', '.join(missing)}")

    wanted_set = set(wanted)
    selected = []
    for t in tables:
        flag = not wanted_set or (t.schema, t.table) in wanted_set
        if isinstance(t, TableWithSize):
            t.import_ = flag
        else:
            t.export = flag
        if flag:
            selected.append(t)

    logger.info(f"Selected {len(selected)} of {len(tables)} tables")
    return selected
