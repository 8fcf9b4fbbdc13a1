"""
Field Normalizer
Flattens one raw Jira issue into one warehouse row.

Every column is produced by a field kind from a closed set, so the shape of a
source field is decided once in FIELD_MAP instead of being probed at each
call site. All conversions are total: a missing or malformed value becomes
None, never an exception.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional

import pytz
from dateutil import parser as date_parser

from jsm_sync.utils.helpers import DATE_ONLY_PATTERN, sanitize_string
from jsm_sync.utils.logger import get_logger

logger = get_logger(__name__)


class FieldKind(Enum):
    TEXT = 'text'
    TIMESTAMP = 'timestamp'
    NAMED = 'named'
    USER = 'user'
    CASCADING = 'cascading'
    MULTI_SELECT = 'multi_select'
    DATE = 'date'
    OPAQUE = 'opaque'


class FieldSpec(NamedTuple):
    column: str
    source: str
    kind: FieldKind


FIELD_MAP: List[FieldSpec] = [
    FieldSpec('summary', 'summary', FieldKind.TEXT),
    FieldSpec('description', 'description', FieldKind.TEXT),
    FieldSpec('issue_type', 'issuetype', FieldKind.NAMED),
    FieldSpec('status', 'status', FieldKind.NAMED),
    FieldSpec('priority', 'priority', FieldKind.NAMED),
    FieldSpec('resolution', 'resolution', FieldKind.NAMED),
    FieldSpec('created', 'created', FieldKind.TIMESTAMP),
    FieldSpec('updated', 'updated', FieldKind.TIMESTAMP),
    FieldSpec('resolved', 'resolutiondate', FieldKind.TIMESTAMP),
    FieldSpec('assignee', 'assignee', FieldKind.USER),
    FieldSpec('reporter', 'reporter', FieldKind.USER),
    FieldSpec('operational_categorization', 'customfield_10061', FieldKind.CASCADING),
    FieldSpec('linked_intercom_conversation_ids', 'customfield_10065', FieldKind.TEXT),
    FieldSpec('team', 'customfield_10090', FieldKind.MULTI_SELECT),
    FieldSpec('filiale', 'customfield_10083', FieldKind.MULTI_SELECT),
    FieldSpec('start_date', 'customfield_10015', FieldKind.DATE),
    FieldSpec('ttr_raw_json', 'customfield_10055', FieldKind.OPAQUE),
    FieldSpec('tffr_raw_json', 'customfield_10056', FieldKind.OPAQUE),
]

# Filled by the warehouse merge step only
DERIVED_COLUMNS = ['sla_breached', 'last_sync']

NORMALIZED_COLUMNS: List[str] = ['key'] + [spec.column for spec in FIELD_MAP]
COLUMNS: List[str] = NORMALIZED_COLUMNS + DERIVED_COLUMNS


# ========================================
# Field converters
# ========================================

def user_display_name(user: Any) -> Optional[str]:
    """Display name of a user reference, or None."""
    if not isinstance(user, dict):
        return None
    name = user.get('displayName')
    return name if isinstance(name, str) and name else None


def cascading_to_string(value: Any) -> Optional[str]:
    """
    Render a cascading select as 'parent > child'.
    
    Only the parent is returned when the child level is unset; None when the
    parent is unset or the input is not an object.
    """
    if not isinstance(value, dict):
        return None
    
    parent = value.get('value') or None
    child = value.get('child')
    child_value = child.get('value') if isinstance(child, dict) else None
    
    if parent and child_value:
        return f"{parent} > {child_value}"
    if parent:
        return str(parent)
    return None


def multi_select_to_list(value: Any) -> Optional[List[str]]:
    """Option values of a multi-select, or None when nothing is selected."""
    if not isinstance(value, list):
        return None
    
    values = [
        str(option['value'])
        for option in value
        if isinstance(option, dict) and option.get('value')
    ]
    return values or None


def to_warehouse_date(value: Any) -> Optional[str]:
    """
    Convert a date-ish value to YYYY-MM-DD in UTC.
    
    >>> to_warehouse_date('2025-03-05T10:00:00Z')
    '2025-03-05'
    >>> to_warehouse_date('not-a-date') is None
    True
    """
    if not value:
        return None
    
    try:
        parsed = date_parser.parse(value)
    except (ValueError, TypeError, OverflowError):
        text = str(value)
        return text if DATE_ONLY_PATTERN.fullmatch(text) else None
    
    # Naive values are taken as UTC, as date-only strings are
    if parsed.tzinfo is None:
        parsed = pytz.UTC.localize(parsed)
    try:
        return parsed.astimezone(pytz.UTC).date().isoformat()
    except (ValueError, OverflowError) as e:
        logger.info(f"Date out of range; storing null: {value!r}: {e}")
        return None


def to_raw_json(value: Any, column: str = None) -> Optional[str]:
    """Serialize an opaque object to JSON text; None when absent or unserializable."""
    if value is None:
        return None
    
    try:
        return json.dumps(value, ensure_ascii=False, separators=(',', ':'))
    except (TypeError, ValueError) as e:
        logger.info(f"Could not serialize {column or 'field'}; storing null: {e}")
        return None


def named_value(value: Any) -> Optional[str]:
    """The ``name`` of a wrapped enum (status, priority, ...) or a plain string."""
    if isinstance(value, dict):
        name = value.get('name')
        return name if isinstance(name, str) and name else None
    return text_value(value)


def text_value(value: Any, column: str = None) -> Optional[str]:
    """
    Plain text column.
    
    Strings pass through; numbers are rendered; structured values (such as a
    rich-text description document) are kept as JSON text.
    """
    if value is None:
        return None
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (dict, list)):
        return to_raw_json(value, column)
    return None


def timestamp_value(value: Any) -> Optional[str]:
    """Full timestamps are stored exactly as the API sent them."""
    if isinstance(value, str) and value:
        return value
    if isinstance(value, datetime):
        return value.isoformat()
    return None


def convert_field(spec: FieldSpec, value: Any) -> Any:
    """Apply the converter for a field kind."""
    kind = spec.kind
    if kind is FieldKind.TEXT:
        return text_value(value, spec.column)
    if kind is FieldKind.TIMESTAMP:
        return timestamp_value(value)
    if kind is FieldKind.NAMED:
        return named_value(value)
    if kind is FieldKind.USER:
        return user_display_name(value)
    if kind is FieldKind.CASCADING:
        return cascading_to_string(value)
    if kind is FieldKind.MULTI_SELECT:
        return multi_select_to_list(value)
    if kind is FieldKind.DATE:
        return to_warehouse_date(value)
    if kind is FieldKind.OPAQUE:
        return to_raw_json(value, spec.column)
    raise ValueError(f"Unhandled field kind: {kind}")


# ========================================
# Record normalization
# ========================================

def normalize(issue: Any) -> Dict[str, Any]:
    """
    Map one raw issue to one flat record.
    
    The record always carries every column in COLUMNS. ``key`` may be None;
    such records are dropped by the fetcher before they reach storage.
    """
    if not isinstance(issue, dict):
        issue = {}
    
    fields = issue.get('fields')
    if not isinstance(fields, dict):
        fields = {}
    
    key = issue.get('key')
    record: Dict[str, Any] = {'key': key if isinstance(key, str) and key else None}
    
    for spec in FIELD_MAP:
        record[spec.column] = convert_field(spec, fields.get(spec.source))
    
    for column in DERIVED_COLUMNS:
        record[column] = None
    
    return record
