"""
Helper Utilities Module
Time-bound handling, identifier validation and small dictionary helpers.
"""

import re
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional

import pytz
from dateutil import parser as date_parser

# Strict UTC timestamp accepted as a lower time bound, e.g. 2025-01-01T00:00:00.123Z.
# The value is embedded into a JQL expression, so nothing looser is allowed.
ISO_UTC_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{1,3})?Z$')

# Project, dataset and table names end up inside SQL identifiers.
IDENTIFIER_PATTERN = re.compile(r'^[a-z0-9_-]+$')

# Multi-region codes (EU, US) or regional names (europe-west1)
LOCATION_PATTERN = re.compile(r'^[A-Z]{2}$|^[a-z]+-[a-z]+\d+$')

DATE_ONLY_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')

Clock = Callable[[], datetime]


class ValidationError(ValueError):
    """Raised when a run parameter fails validation before any I/O happens."""


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(pytz.UTC)


def is_valid_iso_utc(value: Any) -> bool:
    """
    Check a strict ISO 8601 UTC timestamp.
    
    The pattern is checked first, then the value must also be a real
    calendar instant (2025-02-30T00:00:00Z is rejected).
    """
    if not isinstance(value, str) or not ISO_UTC_PATTERN.fullmatch(value):
        return False
    
    try:
        date_parser.isoparse(value)
    except (ValueError, OverflowError):
        return False
    return True


def validate_since(value: Any) -> str:
    """
    Validate a lower time bound and return it unchanged.
    
    Raises:
        ValidationError: If the value is not a strict ISO 8601 UTC timestamp
    """
    if not is_valid_iso_utc(value):
        raise ValidationError(
            f"Invalid 'since' value: must be ISO 8601 UTC datetime "
            f"(e.g., 2024-01-01T00:00:00Z). Got: {value!r}"
        )
    return value


def is_valid_identifier(value: Any) -> bool:
    """Check a project, dataset or table identifier."""
    return isinstance(value, str) and bool(IDENTIFIER_PATTERN.fullmatch(value))


def validate_identifier(value: Any, name: str) -> str:
    """
    Validate a warehouse identifier and return it unchanged.
    
    Args:
        value: Identifier to check
        name: Setting name used in the error message
    """
    if not is_valid_identifier(value):
        raise ValidationError(
            f"Invalid {name} format: {value!r}. Must contain only lowercase "
            f"letters, numbers, hyphens, and underscores."
        )
    return value


def is_valid_location(value: Any) -> bool:
    return isinstance(value, str) and bool(LOCATION_PATTERN.fullmatch(value))


def validate_location(value: Any) -> str:
    """Validate a warehouse location such as EU, US or europe-west1."""
    if not is_valid_location(value):
        raise ValidationError(
            f"Invalid location format: {value!r}. Must be a valid location "
            f"(e.g., EU, US, europe-west1)."
        )
    return value


def format_iso_utc(dt: datetime) -> str:
    """Render a datetime as YYYY-MM-DDTHH:MM:SS.mmmZ in UTC."""
    if dt.tzinfo is None:
        dt = pytz.UTC.localize(dt)
    dt = dt.astimezone(pytz.UTC)
    return dt.strftime('%Y-%m-%dT%H:%M:%S.') + f'{dt.microsecond // 1000:03d}Z'


def default_since(now: datetime, lookback: timedelta = timedelta(hours=1)) -> str:
    """
    Lower time bound for a run without an explicit override.
    
    Args:
        now: Current time, injected by the caller
        lookback: Window ending at now
        
    Returns:
        Strict ISO 8601 UTC timestamp
    """
    return format_iso_utc(now - lookback)


def sanitize_string(text: Optional[str], max_length: int = None) -> Optional[str]:
    """
    Sanitize string for warehouse storage.
    
    Args:
        text: Text to sanitize
        max_length: Maximum length (truncate if exceeded)
        
    Returns:
        Sanitized string
    """
    if text is None:
        return None
    
    # Remove null bytes
    text = text.replace('\x00', '')
    
    if max_length and len(text) > max_length:
        text = text[:max_length - 3] + '...'
    
    return text


def chunk_list(lst: List[Any], chunk_size: int) -> List[List[Any]]:
    """
    Split a list into chunks of specified size.
    
    Args:
        lst: List to chunk
        chunk_size: Size of each chunk
        
    Returns:
        List of chunks
    """
    return [lst[i:i + chunk_size] for i in range(0, len(lst), chunk_size)]
