"""
Configuration layering

Merges the four configuration tiers into the flat config dict returned
with every parse. Precedence, highest first:

    1. document config block   (>>> config ... <<< config)
    2. alias config            (AliasDescriptor.config)
    3. global / session config (passed by the caller)
    4. compiled defaults       (AppSettings.defaults_make())

The merge is a shallow per-key overwrite: a nested dict in a higher tier
replaces the lower tier's value wholesale.
"""

from typing import Any, Dict, Optional, Tuple
import re

from ..models.markers import CONFIG_PATTERN
from .errors import ParseError

_INT_PATTERN = re.compile(r"^[+-]?\d+$")
_FLOAT_PATTERN = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+)([eE][+-]?\d+)?$")

# Keys a document config block is expected to carry and their types
CONFIG_KEYS: Dict[str, type] = {
    "model": str,
    "provider": str,
    "temperature": float,
    "max_tokens": int,
    "expand_placeholders": bool,
}


def value_coerce(raw: str) -> Any:
    """
    Convert an option or config value string to int, float, bool or str.

    Example:
        >>> value_coerce("5"), value_coerce("0.2"), value_coerce("TRUE"), value_coerce("gpt-4o")
        (5, 0.2, True, 'gpt-4o')
    """
    value = raw.strip()
    lowered = value.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if _INT_PATTERN.match(value):
        return int(value)
    if _FLOAT_PATTERN.match(value):
        return float(value)
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
        return value[1:-1]
    return value


def configValue_check(key: str, value: Any) -> Any:
    """
    Check a recognized config key's value type.

    Unknown keys pass through untouched. An int is accepted where a float is
    expected.

    Raises:
        ParseError: If a recognized key carries a value of the wrong type
    """
    expected = CONFIG_KEYS.get(key)
    if expected is None:
        return value
    if expected is float and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    if expected is str and not isinstance(value, str):
        return str(value)
    if expected is int and isinstance(value, bool):
        raise ParseError(f"Config key '{key}' expects an integer, got '{value}'")
    if not isinstance(value, expected):
        raise ParseError(f"Config key '{key}' expects {expected.__name__}, got '{value}'")
    return value


def configLine_parse(line: str, line_number: Optional[int] = None) -> Tuple[str, Any]:
    """
    Parse one 'key: value' line of a config block.

    Args:
        line: Raw config line
        line_number: Source line (for error reporting)

    Returns:
        (key, coerced value)

    Raises:
        ParseError: If the line is not 'key: value' or the value has the
                    wrong type for a recognized key
    """
    match = CONFIG_PATTERN.match(line)
    if not match:
        raise ParseError(f"Malformed config line: '{line.strip()}'", line_number)
    key, raw = match.group(1), match.group(2)
    try:
        return key, configValue_check(key, value_coerce(raw))
    except ParseError as e:
        raise ParseError(e.message, line_number) from e


def config_merge(
    document: Optional[Dict[str, Any]] = None,
    alias: Optional[Dict[str, Any]] = None,
    session: Optional[Dict[str, Any]] = None,
    defaults: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Merge the configuration tiers, lowest precedence first.

    Args:
        document: Config block values from the document
        alias: Config carried by the alias(es) used in the document
        session: Global/session config supplied by the caller
        defaults: Compiled defaults

    Returns:
        New flat dict; inputs are not modified

    Example:
        >>> config_merge({"model": "a"}, {"model": "b", "temperature": 0.1},
        ...              {"temperature": 0.9}, {"max_tokens": 10})
        {'max_tokens': 10, 'temperature': 0.1, 'model': 'a'}
    """
    merged: Dict[str, Any] = {}
    for tier in (defaults, session, alias, document):
        if tier:
            merged.update(tier)
    return merged
