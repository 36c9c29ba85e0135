"""
Common utilities shared across the library
"""

# Standard
from typing import Any, List, Optional
import base64

# First Party
import alog

# Local
from . import constants

log = alog.use_channel("APUTL")

# Sentinel for missing dict values
__MISSING__ = "__MISSING__"

## Dicts #######################################################################


def merge_configs(base, overrides) -> dict:
    """Helper to perform a deep merge of the overrides into the base. The merge
    is done in place, but the resulting dict is also returned for convenience.

    If both the base and overrides have a key and the type of the key for both
    is a dict, recursively merge, otherwise set the base value to the override
    value.

    Args:
        base:  dict
            The base config that will be updated with the overrides
        overrides:  dict
            The override config

    Returns:
        merged:  dict
            The merged results of overrides merged onto base
    """
    for key, value in overrides.items():
        if (
            key not in base
            or not isinstance(base[key], dict)
            or not isinstance(value, dict)
        ):
            base[key] = value
        else:
            base[key] = merge_configs(base[key], value)

    return base


def nested_get(dct: dict, key: str, dflt=None) -> Any:
    """Helper to get values from a dict using 'foo.bar' key notation. Missing
    intermediate dicts and explicit None values both yield the default.

    Args:
        dct:  dict
            The dict to search
        key:  str
            Key that may contain '.' notation indicating dict nesting
        dflt:  Any
            The value to return when the key is not found

    Returns:
        val:  Any
            Whatever is found at the given key or dflt if the key is not found
    """
    parts = key.split(constants.NESTED_DICT_DELIM)
    for part in parts[:-1]:
        dct = dct.get(part, __MISSING__)
        if dct is __MISSING__ or dct is None:
            return dflt
        if not isinstance(dct, dict):
            raise TypeError(f"Intermediate key {part} is not a dict")
    val = dct.get(parts[-1], dflt)
    return dflt if val is None else val


## Comma-joined lists ##########################################################


def split_list(value: Optional[str]) -> List[str]:
    """Split a comma-joined string into its trimmed, non-empty entries"""
    if not value:
        return []
    return [
        entry.strip()
        for entry in value.split(constants.LIST_DELIM)
        if entry.strip()
    ]


def append_if_missing(entry: str, value: Optional[str]) -> str:
    """Append an entry to a comma-joined list unless it is already present

    Args:
        entry:  str
            The entry to add
        value:  Optional[str]
            The current comma-joined list

    Returns:
        joined:  str
            The comma-joined list containing the entry
    """
    if not value:
        return entry
    entries = value.split(constants.LIST_DELIM)
    if entry not in entries:
        entries.append(entry)
    return constants.LIST_DELIM.join(entries)


## Naming ######################################################################


def build_binding_secret_name(name: str, namespace: str) -> str:
    """The name of the secret published for the service of a CR"""
    return f"{namespace}-{name}"


def decode_secret_value(secret: dict, key: str) -> Optional[str]:
    """Get a decoded value out of the data of a secret"""
    encoded = (secret.get("data") or {}).get(key)
    if encoded is None:
        return None
    return base64.b64decode(encoded).decode("utf-8")


def encode_secret_data(data: dict) -> dict:
    """Base64 encode all values of a dict for use as secret data"""
    return {
        key: base64.b64encode(str(val).encode("utf-8")).decode("utf-8")
        for key, val in data.items()
    }


def to_plain(value: Any) -> Any:
    """Convert nested aconfig.Config objects into plain dicts and lists"""
    if isinstance(value, dict):
        return {key: to_plain(val) for key, val in value.items()}
    if isinstance(value, list):
        return [to_plain(val) for val in value]
    return value
