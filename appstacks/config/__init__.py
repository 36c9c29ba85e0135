"""
Base library config. This only holds the bootup settings of the operator. The
operator-wide settings that may change while it runs are read from the
operator ConfigMap on every reconcile (see appstacks.op_config).
"""

# Local
from .config import library_config


# Define __getattr__ on this module to delegate to the library config.
def __getattr__(name):
    if name in library_config or hasattr({}, name):
        return getattr(library_config, name)
    raise AttributeError(f"No such config attribute {name}")


# Only expose the library config keys
__all__ = list(library_config.keys())
