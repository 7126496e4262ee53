"""
Feature flags for selecting the proof system backend.

The mock backend checks constraints but is not zero-knowledge; it exists for
tests and local demos.
"""

from __future__ import annotations

import os
from typing import Optional

BACKENDS = ("mock", "subprocess")
DEFAULT_BACKEND = "mock"
BACKEND_ENV_VAR = "SHIELDED_POOL_PROOF_BACKEND"

_override: Optional[str] = None


def _parse(value: object) -> Optional[str]:
    """Lower-cased backend name; None when unset or blank."""
    if value is None:
        return None
    name = value.strip().lower() if isinstance(value, str) else value
    if name == "":
        return None
    if name not in BACKENDS:
        raise ValueError(
            f"Invalid backend type {value!r}; expected one of {', '.join(BACKENDS)}"
        )
    return name


def get_backend_type(prefer: Optional[str] = None) -> str:
    """
    First set of: prefer, the in-process override, $SHIELDED_POOL_PROOF_BACKEND.
    Falls back to the mock backend.

    Raises:
        ValueError: If the first set value is not a known backend
    """
    for candidate in (prefer, _override, os.environ.get(BACKEND_ENV_VAR)):
        name = _parse(candidate)
        if name is not None:
            return name
    return DEFAULT_BACKEND


def set_backend_type(value: Optional[str]) -> None:
    """Override the backend for this process; None or "" clears the override."""
    global _override
    _override = _parse(value)
