"""
Proof system factory.

Backends are registered by dotted import path and loaded lazily, so a
backend's dependencies are only imported when it is selected.
"""

from __future__ import annotations

import importlib
import logging
from typing import Any, Dict, Optional, Type

from .exceptions import ConfigurationError
from .feature_flags import get_backend_type
from .interfaces import ProofSystem

logger = logging.getLogger(__name__)

BACKEND_REGISTRY: Dict[str, str] = {
    "mock": "shielded_pool.protocol.adapters.mock_adapter.MockProofSystem",
    "subprocess": "shielded_pool.protocol.adapters.subprocess_prover.SubprocessProofSystem",
}


def _check_name(value: Optional[str], source: str) -> Optional[str]:
    if value is None or value == "":
        return None
    if value not in BACKEND_REGISTRY:
        raise ValueError(
            f"Invalid backend name ({source}): {value!r}; "
            f"expected one of {', '.join(sorted(BACKEND_REGISTRY))}"
        )
    return value


def resolve_backend_name(*, prefer: Optional[str] = None, override: Optional[str] = None) -> str:
    """override, then prefer, then the feature flag."""
    for source, value in (("override", override), ("prefer", prefer)):
        name = _check_name(value, source)
        if name is not None:
            return name
    return _check_name(get_backend_type(), "feature flag")


def load_backend_class(name: str) -> Type[ProofSystem]:
    """
    Raises:
        ConfigurationError: If the registered class cannot be imported or is
            not a ProofSystem
    """
    module_path, _, class_name = BACKEND_REGISTRY[name].rpartition(".")
    try:
        backend_cls = getattr(importlib.import_module(module_path), class_name)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Proof backend {name!r} cannot be loaded: {e}") from e
    if not (isinstance(backend_cls, type) and issubclass(backend_cls, ProofSystem)):
        raise ConfigurationError(f"{BACKEND_REGISTRY[name]} is not a ProofSystem")
    return backend_cls


def get_proof_system(
    *, prefer: Optional[str] = None, override: Optional[str] = None, **kwargs: Any
) -> ProofSystem:
    """
    Instantiate the selected proof system.

    Args:
        prefer: Backend name hint, used when no override is given
        override: Backend name that beats every other source (tests)
        **kwargs: Passed to the backend constructor

    Raises:
        ValueError: If a backend name is invalid
        ConfigurationError: If the backend cannot be loaded
    """
    name = resolve_backend_name(prefer=prefer, override=override)
    backend = load_backend_class(name)(**kwargs)
    logger.debug("using %s proof backend", name)
    return backend
