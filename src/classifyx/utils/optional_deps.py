"""Optional dependency helpers.

The core install stays lightweight: the TensorFlow-backed runtime is only
imported when a model is actually built with it.
"""

from __future__ import annotations

from importlib import import_module
from types import ModuleType

_PIP_NAME_OVERRIDES = {
    "PIL": "Pillow",
    "google.protobuf": "protobuf",
}


def optional_import(module_name: str) -> tuple[ModuleType | None, BaseException | None]:
    """Attempt to import a module, returning (module, error)."""
    try:
        return import_module(module_name), None
    except Exception as exc:  # noqa: BLE001 - report import failure to the caller
        return None, exc


def require(module_name: str, *, extra: str | None = None, purpose: str | None = None) -> ModuleType:
    """Import ``module_name``, raising a clean ImportError with an install hint if missing."""
    module, error = optional_import(module_name)
    if module is not None:
        return module

    if extra:
        hint = f"pip install 'classifyx[{extra}]'"
    else:
        pip_target = _PIP_NAME_OVERRIDES.get(module_name, module_name.split(".", 1)[0])
        hint = f"pip install '{pip_target}'"

    context = f" for {purpose}" if purpose else ""
    raise ImportError(
        f"Optional dependency '{module_name}' is required{context}.\n"
        f"Install it via:\n  {hint}\n"
        f"Original error: {error}"
    ) from error
