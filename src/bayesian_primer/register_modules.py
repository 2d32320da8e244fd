"""Register modules in a directory

Used to discover the MCMC backends: every module in the `mc_sampling` package which
defines `_register_name` is picked up and made available under that name.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, LBL/UCB
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
import sys
from pathlib import Path
from types import ModuleType
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class ValidationFunction(Protocol):
    def __call__(self, name: str, module: Any) -> None: ...


def validation_noop(name: str, module: Any) -> None: ...


def discover_and_register_modules(
    calling_module_name: str,
    required_attributes: list[str],
    validation_function: ValidationFunction | None = None,
    fail_on_failed_validation: bool = True,
) -> dict[str, ModuleType]:
    """Discover and register the modules that live next to the calling module.

    A module opts in by defining a `_register_name` attribute. It is then checked for the
    required attributes, validated, and returned under its registered name.

    Args:
        calling_module_name: `__name__` of the module requesting the registration.
        required_attributes: Attributes which each registered module must define.
        validation_function: Further validation of a candidate module. Problems are signaled
            by raising an exception.
        fail_on_failed_validation: If True, a failed validation is raised. Otherwise, it's
            logged and the module is still registered. Default: True.

    Returns:
        Map from registered name to module.
    """
    registered_modules: dict[str, ModuleType] = {}
    if validation_function is None:
        validation_function = validation_noop
    register_attribute = "_register_name"
    required_attributes = [*required_attributes, register_attribute]

    # We look in the directory of the calling module, and import relative to its package.
    calling_module = sys.modules[calling_module_name]
    package_dir = Path(getattr(calling_module, "__file__", "")).parent
    calling_module_package = getattr(calling_module, "__package__", __package__)

    for module_info in sorted(pkgutil.iter_modules([str(package_dir)]), key=lambda m: m.name):
        module = importlib.import_module(f".{module_info.name}", calling_module_package)

        if not hasattr(module, register_attribute):
            logger.debug(f"Skipping module {module_info.name}")
            continue

        missing_attributes = [attr for attr in required_attributes if not hasattr(module, attr)]
        if missing_attributes:
            msg = f"Requested module {module_info.name}, but missing attributes: {missing_attributes}"
            raise ValueError(msg)

        name = module._register_name
        if name in registered_modules:
            msg = f"Module {module_info.name} tried to register under '{name}', which is already taken by {registered_modules[name].__name__}"
            raise ValueError(msg)

        try:
            validation_function(name=name, module=module)
        except Exception as e:
            if fail_on_failed_validation:
                msg = f"Failed validation of module {module_info.name} under name '{name}'"
                raise ValueError(msg) from e
            logger.exception(e)

        logger.debug(f"Registering module {name}")
        registered_modules[name] = module

    return registered_modules
