"""
Job handler registration.

Handlers live in application code. A worker imports the configured modules at
startup; each module registers its handlers with the global job registry on
import.
"""

import importlib
import logging
from collections.abc import Iterable

from jobengine.v1.core.registries import job_registry

logger = logging.getLogger(__name__)


def load_handler_modules(modules: Iterable[str]) -> list[str]:
    """
    Import handler modules and return the job types registered afterwards.

    Raises:
        ImportError: a module could not be imported
    """
    for module_name in modules:
        module_name = module_name.strip()
        if not module_name:
            continue
        importlib.import_module(module_name)
        logger.info("Loaded job handler module", extra={"module": module_name})

    registered = job_registry.list()
    logger.info(
        "Job handlers registered", extra={"registered_handlers": registered}
    )
    return registered
