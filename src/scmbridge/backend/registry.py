"""Backend detection."""

from typing import List, Optional, Type

import structlog

from scmbridge.backend.base import Backend
from scmbridge.backend.context import ScmContext
from scmbridge.backend.fossil import FossilBackend
from scmbridge.backend.git import GitBackend

logger = structlog.get_logger(__name__)

# Detection order: the first backend claiming a directory wins
BACKENDS: List[Type[Backend]] = [GitBackend, FossilBackend]


def detect_backend(directory: str, context: Optional[ScmContext] = None) -> Optional[Backend]:
    """Create the backend serving ``directory``.

    Args:
        directory: Project directory to inspect
        context: Session context shared by the returned backend

    Returns:
        The first backend whose marker is present and whose executable
        resolves, or None when no backend claims the directory
    """
    context = context or ScmContext()
    for backend_class in BACKENDS:
        backend = backend_class(context)
        if backend.detect(directory):
            logger.info("backend_detected", backend=backend.name, directory=directory)
            return backend
    logger.debug("no_backend_detected", directory=directory)
    return None
