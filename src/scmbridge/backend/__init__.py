"""Version-control backends."""

from scmbridge.backend.base import Backend
from scmbridge.backend.cache import ResultCache
from scmbridge.backend.context import ScmContext
from scmbridge.backend.fossil import FossilBackend
from scmbridge.backend.git import GitBackend
from scmbridge.backend.registry import BACKENDS, detect_backend

__all__ = [
    "BACKENDS",
    "Backend",
    "FossilBackend",
    "GitBackend",
    "ResultCache",
    "ScmContext",
    "detect_backend",
]
