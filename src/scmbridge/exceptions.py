"""Exceptions raised by scmbridge."""


class ScmError(Exception):
    """Base class for scmbridge errors."""


class OperationCancelled(ScmError):
    """Raised at a yield point once the query's cancel token has fired."""
