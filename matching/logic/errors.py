"""Exceptions raised at the matching engine's boundaries."""


class ValidationFailure(ValueError):
    """Scholarship criteria or request data that cannot be evaluated."""


class PersistenceFailure(RuntimeError):
    """The model store or application source could not be read or written."""


class ModelNotFound(LookupError):
    """No stored model has the requested id."""
