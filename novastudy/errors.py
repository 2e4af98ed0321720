class NovaStudyError(Exception):
    """Base class for errors raised by the study core."""


class InvalidInputError(NovaStudyError):
    """Rejected before any state mutation (bad quality, empty set list, wrong card)."""


class NotFoundError(NovaStudyError):
    """Referenced card, set or session does not exist."""


class UnauthorizedError(NovaStudyError):
    """Operation addressed at a record the caller does not own."""


class PersistenceError(NovaStudyError):
    """A Card Store or Session Store write failed."""
