class GameError(ValueError):
    """Base class for domain errors reported back to the admin."""


class PreconditionError(GameError):
    """An admin operation was issued in a state that does not allow it."""


class NoPlayersError(PreconditionError):
    def __init__(self, message: str = "Cannot start: no eligible player is registered"):
        super().__init__(message)


class NoQuestionsError(PreconditionError):
    def __init__(self, message: str = "Cannot start: the question bank is empty"):
        super().__init__(message)


class RoundInProgressError(PreconditionError):
    def __init__(self, message: str = "A round is already running in this channel"):
        super().__init__(message)


class RoundNotStartedError(PreconditionError):
    def __init__(self, message: str = "No round is running in this channel"):
        super().__init__(message)


class QuestionBankError(GameError):
    """The question bank is missing or malformed; raised at load time."""
