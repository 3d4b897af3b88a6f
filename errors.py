class QuickPickError(Exception):
    kind = "unknown"
    default_message = "Something went wrong. Please try again."

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(QuickPickError):
    kind = "not_found"
    default_message = "Not found."


class SessionNotFound(NotFoundError):
    default_message = "Session not found. It may have expired."


class ParticipantNotFound(NotFoundError):
    default_message = "Participant not found."


class AlreadyStartedError(QuickPickError):
    kind = "already_started"
    default_message = "Session has already started."


class SessionFullError(QuickPickError):
    kind = "full"
    default_message = "This session is full. Maximum 8 participants allowed."


class ValidationError(QuickPickError, ValueError):
    kind = "validation"
    default_message = "Invalid input."


class UnknownError(QuickPickError):
    kind = "unknown"
