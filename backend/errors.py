"""Recoverable room-level errors.

Lobby and game operations raise these; the socket layer reports them to
the originating connection on the event's error channel.
"""


class GameError(Exception):
    """Base class for errors reported back to a client."""
    default_message = "Something went wrong."

    def __init__(self, message: str = ""):
        self.message = message or self.default_message
        super().__init__(self.message)


class RoomNotFound(GameError):
    default_message = "Room does not exist."


class RoomFull(GameError):
    default_message = "Room is full."


class GameInProgress(GameError):
    default_message = "Cannot join: game is already in progress."


class UsernameTaken(GameError):
    default_message = "Username is already in this room."


class Unauthorized(GameError):
    default_message = "You are not authorized to do that."


class InvalidSettings(GameError):
    default_message = "Invalid settings."


class AlreadyAnswered(GameError):
    default_message = "You have already answered this question."


class NoActiveQuestion(GameError):
    default_message = "No active question."


class InvalidState(GameError):
    default_message = "Invalid game state."


class PersistenceFailure(GameError):
    default_message = "Could not save to the database."


class UpstreamProviderFailure(GameError):
    default_message = "Could not fetch trivia questions. Please try again later."
