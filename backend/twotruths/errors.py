"""Error taxonomy for the game coordinator.

Domain code raises these; the socket dispatcher turns them into ``error``
replies carrying ``code`` so clients can react without parsing messages.
"""


class GameError(Exception):
    code = 'GAME_ERROR'
    default_message = 'Request could not be processed'

    def __init__(self, message=None, code=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if code:
            self.code = code

    def to_dict(self):
        return {'type': 'error', 'code': self.code, 'message': self.message}


class ProtocolViolation(GameError):
    code = 'PROTOCOL_ERROR'
    default_message = 'Malformed or out-of-phase message'


class NotAcceptingGuesses(ProtocolViolation):
    code = 'NOT_ACCEPTING_GUESSES'
    default_message = 'Not accepting guesses at this time'


class InvalidIndex(ProtocolViolation):
    code = 'INVALID_INDEX'
    default_message = 'Invalid guess index'


class InvalidTransition(ProtocolViolation):
    code = 'INVALID_TRANSITION'
    default_message = 'Phase transition not allowed'


class NotAuthorized(ProtocolViolation):
    code = 'NOT_AUTHORIZED'
    default_message = 'Only the admin may do that'


class StaleReference(GameError):
    code = 'STALE_REFERENCE'
    default_message = 'That round is no longer active'


class WrongTarget(StaleReference):
    code = 'WRONG_TARGET'
    default_message = 'Guess target is not the active round'


class IdentityConflict(GameError):
    code = 'IDENTITY_CONFLICT'
    default_message = 'Identity already in use'


class AdminAlreadyActive(IdentityConflict):
    code = 'ADMIN_EXISTS'
    default_message = ('An admin window is already open for this game. '
                       'Please use the existing window or close it first.')


class AlreadyInAnotherSession(IdentityConflict):
    code = 'ALREADY_IN_GAME'
    default_message = 'Already in another game'


class ValidationFailure(GameError):
    code = 'API_ERROR'
    default_message = 'Game session requires API validation. Please wait for the admin to fix this.'


class SessionNotFound(GameError):
    code = 'SERVER_RESTART'
    default_message = 'Server was restarted. Please refresh the page to join a new game.'
