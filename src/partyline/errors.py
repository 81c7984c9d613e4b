"""Errors raised by the party line core.

Everything except :class:`PersistenceError` is user visible: the dispatcher
turns it into a reply. Permission failures use the builtin ``PermissionError``.
"""


class PartyLineError(Exception):
    pass


class ValidationError(PartyLineError):
    pass


class AuthenticationError(PartyLineError):
    pass


class NotFoundError(PartyLineError):
    pass


class PatternError(PartyLineError):
    pass


class PersistenceError(PartyLineError):
    pass
