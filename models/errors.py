"""Exceptions raised by the mail handler.

Fatal errors abort a run; per-message errors are reported and the run moves
on to the next message.
"""


class MailHandlerError(Exception):
    """Base class for all mail handler errors."""


class ConnectivityError(MailHandlerError):
    """The rule store or the mailbox could not be reached."""


class FolderNotFoundError(MailHandlerError):
    """The source mailbox folder does not exist."""


class MalformedRuleError(MailHandlerError):
    """A rule record has a bad regular expression or a missing field."""


class LogTargetRegistrationError(MailHandlerError):
    """Registering an event log source failed for a reason other than it already existing."""


class LogTargetUnregisteredError(MailHandlerError):
    """A rule tried to write to a log source that was not registered this run."""


class MessageActionError(MailHandlerError):
    """Emitting an event or mutating a single message failed."""
