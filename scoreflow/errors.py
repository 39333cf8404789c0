"""Exception types raised by scoreflow."""


class ScoreflowError(Exception):
    """Base class for all scoreflow errors."""


class AddressError(ScoreflowError):
    """An address was used against a lineage that cannot support the request.

    This signals a malformed containment tree, not bad score data.
    """


class UnrepresentableDurationError(ScoreflowError, ValueError):
    """A duration has no symbolic note-length equivalent."""


class NotationImportError(ScoreflowError, ValueError):
    """The input could not be read as MusicXML."""
