"""Exception types raised by icntrack operations.

Per-line parse problems are never raised; they are collected into the
``errors``/``warnings`` lists of the parse results. Exceptions are kept for
conditions that make the whole operation meaningless.
"""


class IcnTrackError(Exception):
    """Base class for icntrack errors."""


class StoreNotInitializedError(IcnTrackError):
    """No tracker state was found in the store, so there is nothing to merge into."""

    def __init__(self, message: str = ""):
        super().__init__(
            message
            or "No tracker state found in the store. Open the tracker once "
            "(e.g. `icntrack summary`), then retry."
        )


class UploadParseError(IcnTrackError):
    """Uploaded text could not be turned into an import pack."""


class UnknownDatasetError(IcnTrackError, ValueError):
    """A parser was asked for a dataset it does not support."""
