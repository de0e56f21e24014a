"""Exception hierarchy for the halftone engine.

Shape and value problems in caller input raise the builtin ``ValueError``;
the classes here cover engine-level conditions a host is expected to handle.
"""


class HalftoneError(Exception):
    """Base class for engine errors."""


class BackendUnavailable(HalftoneError):
    """The accelerated field backend could not initialize or evaluate.

    The engine catches this, logs it, and switches to the grid sampler.
    """


class RenderCancelled(HalftoneError):
    """A render pass was superseded by a newer request before finishing."""


class ExportCancelled(HalftoneError):
    """A vector export was cancelled before the document was complete."""
