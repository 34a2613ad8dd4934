class SortingError(ValueError):
    """Base class for precondition violations raised while sorting."""


class ConfigurationError(SortingError):
    """A setting is missing, out of range, or inconsistent with the data.

    Examples are an electrode with fewer spikes than `minspk`, or a number of
    bisections that yields more clusters than an 8-bit id can address.

    """


class SizeMismatchError(SortingError):
    """Array dimensions disagree, e.g. between labels and components."""


class DegenerateInputError(SortingError):
    """Input is empty, non-finite, or has no variance to work with."""
