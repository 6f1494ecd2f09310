"""Exceptions raised by the khata stores and the bill draft.

Every one of them means the attempted action was a no-op: nothing was
mutated and nothing was written to storage.
"""


class KhataError(Exception):
    """Base class for user-facing rejections."""


class ValidationRejected(KhataError):
    """Missing field, duplicate mobile, bad PIN format, empty bill..."""


class PinMismatch(KhataError):
    """Destructive action attempted with the wrong PIN."""


class NotFound(KhataError):
    pass
