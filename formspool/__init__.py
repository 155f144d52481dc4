# This is the canonical package information.
__author__    = 'Andrew Dunham'
__license__   = 'Apache'

# We get the version from a sub-file that can be automatically generated.
from ._version import __version__

from .exceptions import (
    BoundaryMissing,
    ContentTypeMismatch,
    ContentTypeMissing,
    ErrorKind,
    FileError,
    FormParserError,
    MultipartParseError,
    StreamError,
    UnexpectedEndOfStream,
)
from .multipart import (
    Item,
    MultipartParser,
    TempFileStorage,
    parse_environ,
    parse_form,
    parse_multipart,
)

__all__ = (
    "__version__",
    "BoundaryMissing",
    "ContentTypeMismatch",
    "ContentTypeMissing",
    "ErrorKind",
    "FileError",
    "FormParserError",
    "Item",
    "MultipartParseError",
    "MultipartParser",
    "StreamError",
    "TempFileStorage",
    "UnexpectedEndOfStream",
    "parse_environ",
    "parse_form",
    "parse_multipart",
)
