from enum import Enum


class ErrorKind(Enum):
    """The kind of failure behind a :class:`FormParserError`."""
    CONTENT_TYPE_MISSING = 'content-type-missing'
    CONTENT_TYPE_MISMATCH = 'content-type-mismatch'
    BOUNDARY_MISSING = 'boundary-missing'
    UNEXPECTED_END_OF_STREAM = 'unexpected-end-of-stream'
    MALFORMED = 'malformed'
    FILE = 'file'
    STREAM = 'stream'


class FormParserError(ValueError):
    """Base error class for our form parser."""
    kind = None


class ContentTypeError(FormParserError):
    """Raised before any of the body is read, when the Content-Type header
    does not describe a multipart/form-data body we can parse.
    """
    pass


class ContentTypeMissing(ContentTypeError):
    """The Content-Type header is absent."""
    kind = ErrorKind.CONTENT_TYPE_MISSING


class ContentTypeMismatch(ContentTypeError):
    """The Content-Type header is not multipart/form-data."""
    kind = ErrorKind.CONTENT_TYPE_MISMATCH


class BoundaryMissing(ContentTypeError):
    """The Content-Type header carries no boundary parameter."""
    kind = ErrorKind.BOUNDARY_MISSING


class ParseError(FormParserError):
    """This exception (or a subclass) is raised when there is an error while
    parsing the body itself.
    """
    kind = ErrorKind.MALFORMED


class MultipartParseError(ParseError):
    """This is a specific error that is raised when the MultipartParser detects
    a structural error, such as garbage following a boundary.
    """
    pass


class UnexpectedEndOfStream(MultipartParseError, EOFError):
    """The stream ended before a boundary or a line terminator was found."""
    kind = ErrorKind.UNEXPECTED_END_OF_STREAM


class FileError(FormParserError, OSError):
    """Exception class for problems with the storage a part is spooled to."""
    kind = ErrorKind.FILE


class StreamError(FormParserError, OSError):
    """Exception class for read failures of the underlying input stream."""
    kind = ErrorKind.STREAM
