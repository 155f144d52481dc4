from __future__ import annotations

import logging
import os
import tempfile
from contextlib import closing
from email.message import Message
from enum import IntEnum
from typing import TYPE_CHECKING
from urllib.parse import unquote

from .exceptions import (
    BoundaryMissing,
    ContentTypeMismatch,
    ContentTypeMissing,
    FileError,
    FormParserError,
    MultipartParseError,
)
from .streams import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_LINE_LENGTH,
    LimitedStream,
    PushbackReader,
    copy_to_boundary,
    read_line,
)

if TYPE_CHECKING:  # pragma: no cover
    from typing import Any, BinaryIO, Mapping, Protocol, TypedDict

    from .streams import SupportsRead

    class Sink(Protocol):
        name: str

        def write(self, __data: bytes) -> int | None: ...

        def close(self) -> None: ...

    class Storage(Protocol):
        def create(self, extension: str) -> Sink: ...

        def open(self, location: str) -> BinaryIO: ...

        def delete(self, location: str) -> None: ...

    class ParserConfig(TypedDict, total=False):
        UPLOAD_DIR: str | None
        UPLOAD_PREFIX: str
        DEFAULT_FILE_TYPE: str
        READ_CHUNK_SIZE: int
        MAX_LINE_LENGTH: int


# Get logger for this module.
logger = logging.getLogger(__name__)

MULTIPART_FORM_DATA = 'multipart/form-data'
CONTENT_DISPOSITION = 'content-disposition'

# The file type used when an upload name has no extension.
DEFAULT_FILE_TYPE = 'unknown'

# Longest extension the default storage will put in a file name.
MAX_EXTENSION_LENGTH = 16

# The two hyphens that follow the final delimiter of a body.
TERMINAL_MARKER = '--'

CRLF = b'\r\n'
HYPHENS = b'--'


class MultipartState(IntEnum):
    """States of the :class:`MultipartParser`."""
    PREAMBLE = 0
    BOUNDARY_TAIL = 1
    HEADERS = 2
    BODY = 3
    END = 4


def parse_options_header(value: str | bytes | None) -> tuple[str, dict[str, str]]:
    """
    Parses a Content-Type header into a value in the following format:
        (content_type, {parameters})
    The content type and the parameter names are lower-cased.
    """
    if not value:
        return ('', {})

    if isinstance(value, bytes):
        value = value.decode('latin-1')

    # If we have no options, return the string as-is.
    if ';' not in value:
        return (value.lower().strip(), {})

    message = Message()
    message['content-type'] = value
    params = message.get_params()
    assert params, "At least the content type value should be present"
    ctype = params.pop(0)[0].lower().strip()
    options = {}
    for key, param in params:
        # RFC 2231 values come back as (charset, language, value).
        if isinstance(param, tuple):
            param = param[-1]
        options[key] = param
    return ctype, options


def get_boundary(content_type: str | bytes | None) -> bytes:
    """
    Checks that ``content_type`` describes a multipart/form-data body and
    returns its boundary token.  Nothing is read from the body, so this can be
    called before deciding to accept it.
    """
    if not content_type:
        logger.error("No Content-Type header given")
        raise ContentTypeMissing("No Content-Type header given")

    ctype, options = parse_options_header(content_type)
    if not ctype.startswith(MULTIPART_FORM_DATA):
        logger.error("Unknown Content-Type: %r", ctype)
        raise ContentTypeMismatch("Unknown Content-Type: %r" % ctype)

    boundary = options.get('boundary')
    if not boundary:
        logger.error("No boundary given")
        raise BoundaryMissing("No boundary given")

    try:
        return boundary.encode('latin-1')
    except UnicodeEncodeError:
        logger.error("Invalid boundary: %r", boundary)
        raise BoundaryMissing("Invalid boundary: %r" % boundary)


def get_field_value(field: str) -> str | None:
    """
    Given a field, extract its value, e.g. ``name="value"`` -> ``value``.
    Quotes are stripped and the value is percent-decoded as UTF-8.  Returns
    None if the field has no ``=``.
    """
    _, sep, value = field.partition('=')
    if not sep:
        return None

    value = value.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        value = value[1:-1]

    return unquote(value, encoding='utf-8', errors='replace')


def parse_content_disposition(line: str) -> tuple[str | None, str | None] | None:
    """
    Extracts the ``name`` and ``filename`` parameters from a header line.
    Returns None when the line is not a Content-Disposition header; either
    parameter is None when it is missing or malformed.
    """
    header, sep, value = line.partition(':')
    if not sep or header.strip().lower() != CONTENT_DISPOSITION:
        return None

    field_name = file_name = None
    for segment in value.split(';'):
        segment = segment.strip()
        if segment.startswith('name='):
            field_name = get_field_value(segment)
        elif segment.startswith('filename='):
            file_name = get_field_value(segment)

    return field_name, file_name


def get_file_type(file_name: str | None, default: str = DEFAULT_FILE_TYPE) -> str:
    """
    Returns the file type of ``file_name`` as a lower case string.  The file
    type is everything after the last dot; ``default`` is returned if there
    is none.
    """
    if file_name is None:
        return default

    index = file_name.rfind('.')
    if index == -1:
        return default

    return file_name[index + 1:].lower()


class TempFileStorage:
    """
    Spools parts to named temporary files.  The files are not deleted when
    closed; whoever holds the resulting :class:`Item` owns them.
    """
    def __init__(self, upload_dir: str | None = None, prefix: str = 'upload-',
                 default_extension: str = DEFAULT_FILE_TYPE) -> None:
        self.upload_dir = upload_dir
        self.prefix = prefix
        self.default_extension = default_extension

    @classmethod
    def from_config(cls, config: ParserConfig) -> TempFileStorage:
        return cls(
            upload_dir=config.get('UPLOAD_DIR'),
            prefix=config.get('UPLOAD_PREFIX', 'upload-'),
            default_extension=config.get('DEFAULT_FILE_TYPE', DEFAULT_FILE_TYPE),
        )

    def create(self, extension: str) -> Sink:
        # The extension comes from the client, so it must not be able to
        # steer the file out of the upload directory or past the file
        # system's name length limit.
        if not extension.isalnum() or len(extension) > MAX_EXTENSION_LENGTH:
            logger.warning("Replacing unusable extension %r with %r", extension, self.default_extension)
            extension = self.default_extension

        options = {'prefix': self.prefix, 'suffix': '.' + extension, 'dir': self.upload_dir}
        logger.info("Creating a temporary file with options: %r", options)
        try:
            return tempfile.NamedTemporaryFile(mode='w+b', delete=False, **options)
        except OSError as e:
            logger.exception("Error creating named temporary file")
            raise FileError("Error creating named temporary file") from e

    def open(self, location: str) -> BinaryIO:
        try:
            return open(location, 'rb')
        except OSError as e:
            raise FileError("Error opening spooled file: %r" % location) from e

    def delete(self, location: str) -> None:
        try:
            os.unlink(location)
        except FileNotFoundError:
            pass

    def __repr__(self) -> str:
        return "%s(upload_dir=%r, prefix=%r)" % (
            self.__class__.__name__,
            self.upload_dir,
            self.prefix,
        )


class Item:
    """
    One part of a multipart/form-data body.  The part's content has been
    spooled to ``location`` in the storage that created it, and the item owns
    it from then on: call :meth:`delete` when done with it.
    """
    def __init__(self, location: str, field_name: str | None = None, file_name: str | None = None,
                 size: int = 0, extension: str = DEFAULT_FILE_TYPE, storage: Storage | None = None) -> None:
        self._location = location
        self._field_name = field_name
        self._file_name = file_name
        self._size = size
        self._extension = extension
        self._storage = storage if storage is not None else TempFileStorage()

    @property
    def location(self) -> str:
        """
        Where the part's content is stored.
        """
        return self._location

    @property
    def field_name(self) -> str | None:
        """
        The form field name, from the ``name`` parameter of the part's
        Content-Disposition header.
        """
        return self._field_name

    @property
    def file_name(self) -> str | None:
        """
        The file name on the client machine, from the ``filename`` parameter.
        None for plain form fields.
        """
        return self._file_name

    @property
    def size(self) -> int:
        return self._size

    @property
    def extension(self) -> str:
        return self._extension

    @property
    def is_file(self) -> bool:
        return self._file_name is not None

    def open(self) -> BinaryIO:
        """
        Opens the spooled content for reading.
        """
        return self._storage.open(self._location)

    def read(self) -> bytes:
        with self.open() as f:
            return f.read()

    def delete(self) -> None:
        """
        Deletes the spooled content.  Deleting twice is harmless.
        """
        self._storage.delete(self._location)

    def __repr__(self) -> str:
        return "%s(field_name=%r, file_name=%r, location=%r, size=%r)" % (
            self.__class__.__name__,
            self.field_name,
            self.file_name,
            self.location,
            self.size,
        )


class _NullSink:
    def write(self, data: bytes) -> int:
        return len(data)


class MultipartParser:
    """
    This class parses a multipart/form-data body read from a blocking
    stream.  Each part is spooled to a sink obtained from ``storage`` and
    becomes an :class:`Item`.  Parsing is all or nothing: if it fails, the
    storage of every part seen so far is deleted before the error is raised.

    :param boundary: The boundary token from the Content-Type header.

    :param storage: Creates and deletes the sinks parts are spooled to.
                    Defaults to a :class:`TempFileStorage` built from the
                    config.

    :param config: Overrides for :attr:`DEFAULT_CONFIG`.
    """
    #: This is the default configuration for our parser.
    DEFAULT_CONFIG: ParserConfig = {
        'UPLOAD_DIR': None,
        'UPLOAD_PREFIX': 'upload-',
        'DEFAULT_FILE_TYPE': DEFAULT_FILE_TYPE,
        'READ_CHUNK_SIZE': DEFAULT_CHUNK_SIZE,
        'MAX_LINE_LENGTH': DEFAULT_MAX_LINE_LENGTH,
    }

    def __init__(self, boundary: bytes | str, storage: Storage | None = None, config: ParserConfig = {}) -> None:
        if isinstance(boundary, str):
            try:
                boundary = boundary.encode('latin-1')
            except UnicodeEncodeError:
                raise BoundaryMissing("Invalid boundary: %r" % boundary)
        if not boundary:
            raise BoundaryMissing("No boundary given")

        self.config: ParserConfig = self.DEFAULT_CONFIG.copy()
        self.config.update(config)

        self.boundary = boundary
        self.delimiter = CRLF + HYPHENS + boundary

        if storage is None:
            storage = TempFileStorage.from_config(self.config)
        self.storage = storage

    def parse(self, stream: SupportsRead) -> list[Item]:
        """
        Parses the body in ``stream``, returning one item per part in the
        order they appear.
        """
        reader = PushbackReader(stream, len(self.delimiter), self.config['READ_CHUNK_SIZE'])
        items: list[Item] = []
        try:
            self._parse(reader, items)
        except BaseException:
            if items:
                logger.warning("Parsing failed, deleting %d spooled part(s)", len(items))
            for item in items:
                self._discard(item.location)
            raise

        logger.debug("Parsed %d part(s)", len(items))
        return items

    def _parse(self, reader: PushbackReader, items: list[Item]) -> None:
        state = MultipartState.PREAMBLE
        field_name = file_name = None

        while state != MultipartState.END:
            if state == MultipartState.PREAMBLE:
                # The first delimiter has no leading CRLF, since nothing
                # precedes it.  Supply one and drop whatever comes before.
                reader.unread(CRLF)
                skipped = copy_to_boundary(reader, _NullSink(), self.delimiter)
                if skipped:
                    logger.debug("Skipped %d bytes of preamble", skipped)
                reader.skip(len(self.delimiter))
                state = MultipartState.BOUNDARY_TAIL

            elif state == MultipartState.BOUNDARY_TAIL:
                field_name = file_name = None
                state = self._read_boundary_tail(reader)

            elif state == MultipartState.HEADERS:
                line = read_line(reader, self.config['MAX_LINE_LENGTH'])

                if line == TERMINAL_MARKER:
                    state = MultipartState.END
                elif not line:
                    state = MultipartState.BODY
                else:
                    disposition = parse_content_disposition(line)
                    if disposition is None:
                        logger.debug("Ignoring header: %r", line)
                        continue

                    name, upload_name = disposition
                    if name is not None:
                        field_name = name
                    if upload_name is not None:
                        file_name = upload_name

            elif state == MultipartState.BODY:
                items.append(self._spool_part(reader, field_name, file_name))
                reader.skip(len(self.delimiter))
                state = MultipartState.BOUNDARY_TAIL

            else:                   # pragma: no cover (error case)
                raise MultipartParseError("Reached an unknown state %d" % state)

    def _read_boundary_tail(self, reader: PushbackReader) -> MultipartState:
        # Two hyphens right after a delimiter close the body; anything after
        # them is epilogue and is never read.
        marker = reader.read(len(HYPHENS))
        if marker == HYPHENS:
            return MultipartState.END
        reader.unread(marker)

        # Otherwise only transport padding may precede the line break.
        tail = read_line(reader, self.config['MAX_LINE_LENGTH'])
        if tail.strip(' \t'):
            raise MultipartParseError("Unexpected data after boundary: %r" % tail)

        return MultipartState.HEADERS

    def _spool_part(self, reader: PushbackReader, field_name: str | None, file_name: str | None) -> Item:
        extension = get_file_type(file_name, self.config['DEFAULT_FILE_TYPE'])
        sink = self.storage.create(extension)
        location = sink.name
        logger.debug("Spooling part %r (file name %r) to %r", field_name, file_name, location)

        try:
            with closing(sink):
                size = copy_to_boundary(reader, sink, self.delimiter)
        except BaseException as e:
            self._discard(location)
            if isinstance(e, OSError) and not isinstance(e, FormParserError):
                logger.exception("Error writing to %r", location)
                raise FileError("Error writing to %r" % location) from e
            raise

        return Item(location, field_name, file_name, size, extension, self.storage)

    def _discard(self, location: str) -> None:
        try:
            self.storage.delete(location)
        except OSError:
            logger.exception("Error deleting %r", location)

    def __repr__(self) -> str:
        return "%s(boundary=%r)" % (self.__class__.__name__, self.boundary)


def _get_content_length(value: str | bytes | int | None) -> int | None:
    if value is None or value == '':
        return None
    try:
        length = int(value)
    except ValueError:
        logger.warning("Ignoring invalid Content-Length: %r", value)
        return None
    return length if length >= 0 else None


def _limit(stream: SupportsRead, content_length: str | bytes | int | None) -> SupportsRead:
    length = _get_content_length(content_length)
    if length is None:
        return stream
    return LimitedStream(stream, length)


def parse_multipart(stream: SupportsRead, content_type: str | bytes | None, storage: Storage | None = None,
                    config: ParserConfig = {}) -> list[Item]:
    """
    This function is the simplest way to parse a multipart/form-data body.
    The Content-Type header is checked before anything is read from
    ``stream``.

    :param stream: A blocking stream with a ``read(n)`` method.

    :param content_type: The value of the Content-Type header, or None.

    :param storage: Where to spool the parts.  Defaults to temporary files.

    :param config: Configuration for the :class:`MultipartParser`.
    """
    boundary = get_boundary(content_type)
    parser = MultipartParser(boundary, storage, config)
    return parser.parse(stream)


def parse_form(headers: Mapping[str, Any], input_stream: SupportsRead, storage: Storage | None = None,
               config: ParserConfig = {}) -> list[Item]:
    """
    Parses a request body given its headers.  Header names are matched
    case-insensitively.  If a Content-Length header is present, no more than
    that many bytes are read from ``input_stream``.
    """
    content_type = content_length = None
    for name, value in headers.items():
        name = name.lower()
        if name == 'content-type':
            content_type = value
        elif name == 'content-length':
            content_length = value

    boundary = get_boundary(content_type)
    parser = MultipartParser(boundary, storage, config)
    return parser.parse(_limit(input_stream, content_length))


def parse_environ(environ: Mapping[str, Any], storage: Storage | None = None,
                  config: ParserConfig = {}) -> list[Item]:
    """
    Parses the body of a WSGI request.
    """
    boundary = get_boundary(environ.get('CONTENT_TYPE'))
    parser = MultipartParser(boundary, storage, config)
    return parser.parse(_limit(environ['wsgi.input'], environ.get('CONTENT_LENGTH')))
