from __future__ import annotations

import codecs
import json
import logging
from numbers import Number
from types import MappingProxyType
from typing import TYPE_CHECKING, NamedTuple, cast

from .decoders import PercentDecoder
from .exceptions import BodyParserError, BodyTooLargeError, DecodeError, FormParseError, JSONParseError, ParseError

if TYPE_CHECKING:  # pragma: no cover
    from collections.abc import Callable, Mapping
    from typing import Any, Literal, Protocol, TypeAlias, TypedDict

    class SupportsRead(Protocol):
        def read(self, __n: int) -> bytes: ...

    class HTTPRequest(Protocol):
        def get_header(self, name: str) -> str | None: ...

    class HTTPResponse(Protocol):
        aborted: bool

        def on_aborted(self, handler: Callable[[], None]) -> Any: ...
        def on_data(self, handler: Callable[[bytes, bool], None]) -> Any: ...
        def close(self) -> Any: ...

    class ParserCallbacks(TypedDict, total=False):
        on_start: Callable[[], None]
        on_data: Callable[[bytes, int, int], None]
        on_field: Callable[[str, str], None]
        on_result: Callable[[Any, bool], None]

    class BodyParserConfig(TypedDict):
        MAX_BODY_SIZE: float
        DECODE_ERRORS: str

    OnResultCallback = Callable[[Any, bool], None]
    OnErrorCallback = Callable[[ParseError], None]

    CallbackName: TypeAlias = Literal["start", "data", "field", "result"]


class ParserOptions(NamedTuple):
    """
    Per-invocation parser options.

    ``as_json`` controls the shape of application/x-www-form-urlencoded
    results: a ``dict`` of key/value pairs when true, or an ordered list of
    ``(key, value)`` tuples when false.  It has no effect on other bodies.
    """

    as_json: bool = True


class ChunkAccumulator:
    """
    Collects the chunks of a request body into a single buffer.  The buffer is
    only handed out once the last chunk has been seen.
    """

    def __init__(self, max_size: float = float("inf")) -> None:
        if not isinstance(max_size, Number) or max_size < 1:
            raise ValueError("max_size must be a positive number, not %r" % max_size)
        self.max_size: int | float = max_size

        self._buffer = bytearray()
        self._complete = False

    @property
    def size(self) -> int:
        """
        The number of bytes currently held.
        """
        return len(self._buffer)

    @property
    def complete(self) -> bool:
        return self._complete

    def accumulate(self, data: bytes, is_last: bool = False) -> bytes | None:
        """
        Append a chunk.  Returns the whole body if this was the last chunk,
        otherwise None.  Raises BodyTooLargeError if the body would grow past
        max_size; nothing of the chunk is kept in that case.
        """
        if self._complete:
            raise BodyParserError("Received a chunk after the last chunk")

        current_size = len(self._buffer)
        if (current_size + len(data)) > self.max_size:
            raise BodyTooLargeError(
                "Body is larger than the maximum of %d bytes" % self.max_size,
                offset=int(self.max_size),
            )

        self._buffer += data

        if not is_last:
            return None

        self._complete = True
        return bytes(self._buffer)

    def discard(self) -> None:
        self._buffer = bytearray()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(size={self.size!r}, complete={self._complete!r})"


class BaseParser:
    """
    This class implements the pieces shared by all body parsers: buffering
    through a :class:`ChunkAccumulator`, abort handling, and the callback
    logic.  Subclasses implement :meth:`decode`, which is only ever called
    once, with the complete body.

    Valid callbacks (* means with data):
        - on_start
        - on_data           *
        - on_result
    """

    #: Whether the result of this parser is a decoded structure.
    parses = True

    def __init__(self, callbacks: ParserCallbacks | None = None, max_size: float = float("inf")) -> None:
        self.logger = logging.getLogger(__name__)
        self.callbacks: ParserCallbacks = {} if callbacks is None else callbacks.copy()
        self.accumulator = ChunkAccumulator(max_size)
        self.aborted = False
        self._started = False

    def callback(self, name: CallbackName, *args: Any) -> None:
        """
        This function calls a provided callback with some data.
        """
        on_name = "on_" + name
        func = self.callbacks.get(on_name)
        if func is None:
            return
        func = cast("Callable[..., Any]", func)
        self.logger.debug("Calling %s", on_name)
        func(*args)

    def set_callback(self, name: CallbackName, new_func: Callable[..., Any] | None) -> None:
        """
        Update the function for a callback.  Removes from the callbacks dict
        if new_func is None.
        """
        if new_func is None:
            self.callbacks.pop("on_" + name, None)  # type: ignore[misc]
        else:
            self.callbacks["on_" + name] = new_func  # type: ignore[literal-required]

    @property
    def max_size(self) -> int | float:
        return self.accumulator.max_size

    @property
    def completed(self) -> bool:
        return self.accumulator.complete

    def write(self, data: bytes, is_last: bool = False) -> int:
        """
        Feed a chunk of the body to the parser.  When ``is_last`` is true the
        whole body is decoded and ``on_result`` is called.

        Returns the number of bytes that were kept.
        """
        if self.aborted:
            self.logger.debug("Ignoring %d bytes written after abort", len(data))
            return 0

        if not self._started:
            self.callback("start")
            self._started = True

        before = self.accumulator.size
        buffer = self.accumulator.accumulate(data, is_last)
        written = self.accumulator.size - before
        if written:
            self.callback("data", data, 0, written)

        if buffer is not None:
            self.accumulator.discard()
            value = self.decode(buffer)
            self.callback("result", value, self.parses)

        return written

    def decode(self, buffer: bytes) -> Any:
        raise NotImplementedError  # pragma: no cover

    def finalize(self) -> None:
        """
        Mark the end of the body.  Use this when chunks were written without
        an ``is_last`` flag.
        """
        self.write(b"", True)

    def abort(self) -> bool:
        """
        Abort parsing.  The buffered data is dropped and no further callbacks
        are made.  Returns False if the parser had already completed or been
        aborted, in which case nothing happens.
        """
        if self.aborted or self.completed:
            return False

        self.aborted = True
        self.accumulator.discard()
        return True

    def close(self) -> None:
        self.accumulator.discard()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(max_size={self.max_size!r})"


class RawParser(BaseParser):
    """
    This parser hands back the body exactly as received, as ``bytes``.  It is
    used for every Content-Type we don't know how to decode.
    """

    parses = False

    def decode(self, buffer: bytes) -> bytes:
        return buffer


class JSONParser(BaseParser):
    """
    This parser decodes an application/json body.  Decoding only happens once
    the last chunk has arrived, so memory use is bounded by the body size.
    """

    def decode(self, buffer: bytes) -> Any:
        try:
            return json.loads(buffer, parse_constant=_reject_constant)
        except json.JSONDecodeError as err:
            raise JSONParseError("Invalid JSON body: %s" % err.msg, offset=err.pos) from err
        except UnicodeDecodeError as err:
            raise JSONParseError("Invalid JSON body encoding: %s" % err.reason, offset=err.start) from err
        except RecursionError as err:
            raise JSONParseError("Invalid JSON body: nested too deeply") from err


def _reject_constant(name: str) -> Any:
    # json accepts NaN, Infinity and -Infinity, which are not JSON.
    raise JSONParseError("Invalid JSON body: %s is not a JSON value" % name)


class FormURLEncodedParser(BaseParser):
    """
    This parser decodes an application/x-www-form-urlencoded body.

    Valid callbacks (* means with data):
        - on_start
        - on_data           *
        - on_field          *
        - on_result

    Some details on how fields are read:
        - Empty sequences (e.g. "a=1&&b=2" or a trailing "&") are skipped.
        - A field is split at its first equals sign; a field without one
          (e.g. "...&name&...") has an empty string as its value.
        - A "+" is a space, in both names and values.
        - If ``as_json`` is true the fields are folded into a dict, and a
          repeated name keeps its last value.
    """

    def __init__(
        self,
        callbacks: ParserCallbacks | None = None,
        as_json: bool = True,
        max_size: float = float("inf"),
        errors: str = "strict",
    ) -> None:
        super().__init__(callbacks, max_size)
        self.as_json = as_json
        self.errors = errors

    def decode(self, buffer: bytes) -> dict[str, str] | list[tuple[str, str]]:
        # The body is decoded in one go, so a character split over two chunks
        # is reassembled correctly.
        decoder = codecs.getincrementaldecoder("utf-8")(self.errors)
        try:
            text = decoder.decode(buffer, final=True)
        except UnicodeDecodeError as err:
            raise FormParseError("Invalid UTF-8 in form body: %s" % err.reason, offset=err.start) from err

        percent_decoder = PercentDecoder(self.errors)
        fields: list[tuple[str, str]] = []
        offset = 0
        for seq in text.split("&"):
            if not seq:
                self.logger.debug("Skipping empty sequence at %d", offset)
                offset += 1
                continue

            name, _, value = seq.partition("=")
            name = self._decode_part(percent_decoder, name, offset)
            value = self._decode_part(percent_decoder, value, offset + len(seq) - len(value))

            self.callback("field", name, value)
            fields.append((name, value))
            offset += len(seq) + 1

        if self.as_json:
            return dict(fields)
        return fields

    @staticmethod
    def _decode_part(percent_decoder: PercentDecoder, part: str, offset: int) -> str:
        try:
            return percent_decoder.decode_component(part)
        except DecodeError as e:
            # Report the offset within the whole body, not the field.
            if e.offset != -1:
                e.offset += offset
            raise

    def __repr__(self) -> str:
        return "{}(as_json={!r}, max_size={!r})".format(self.__class__.__name__, self.as_json, self.max_size)


MIME_TYPE_PARSERS: Mapping[str, type[BaseParser]] = MappingProxyType(
    {
        "application/x-www-form-urlencoded": FormURLEncodedParser,
        "application/json": JSONParser,
    }
)


def get_parser_class(content_type: str | None) -> type[BaseParser]:
    """
    Select the parser for a Content-Type.  The match is exact and case
    sensitive, so a value with parameters (e.g. "; charset=utf-8") is not
    recognised.  Anything unknown is handled by :class:`RawParser`.
    """
    if content_type is None:
        return RawParser
    return MIME_TYPE_PARSERS.get(content_type, RawParser)


def supported_content_types() -> Mapping[str, type[BaseParser]]:
    """
    Returns the read-only mapping of Content-Types that are decoded.
    """
    return MIME_TYPE_PARSERS


class BodyParser:
    """
    This class is the all-in-one body parser.  Given a Content-Type, it picks
    the right parser, feeds it the chunks of the body and calls ``on_result``
    with ``(value, was_parsed)`` once the last chunk has arrived.

    ``was_parsed`` is False only when the body is returned as raw bytes.

    If decoding fails and ``on_error`` was given, it is called with the
    :class:`ParseError`; otherwise the error is raised from the call that
    delivered the last chunk.  ``on_result`` is never called after an error
    or an abort.

    :param content_type: The Content-Type of the body.  May be None.

    :param on_result: Called as ``on_result(value, was_parsed)`` on success.

    :param on_error: Optional callable that receives a fatal ParseError.

    :param options: A :class:`ParserOptions` for this body.

    :param config: Configuration overrides, see DEFAULT_CONFIG.
    """

    #: This is the default configuration for our body parser.
    #: Note: sizes are in bytes.
    DEFAULT_CONFIG: BodyParserConfig = {
        "MAX_BODY_SIZE": float("inf"),
        "DECODE_ERRORS": "strict",
    }

    def __init__(
        self,
        content_type: str | None,
        on_result: OnResultCallback | None,
        on_error: OnErrorCallback | None = None,
        options: ParserOptions = ParserOptions(),
        config: dict[Any, Any] = {},
    ) -> None:
        self.logger = logging.getLogger(__name__)
        self.content_type = content_type
        self.options = options
        self.bytes_received = 0

        self.on_result = on_result
        self.on_error = on_error

        self.config: BodyParserConfig = self.DEFAULT_CONFIG.copy()
        self.config.update(config)  # type: ignore[typeddict-item]

        self.failed = False
        self._result_delivered = False

        def _on_result(value: Any, was_parsed: bool) -> None:
            self._result_delivered = True
            if self.on_result is not None:
                self.on_result(value, was_parsed)

        callbacks: ParserCallbacks = {"on_result": _on_result}

        parser_class = get_parser_class(content_type)
        parser: BaseParser
        if parser_class is FormURLEncodedParser:
            parser = FormURLEncodedParser(
                callbacks,
                as_json=options.as_json,
                max_size=self.config["MAX_BODY_SIZE"],
                errors=self.config["DECODE_ERRORS"],
            )
        else:
            if parser_class is RawParser:
                self.logger.debug("No decoder for Content-Type %r, passing the body through", content_type)
            parser = parser_class(callbacks, max_size=self.config["MAX_BODY_SIZE"])

        self.parser = parser

    @property
    def aborted(self) -> bool:
        return self.parser.aborted

    @property
    def completed(self) -> bool:
        return self._result_delivered

    def write(self, data: bytes, is_last: bool = False) -> int:
        """
        Feed a chunk of the body.  Returns the number of bytes kept.
        """
        if self.failed:
            self.logger.debug("Ignoring %d bytes written after a failure", len(data))
            return 0

        self.bytes_received += len(data)
        try:
            return self.parser.write(data, is_last)
        except ParseError as e:
            self.failed = True
            self.parser.close()
            if self.on_error is None:
                raise
            self.on_error(e)
            return 0

    def on_data(self, data: bytes, is_last: bool) -> None:
        """
        Chunk handler with the ``(data, is_last)`` signature used by hosts.
        """
        self.write(data, is_last)

    def finalize(self) -> None:
        self.write(b"", True)

    def abort(self) -> bool:
        """
        Abort parsing.  Returns True if this call aborted the body, or False
        if the body had already completed, failed or been aborted.
        """
        if self._result_delivered or self.failed:
            return False
        return self.parser.abort()

    def close(self) -> None:
        self.parser.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(content_type={self.content_type!r}, parser={self.parser!r})"


def create_body_parser(
    headers: Mapping[str, str | bytes],
    on_result: OnResultCallback | None,
    on_error: OnErrorCallback | None = None,
    options: ParserOptions = ParserOptions(),
    config: dict[Any, Any] = {},
) -> BodyParser:
    """
    This function is a helper function to aid in creating a BodyParser
    instance.  Given a dictionary-like headers object, it will read the
    Content-Type and pass it on.  A missing Content-Type selects the raw
    parser.

    :param headers: A dictionary-like object of HTTP headers.

    :param on_result: Called with ``(value, was_parsed)``.

    :param on_error: Optional callable that receives a fatal ParseError.

    :param options: A :class:`ParserOptions`.

    :param config: Configuration variables to pass to the BodyParser.
    """
    content_type = headers.get("Content-Type")
    if isinstance(content_type, bytes):
        content_type = content_type.decode("latin-1")

    return BodyParser(content_type, on_result, on_error=on_error, options=options, config=config)


def parse_body(
    response: HTTPResponse,
    request: HTTPRequest,
    on_result: OnResultCallback,
    on_abort: Callable[[], None] | None = None,
    options: ParserOptions = ParserOptions(as_json=True),
    config: dict[Any, Any] = {},
) -> BodyParser:
    """
    Parse the body of a request served by an event-driven HTTP host.

    The host must provide ``response.on_aborted(handler)``,
    ``response.on_data(handler)`` delivering ``(chunk, is_last)``,
    ``response.close()`` and ``request.get_header(name)``.

    ``on_result(value, was_parsed)`` is called at most once, after the last
    chunk.  ``on_abort()`` is called at most once if the connection goes
    away first.  If the body can't be decoded the error is logged and the
    connection is closed; ``on_result`` is not called.
    """
    logger = logging.getLogger(__name__)
    parser: BodyParser | None = None
    aborted_early = False

    def on_aborted() -> None:
        nonlocal aborted_early
        response.aborted = True
        if parser is None:
            # Aborted before the parser was built.
            if aborted_early:
                return
            aborted_early = True
        elif not parser.abort():
            return
        if on_abort is not None:
            on_abort()

    # The abort handler goes first, so it fires even if no data ever comes.
    response.on_aborted(on_aborted)

    content_type = request.get_header("content-type")

    def on_error(e: ParseError) -> None:
        logger.error("Failed to parse %r request body", content_type, exc_info=e)
        response.close()

    parser = BodyParser(content_type, on_result, on_error=on_error, options=options, config=config)
    if aborted_early:
        parser.abort()
    response.on_data(parser.on_data)
    return parser


def parse_stream(
    headers: Mapping[str, str | bytes],
    input_stream: SupportsRead,
    on_result: OnResultCallback,
    options: ParserOptions = ParserOptions(),
    chunk_size: int = 1048576,
) -> None:
    """
    This function is useful if you just want to parse a request body from a
    file-like object, without writing chunks yourself.  It reads at most
    Content-Length bytes, if that header is given.

    Decoding errors are raised.

    :param headers: A dictionary-like object of HTTP headers.

    :param input_stream: A file-like object that represents the request body.

    :param on_result: Called with ``(value, was_parsed)``.

    :param options: A :class:`ParserOptions`.

    :param chunk_size: The maximum size to read from the input stream and
                       write to the parser at one time.  Defaults to 1 MiB.
    """
    parser = create_body_parser(headers, on_result, options=options)

    content_length: int | float | bytes | str | None = headers.get("Content-Length")
    if content_length is not None:
        content_length = int(content_length)
    else:
        content_length = float("inf")
    bytes_read = 0

    while True:
        # Read only up to the Content-Length given.
        max_readable = int(min(content_length - bytes_read, chunk_size))
        buff = input_stream.read(max_readable)

        bytes_read += len(buff)
        is_last = len(buff) != max_readable or bytes_read == content_length
        parser.write(buff, is_last)

        if is_last:
            break
