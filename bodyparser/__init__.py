from ._version import __version__
from .bodyparser import (
    BaseParser,
    BodyParser,
    ChunkAccumulator,
    FormURLEncodedParser,
    JSONParser,
    ParserOptions,
    RawParser,
    create_body_parser,
    get_parser_class,
    parse_body,
    parse_stream,
    supported_content_types,
)
from .decoders import PercentDecoder, form_decode, percent_decode

__all__ = (
    "__version__",
    "BaseParser",
    "BodyParser",
    "ChunkAccumulator",
    "FormURLEncodedParser",
    "JSONParser",
    "ParserOptions",
    "PercentDecoder",
    "RawParser",
    "create_body_parser",
    "form_decode",
    "get_parser_class",
    "parse_body",
    "parse_stream",
    "percent_decode",
    "supported_content_types",
)
