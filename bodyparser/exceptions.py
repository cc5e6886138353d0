class BodyParserError(ValueError):
    """Base error class for our body parser."""


class ParseError(BodyParserError):
    """This exception (or a subclass) is raised when there is an error while
    parsing a request body.
    """

    def __init__(self, *args: object, offset: int = -1) -> None:
        super().__init__(*args)
        #: This is the offset in the buffered body (or decoded text) at which
        #: the parse error occurred.  It will be -1 if not specified.
        self.offset = offset


class JSONParseError(ParseError):
    """This is a specific error that is raised when the JSONParser is given a
    body that is not valid JSON.
    """


class FormParseError(ParseError):
    """This is a specific error that is raised when the FormURLEncodedParser
    detects an error while parsing.
    """


class BodyTooLargeError(ParseError):
    """This is raised when a body grows past the configured maximum size."""


class DecodeError(ParseError):
    """This exception is raised when there is a decoding error - for example
    an invalid UTF-8 byte sequence inside a percent-encoded value.
    """


class PercentDecodeError(DecodeError):
    """This exception is raised when a percent sign does not start a valid
    two-digit escape sequence.
    """
