import sys

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from bodyparser.bodyparser import BodyParser, ParserOptions
    from bodyparser.exceptions import ParseError

CONTENT_TYPES = ["application/x-www-form-urlencoded", "application/json", "text/plain", None]


def feed(content_type, options, chunks):
    results = []
    parser = BodyParser(content_type, lambda value, parsed: results.append((value, parsed)), options=options)
    try:
        for i, chunk in enumerate(chunks):
            parser.write(chunk, i == len(chunks) - 1)
    except ParseError as e:
        return type(e), e.offset
    return results


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    content_type = fdp.PickValueInList(CONTENT_TYPES)
    options = ParserOptions(as_json=fdp.ConsumeBool())
    body = fdp.ConsumeRandomBytes()

    whole = feed(content_type, options, [body])
    chunked = feed(content_type, options, fdp.ConsumeChunks(body))

    # Splitting the body must not change the outcome.
    assert whole == chunked, (whole, chunked)


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
