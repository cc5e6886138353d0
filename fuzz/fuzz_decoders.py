import sys
from urllib.parse import quote

import atheris
from helpers import EnhancedDataProvider

with atheris.instrument_imports():
    from bodyparser.decoders import percent_decode
    from bodyparser.exceptions import DecodeError


def fuzz_percent_decode(fdp: EnhancedDataProvider) -> None:
    try:
        percent_decode(fdp.ConsumeRandomString())
    except DecodeError:
        return


def fuzz_quote_roundtrip(fdp: EnhancedDataProvider) -> None:
    text = fdp.ConsumeRandomString()
    assert percent_decode(quote(text, safe="")) == text


def TestOneInput(data: bytes) -> None:
    fdp = EnhancedDataProvider(data)
    targets = [fuzz_percent_decode, fuzz_quote_roundtrip]
    target = fdp.PickValueInList(targets)
    target(fdp)


def main():
    atheris.Setup(sys.argv, TestOneInput)
    atheris.Fuzz()


if __name__ == "__main__":
    main()
