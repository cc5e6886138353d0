from __future__ import annotations

import codecs

from .exceptions import DecodeError, PercentDecodeError

HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


class PercentDecoder:
    """
    Decodes ``%XX`` escape sequences in a string.  Escaped bytes are fed one
    at a time through an incremental UTF-8 decoder, so a multi-byte character
    may be spread over several adjacent escapes (e.g. ``%C3%A9``).

    A ``%`` that is followed by two characters which are both not hex digits
    (or by nothing at all) is kept as a literal percent sign.  A ``%`` that is
    followed by only one hex digit is an error.

    Note that ``+`` is *not* turned into a space here; form bodies do that
    before decoding.
    """

    def __init__(self, errors: str = "strict") -> None:
        self.errors = errors

    def decode(self, text: str) -> str:
        # A fresh decoder per call, so that a truncated sequence in one value
        # can never leak into the next one.
        decoder = codecs.getincrementaldecoder("utf-8")(self.errors)
        output: list[str] = []
        length = len(text)

        i = 0
        while i < length:
            pct = text.find("%", i)
            if pct == -1:
                self._flush(decoder, output, i)
                output.append(text[i:])
                break

            if pct > i:
                self._flush(decoder, output, i)
                output.append(text[i:pct])
            i = pct

            hi = text[i + 1 : i + 2]
            lo = text[i + 2 : i + 3]
            hi_valid = hi in HEX_DIGITS
            lo_valid = lo in HEX_DIGITS

            if not hi_valid and not lo_valid:
                self._flush(decoder, output, i)
                output.append("%")
                i += 1
                continue

            if i >= length - 2:
                raise PercentDecodeError("Invalid percent sequence at %d: not enough characters left" % i, offset=i)

            if not (hi_valid and lo_valid):
                raise PercentDecodeError("Invalid percent sequence at %d: %r" % (i, text[i : i + 3]), offset=i)

            try:
                output.append(decoder.decode(bytes((int(hi + lo, 16),))))
            except UnicodeDecodeError as err:
                raise DecodeError("Invalid UTF-8 byte in percent sequence at %d" % i, offset=i) from err
            i += 3

        self._flush(decoder, output, length)
        return "".join(output)

    def decode_component(self, text: str) -> str:
        """
        Decode a name or value from a form body, where "+" stands for a space.
        The substitution happens before percent-decoding, so "%2B" is still a
        literal plus sign.
        """
        return self.decode(text.replace("+", " "))

    @staticmethod
    def _flush(decoder: codecs.IncrementalDecoder, output: list[str], offset: int) -> None:
        # Any bytes still pending belong to an escaped run that has just ended.
        try:
            output.append(decoder.decode(b"", final=True))
        except UnicodeDecodeError as err:
            raise DecodeError("Incomplete UTF-8 sequence in percent escapes ending at %d" % offset, offset=offset) from err
        decoder.reset()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(errors={self.errors!r})"


def percent_decode(text: str, errors: str = "strict") -> str:
    """
    Percent-decode a single string.  See :class:`PercentDecoder`.
    """
    return PercentDecoder(errors).decode(text)


def form_decode(text: str, errors: str = "strict") -> str:
    """
    Decode a form-encoded name or value: "+" is a space, then percent escapes
    are decoded.
    """
    return PercentDecoder(errors).decode_component(text)
