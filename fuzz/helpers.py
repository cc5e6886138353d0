from __future__ import annotations

import atheris


class EnhancedDataProvider(atheris.FuzzedDataProvider):
    def ConsumeRandomBytes(self) -> bytes:
        return self.ConsumeBytes(self.ConsumeIntInRange(0, self.remaining_bytes()))

    def ConsumeRandomString(self) -> str:
        return self.ConsumeUnicodeNoSurrogates(self.ConsumeIntInRange(0, self.remaining_bytes()))

    def ConsumeChunks(self, data: bytes) -> list[bytes]:
        """Split ``data`` at a handful of fuzzer-chosen offsets."""
        cuts = sorted(self.ConsumeIntInRange(0, len(data)) for _ in range(self.ConsumeIntInRange(0, 8)))
        bounds = [0, *cuts, len(data)]
        return [data[start:end] for start, end in zip(bounds, bounds[1:])]
