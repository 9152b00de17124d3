class Nonce:
    """A single-use Replay-Nonce (RFC 8555 Section 6.5).

    Every signed request consumes the current nonce, and the Replay-Nonce of
    its response becomes the next one. Consuming a nonce twice would get the
    request rejected by the server, so it is treated as a programming error.
    """

    def __init__(self, value: str):
        self._value = value
        self._spent = False

    @property
    def spent(self) -> bool:
        return self._spent

    def consume(self) -> str:
        if self._spent:
            raise RuntimeError(f"Replay-Nonce {self._value} was already used")
        self._spent = True
        return self._value

    def __repr__(self) -> str:
        return f"Nonce({self._value!r}, spent={self._spent})"
