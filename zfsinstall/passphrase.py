"""
Passphrase Module

Holds the encryption passphrase between the prompt and the pool creation,
without it appearing in logs or on disk.
"""

from typing import Optional


class PassphraseChannel:
    """
    In-memory holder of the encryption passphrase.

    The secret can be read any number of times during the installation; it's
    consumed by `zpool create` through its standard input, then pushed back for
    reuse without prompting the user again.
    """

    def __init__(self) -> None:
        self._secret: Optional[str] = None

    def __repr__(self) -> str:
        state = "unset" if self._secret is None else ("empty" if not self._secret else "set")
        return f"PassphraseChannel({state})"

    __str__ = __repr__

    @property
    def is_set(self) -> bool:
        return self._secret is not None

    @property
    def is_empty(self) -> bool:
        return not self._secret

    def write(self, secret: str) -> None:
        self._secret = secret

    def read(self) -> str:
        if self._secret is None:
            raise RuntimeError("The passphrase has not been provided")
        return self._secret

    def take(self) -> str:
        """Read the secret, leaving the channel empty until it's written back."""
        secret = self.read()
        self._secret = None
        return secret

    def clear(self) -> None:
        self._secret = None
