"""RPC credentials for supervised services."""

import secrets
import string
from collections.abc import Callable
from dataclasses import dataclass, field

DEFAULT_RPC_USER = "monerokeeper"
PASSWORD_LENGTH = 20

_ALPHABET = string.ascii_letters + string.digits


def secure_password(length: int = PASSWORD_LENGTH) -> str:
    """Generate a random letters-and-digits password."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


@dataclass(frozen=True)
class Credentials:
    """Username and password for an RPC login."""

    username: str
    password: str = field(repr=False)

    @classmethod
    def resolve(
        cls,
        username: str | None = None,
        password: str | None = None,
        generate: Callable[[], str] = secure_password,
    ) -> "Credentials":
        """Fill in missing values once: the default user and a fresh password."""
        return cls(
            username=username or DEFAULT_RPC_USER,
            password=password or generate(),
        )

    @property
    def login(self) -> str:
        """Value for ``--rpc-login`` style arguments."""
        return f"{self.username}:{self.password}"
