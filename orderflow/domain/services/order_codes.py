"""
Order code generation

Codes are short, human-readable and unique: a prefix plus random characters
from an alphabet without look-alikes. Uniqueness against stored orders is
checked by the caller.
"""
import secrets
from typing import Protocol

ORDER_CODE_PREFIX = "OF"
ORDER_CODE_ALPHABET = "ABCDEFGHJKMNPQRTVWXYZ23456789"
ORDER_CODE_RANDOM_LENGTH = 6


class OrderCodeGenerator(Protocol):
    def __call__(self) -> str:
        ...


def random_order_code() -> str:
    suffix = "".join(secrets.choice(ORDER_CODE_ALPHABET) for _ in range(ORDER_CODE_RANDOM_LENGTH))
    return f"{ORDER_CODE_PREFIX}-{suffix}"
