from __future__ import annotations

import re

from sqlalchemy.engine import Dialect

from tableforge.services.errors import InvalidIdentifierError

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_valid_identifier(name: object) -> bool:
    return isinstance(name, str) and bool(_IDENTIFIER_PATTERN.fullmatch(name))


def sanitize_identifier(name: object) -> str:
    """Return ``name`` unchanged when it is a plain SQL identifier.

    Only letters, digits and underscores are accepted and the first character may
    not be a digit. Anything else raises :class:`InvalidIdentifierError`.
    """

    if not is_valid_identifier(name):
        raise InvalidIdentifierError(name)
    return name  # type: ignore[return-value]


def quote_identifier(name: object, dialect: Dialect) -> str:
    return dialect.identifier_preparer.quote(sanitize_identifier(name))
