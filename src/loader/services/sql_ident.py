import re

from src.app.core.exceptions import InvalidParameter

_IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_sql_ident(name: str, *, what: str) -> str:
    n = (name or "").strip() if isinstance(name, str) else ""
    if not _IDENT_RE.fullmatch(n):
        raise InvalidParameter(
            f"Invalid {what}: {name!r}. " "Expected SQL identifier, e.g. 'user_id'"
        )
    return n


def quote_ident(name: str, *, what: str) -> str:
    return f'"{validate_sql_ident(name, what=what)}"'
