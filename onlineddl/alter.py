"""Key hashing helpers and safety checks on ALTER TABLE statements."""

from __future__ import annotations

import re
from enum import Enum, auto
from typing import Any, Iterable, NamedTuple, Optional

from .sqlutil import escape_string

# Joins the parts of a composite primary key into one string.
PRIMARY_KEY_SEPARATOR = "-#-"


class AlterError(Exception):
    """Raised when an ALTER statement is unsafe, unsupported or unparsable."""


def hash_key(key: Iterable[Any]) -> str:
    """Turn a (possibly composite) key into a string usable as a dict key."""
    parts = []
    for value in key:
        if isinstance(value, (bytes, bytearray)):
            parts.append(bytes(value).decode(errors="replace"))
        else:
            parts.append(str(value))
    return PRIMARY_KEY_SEPARATOR.join(parts)


def unhash_key(key: str) -> str:
    """Turn a hashed key back into a quoted SQL value or row constructor."""
    parts = key.split(PRIMARY_KEY_SEPARATOR)
    quoted = [f"'{escape_string(part)}'" for part in parts]
    if len(quoted) == 1:
        return quoted[0]
    return "(" + ",".join(quoted) + ")"


def intersect_non_generated_columns(t1: Any, t2: Any) -> str:
    """Quoted, comma-separated non-generated columns present in both tables."""
    return ", ".join(
        f"`{col}`"
        for col in t1.non_generated_columns
        for col2 in t2.non_generated_columns
        if col == col2
    )


def strip_port(hostname: str) -> str:
    """Remove a ``:port`` suffix from a host name."""
    return hostname.split(":")[0]


def trim_alter(alter: str) -> str:
    """Strip whitespace and one trailing semicolon."""
    return alter.strip().removesuffix(";")


class _SpecType(Enum):
    DROP_INDEX = auto()
    RENAME_INDEX = auto()
    INDEX_VISIBILITY = auto()
    ALGORITHM = auto()
    LOCK = auto()
    ADD_UNIQUE = auto()
    OTHER = auto()


class _Token(NamedTuple):
    kind: str
    text: str

    @property
    def keyword(self) -> Optional[str]:
        return self.text.upper() if self.kind == "word" else None


_TOKEN_RE = re.compile(
    r"(?P<space>\s+|--[^\n]*|#[^\n]*|/\*.*?\*/)"
    r"|(?P<ident>`(?:[^`]|``)*`)"
    r"|(?P<string>'(?:[^'\\]|\\.|'')*'|\"(?:[^\"\\]|\\.|\"\")*\")"
    r"|(?P<word>[A-Za-z0-9_$]+)"
    r"|(?P<punct>[^\s'\"`])",
    re.S,
)

_NAME_KINDS = ("ident", "word")


def _tokenize(sql: str) -> list[_Token]:
    tokens = []
    pos = 0
    while pos < len(sql):
        match = _TOKEN_RE.match(sql, pos)
        if match is None:
            raise AlterError(f"syntax error near {sql[pos:pos + 20]!r}")
        pos = match.end()
        if match.lastgroup != "space":
            tokens.append(_Token(match.lastgroup, match.group()))
    return tokens


def _is_punct(token: _Token, text: str) -> bool:
    return token.kind == "punct" and token.text == text


def _first_statement(tokens: list[_Token]) -> list[_Token]:
    for position, token in enumerate(tokens):
        if _is_punct(token, ";"):
            return tokens[:position]
    return tokens


def _skip_table_name(tokens: list[_Token]) -> list[_Token]:
    if not tokens or tokens[0].kind not in _NAME_KINDS:
        raise AlterError("syntax error: missing table name")
    if len(tokens) > 2 and _is_punct(tokens[1], ".") and tokens[2].kind in _NAME_KINDS:
        return tokens[3:]
    return tokens[1:]


def _split_specs(tokens: list[_Token]) -> list[list[_Token]]:
    specs: list[list[_Token]] = []
    current: list[_Token] = []
    depth = 0
    for token in tokens:
        if _is_punct(token, "("):
            depth += 1
        elif _is_punct(token, ")"):
            depth -= 1
            if depth < 0:
                raise AlterError("syntax error: unbalanced parentheses")
        elif _is_punct(token, ",") and depth == 0:
            if not current:
                raise AlterError("syntax error: empty clause")
            specs.append(current)
            current = []
            continue
        current.append(token)
    if depth != 0:
        raise AlterError("syntax error: unbalanced parentheses")
    if current:
        specs.append(current)
    elif specs:
        raise AlterError("syntax error: trailing comma")
    return specs


def _classify(spec: list[_Token]) -> _SpecType:
    words = [token.keyword for token in spec]
    first = words[0]
    second = words[1] if len(words) > 1 else None
    if first == "DROP" and second in ("INDEX", "KEY"):
        if len(spec) != 3 or spec[2].kind not in _NAME_KINDS:
            raise AlterError("syntax error in DROP INDEX")
        return _SpecType.DROP_INDEX
    if first == "RENAME" and second in ("INDEX", "KEY"):
        if len(spec) != 5 or words[3] != "TO":
            raise AlterError("syntax error in RENAME INDEX")
        return _SpecType.RENAME_INDEX
    if (
        first == "ALTER"
        and second == "INDEX"
        and len(spec) == 4
        and words[3] in ("VISIBLE", "INVISIBLE")
    ):
        return _SpecType.INDEX_VISIBILITY
    if first == "ALGORITHM":
        return _SpecType.ALGORITHM
    if first == "LOCK":
        return _SpecType.LOCK
    if first == "ADD":
        position = 1
        if second == "CONSTRAINT":
            position = 2
            if position < len(words) and words[position] not in (
                "UNIQUE",
                "PRIMARY",
                "FOREIGN",
                "CHECK",
            ):
                position += 1  # constraint symbol
        if position < len(words) and words[position] == "UNIQUE":
            return _SpecType.ADD_UNIQUE
    return _SpecType.OTHER


def _alter_specs(sql: str) -> Optional[list[_SpecType]]:
    """Clause types of an ALTER TABLE statement, or None for other statements."""
    tokens = _first_statement(_tokenize(sql))
    if not tokens:
        raise AlterError("syntax error: empty statement")
    if [token.keyword for token in tokens[:2]] != ["ALTER", "TABLE"]:
        return None
    return [_classify(spec) for spec in _split_specs(_skip_table_name(tokens[2:]))]


_INPLACE_SAFE = {
    _SpecType.DROP_INDEX,
    _SpecType.RENAME_INDEX,
    _SpecType.INDEX_VISIBILITY,
}


def algorithm_inplace_considered_safe(sql: str) -> None:
    """Raise unless every clause is an in-place, metadata-only operation."""
    specs = _alter_specs(sql)
    if specs is None:
        return
    unsafe = sum(1 for spec in specs if spec not in _INPLACE_SAFE)
    if unsafe:
        if len(specs) > 1:
            raise AlterError(
                "ALTER contains multiple clauses. Combinations of INSTANT and INPLACE "
                "operations cannot be detected safely. Consider executing these as "
                "separate ALTER statements. Use --force-inplace to override this "
                "safety check"
            )
        raise AlterError(
            "ALTER either does not support INPLACE or when performed as INPLACE could "
            "take considerable time. Use --force-inplace to override this safety check"
        )


def alter_contains_unsupported_clause(sql: str) -> None:
    """Raise if the ALTER sets ALGORITHM= or LOCK= itself."""
    specs = _alter_specs(sql)
    if specs is None:
        return
    names = {_SpecType.ALGORITHM: "ALGORITHM=", _SpecType.LOCK: "LOCK="}
    unsupported = [names[spec] for spec in specs if spec in names]
    if unsupported:
        raise AlterError(
            "ALTER contains unsupported clause(s): " + ", ".join(unsupported)
        )


def alter_contains_add_unique(sql: str) -> None:
    """Raise if the ALTER adds a unique index."""
    specs = _alter_specs(sql)
    if specs is not None and _SpecType.ADD_UNIQUE in specs:
        raise AlterError("contains adding a unique index")


def alter_contains_index_visibility(sql: str) -> None:
    """Raise if the ALTER changes the visibility of an index."""
    specs = _alter_specs(sql)
    if specs is not None and _SpecType.INDEX_VISIBILITY in specs:
        raise AlterError(
            "the ALTER operation contains a change to index visibility and could not "
            "be completed as a meta-data only operation. This is a safety check! "
            "Please split the ALTER statement into separate statements for changing "
            "the invisible index and other operations"
        )