"""Declarative schema document parser.

Turns a model/enum DSL document into a ``DeclarativeSchema`` and back.
Parsing is a hand-written tokenizer followed by a recursive-descent pass,
so every error carries the line and column of the offending token.

Supported surface:
- ``model Name { ... }`` and ``enum Name { ... }`` blocks
- ``datasource``/``generator``/``view``/``type`` blocks (skipped)
- field lines ``name Type[]? @id @unique @default(...) @relation(...)
  @map("col") @db.Native(args) @updatedAt  /// doc``
- block directives ``@@id``, ``@@unique``, ``@@index``, ``@@map``
- ``//`` comments (dropped) and ``///`` documentation comments (kept)

Usage:
    from db_integrity.schema.parser import parse_schema, render_schema

    schema = parse_schema(Path("schema.prisma").read_text())
    text = render_schema(schema)
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

from db_integrity.errors import ParseError
from db_integrity.schema.models import (
    ColumnDefault,
    DeclarativeSchema,
    DefaultKind,
    EnumType,
    FieldDef,
    ModelDef,
    RelationInfo,
)

SKIPPED_BLOCKS = {"datasource", "generator", "view", "type"}

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}

_GENERATORS = {
    "now": DefaultKind.NOW,
    "uuid": DefaultKind.UUID,
    "cuid": DefaultKind.CUID,
    "autoincrement": DefaultKind.AUTOINCREMENT,
}


# ------------------------------------------------------------------
# Tokenizer
# ------------------------------------------------------------------


class TokenKind(Enum):
    IDENT = "identifier"
    STRING = "string"
    NUMBER = "number"
    DOC = "documentation comment"
    NEWLINE = "newline"
    LBRACE = "'{'"
    RBRACE = "'}'"
    LPAREN = "'('"
    RPAREN = "')'"
    LBRACKET = "'['"
    RBRACKET = "']'"
    COMMA = "','"
    COLON = "':'"
    DOT = "'.'"
    EQUALS = "'='"
    QUESTION = "'?'"
    AT = "'@'"
    ATAT = "'@@'"
    EOF = "end of input"


_PUNCTUATION = {
    "{": TokenKind.LBRACE,
    "}": TokenKind.RBRACE,
    "(": TokenKind.LPAREN,
    ")": TokenKind.RPAREN,
    "[": TokenKind.LBRACKET,
    "]": TokenKind.RBRACKET,
    ",": TokenKind.COMMA,
    ":": TokenKind.COLON,
    ".": TokenKind.DOT,
    "=": TokenKind.EQUALS,
    "?": TokenKind.QUESTION,
}


@dataclass
class Token:
    kind: TokenKind
    value: Any
    line: int
    column: int
    start: int
    end: int


def tokenize(source: str) -> list[Token]:
    """Split DSL source into tokens.

    Newlines are significant (they end field lines) except inside
    parentheses and brackets, where argument lists may wrap.

    Raises:
        ParseError: On an unterminated string or an unexpected character.
    """
    tokens: list[Token] = []
    i = 0
    line = 1
    line_start = 0
    depth = 0
    n = len(source)

    def add(kind: TokenKind, value: Any, start: int, end: int) -> None:
        tokens.append(Token(kind, value, line, start - line_start + 1, start, end))

    while i < n:
        ch = source[i]

        if ch == "\n":
            if depth == 0:
                add(TokenKind.NEWLINE, "\n", i, i + 1)
            i += 1
            line += 1
            line_start = i
            continue

        if ch in " \t\r":
            i += 1
            continue

        if source.startswith("//", i):
            end = source.find("\n", i)
            end = n if end == -1 else end
            if source.startswith("///", i):
                add(TokenKind.DOC, source[i + 3:end].strip(), i, end)
            i = end
            continue

        if ch == '"':
            j = i + 1
            chars: list[str] = []
            while j < n and source[j] != '"':
                if source[j] == "\n":
                    break
                if source[j] == "\\" and j + 1 < n:
                    chars.append(_ESCAPES.get(source[j + 1], source[j + 1]))
                    j += 2
                    continue
                chars.append(source[j])
                j += 1
            if j >= n or source[j] != '"':
                raise ParseError("Unterminated string literal", line, i - line_start + 1)
            add(TokenKind.STRING, "".join(chars), i, j + 1)
            i = j + 1
            continue

        if ch.isdigit() or (ch == "-" and i + 1 < n and source[i + 1].isdigit()):
            j = i + 1
            while j < n and (source[j].isdigit() or source[j] == "."):
                j += 1
            text = source[i:j]
            try:
                number: int | float = float(text) if "." in text else int(text)
            except ValueError:
                raise ParseError(f"Malformed number '{text}'", line, i - line_start + 1)
            add(TokenKind.NUMBER, number, i, j)
            i = j
            continue

        if ch.isalpha() or ch == "_":
            j = i + 1
            while j < n and (source[j].isalnum() or source[j] == "_"):
                j += 1
            add(TokenKind.IDENT, source[i:j], i, j)
            i = j
            continue

        if ch == "@":
            if source.startswith("@@", i):
                add(TokenKind.ATAT, "@@", i, i + 2)
                i += 2
            else:
                add(TokenKind.AT, "@", i, i + 1)
                i += 1
            continue

        if ch in _PUNCTUATION:
            kind = _PUNCTUATION[ch]
            if kind in (TokenKind.LPAREN, TokenKind.LBRACKET):
                depth += 1
            elif kind in (TokenKind.RPAREN, TokenKind.RBRACKET):
                depth = max(0, depth - 1)
            add(kind, ch, i, i + 1)
            i += 1
            continue

        raise ParseError(f"Unexpected character '{ch}'", line, i - line_start + 1)

    add(TokenKind.EOF, None, n, n)
    return tokens


# ------------------------------------------------------------------
# Attribute argument values
# ------------------------------------------------------------------


@dataclass
class Ident:
    """A bare identifier used as a value (``Cascade``, an enum member)."""

    name: str


@dataclass
class Call:
    """A function-call value (``now()``, ``dbgenerated("...")``)."""

    name: str
    args: list[tuple[str | None, Any]]


@dataclass
class Attribute:
    name: str
    args: list[tuple[str | None, Any]]
    raw_args: list[str]
    token: Token

    def positional(self, index: int = 0) -> Any:
        values = [v for k, v in self.args if k is None]
        return values[index] if index < len(values) else None

    def keyword(self, key: str) -> Any:
        for k, v in self.args:
            if k == key:
                return v
        return None


# ------------------------------------------------------------------
# Recursive-descent parser
# ------------------------------------------------------------------


class _Parser:
    def __init__(self, source: str) -> None:
        self._source = source
        self._tokens = tokenize(source)
        self._pos = 0

    # Token helpers

    def _peek(self, offset: int = 0) -> Token:
        return self._tokens[min(self._pos + offset, len(self._tokens) - 1)]

    def _advance(self) -> Token:
        token = self._peek()
        if token.kind != TokenKind.EOF:
            self._pos += 1
        return token

    def _accept(self, kind: TokenKind) -> Token | None:
        if self._peek().kind == kind:
            return self._advance()
        return None

    def _expect(self, kind: TokenKind, what: str) -> Token:
        token = self._peek()
        if token.kind != kind:
            self._fail(f"Expected {what}, found {self._describe(token)}", token)
        return self._advance()

    def _describe(self, token: Token) -> str:
        if token.kind in (TokenKind.IDENT, TokenKind.NUMBER):
            return f"'{token.value}'"
        if token.kind == TokenKind.STRING:
            return f'"{token.value}"'
        return token.kind.value

    def _fail(self, message: str, token: Token) -> None:
        raise ParseError(message, token.line, token.column)

    def _skip_newlines(self) -> None:
        while self._peek().kind == TokenKind.NEWLINE:
            self._advance()

    # Document

    def parse(self) -> DeclarativeSchema:
        models: list[ModelDef] = []
        enums: list[EnumType] = []
        names: dict[str, Token] = {}
        doc: list[str] = []

        while True:
            token = self._peek()
            if token.kind == TokenKind.NEWLINE:
                self._advance()
                continue
            if token.kind == TokenKind.DOC:
                doc.append(self._advance().value)
                continue
            if token.kind == TokenKind.EOF:
                break
            if token.kind != TokenKind.IDENT:
                self._fail(f"Expected a block declaration, found {self._describe(token)}", token)

            keyword = token.value
            if keyword == "model":
                self._advance()
                name_token = self._expect(TokenKind.IDENT, "model name")
                self._check_block_name(name_token, names)
                models.append(self._parse_model(name_token, doc))
            elif keyword == "enum":
                self._advance()
                name_token = self._expect(TokenKind.IDENT, "enum name")
                self._check_block_name(name_token, names)
                enums.append(self._parse_enum(name_token, doc))
            elif keyword in SKIPPED_BLOCKS:
                self._advance()
                self._expect(TokenKind.IDENT, f"{keyword} name")
                self._skip_block(keyword)
            else:
                self._fail(f"Unknown top-level construct '{keyword}'", token)
            doc = []

        model_names = {m.name for m in models}
        resolved = tuple(_resolve_relations(m, model_names) for m in models)
        return DeclarativeSchema(models=resolved, enums=tuple(enums))

    def _check_block_name(self, token: Token, names: dict[str, Token]) -> None:
        if token.value in names:
            self._fail(f"Duplicate block name '{token.value}'", token)
        names[token.value] = token

    def _skip_block(self, keyword: str) -> None:
        open_token = self._expect(TokenKind.LBRACE, "'{'")
        depth = 1
        while depth:
            token = self._advance()
            if token.kind == TokenKind.EOF:
                self._fail(f"Unterminated {keyword} block", open_token)
            if token.kind == TokenKind.LBRACE:
                depth += 1
            elif token.kind == TokenKind.RBRACE:
                depth -= 1

    # Models

    def _parse_model(self, name_token: Token, doc: list[str]) -> ModelDef:
        self._expect(TokenKind.LBRACE, "'{' after model name")
        fields: list[FieldDef] = []
        field_tokens: dict[str, Token] = {}
        directives: dict[str, Any] = {"unique": [], "index": []}
        pending_doc: list[str] = []

        while True:
            token = self._peek()
            if token.kind == TokenKind.EOF:
                self._fail(f"Unterminated model block '{name_token.value}'", name_token)
            if token.kind == TokenKind.RBRACE:
                self._advance()
                break
            if token.kind == TokenKind.NEWLINE:
                self._advance()
                continue
            if token.kind == TokenKind.DOC:
                pending_doc.append(self._advance().value)
                continue
            if token.kind == TokenKind.ATAT:
                self._parse_model_directive(directives)
                self._end_line()
                continue
            if token.kind == TokenKind.IDENT:
                field = self._parse_field(pending_doc)
                if field.name in field_tokens:
                    self._fail(
                        f"Duplicate field '{field.name}' in model '{name_token.value}'", token
                    )
                field_tokens[field.name] = token
                fields.append(field)
                pending_doc = []
                continue
            self._fail(f"Unexpected {self._describe(token)} in model body", token)

        return ModelDef(
            name=name_token.value,
            fields=tuple(fields),
            primary_key=directives.get("id"),
            unique_indexes=tuple(directives["unique"]),
            indexes=tuple(directives["index"]),
            db_name=directives.get("map"),
            documentation="\n".join(doc) or None,
        )

    def _end_line(self) -> None:
        token = self._peek()
        if token.kind in (TokenKind.NEWLINE, TokenKind.RBRACE, TokenKind.EOF):
            self._accept(TokenKind.NEWLINE)
            return
        self._fail(f"Unexpected {self._describe(token)} at end of line", token)

    def _parse_field(self, doc: list[str]) -> FieldDef:
        name = self._expect(TokenKind.IDENT, "field name").value
        type_token = self._expect(TokenKind.IDENT, f"type for field '{name}'")
        type_name = type_token.value

        # Unsupported("...") style types keep their argument text
        if self._peek().kind == TokenKind.LPAREN:
            start = self._peek().start
            self._parse_args()
            type_name = type_name + self._source[start:self._tokens[self._pos - 1].end]

        is_list = False
        if self._accept(TokenKind.LBRACKET):
            self._expect(TokenKind.RBRACKET, "']' after '['")
            is_list = True
        is_optional = self._accept(TokenKind.QUESTION) is not None

        attrs: dict[str, Any] = {}
        while self._peek().kind == TokenKind.AT:
            attribute = self._parse_attribute()
            self._apply_field_attribute(attribute, attrs)

        documentation = list(doc)
        if self._peek().kind == TokenKind.DOC:
            documentation.append(self._advance().value)
        self._end_line()

        return FieldDef(
            name=name,
            type=type_name,
            is_list=is_list,
            is_optional=is_optional,
            documentation="\n".join(documentation) or None,
            **attrs,
        )

    def _apply_field_attribute(self, attribute: Attribute, attrs: dict[str, Any]) -> None:
        name = attribute.name
        if name == "id":
            attrs["is_id"] = True
        elif name == "unique":
            attrs["is_unique"] = True
        elif name == "updatedAt":
            attrs["is_updated_at"] = True
        elif name == "default":
            if not attribute.args:
                self._fail("@default requires a value", attribute.token)
            attrs["default"] = _to_default(attribute.args[0][1], attribute.raw_args[0])
        elif name == "map":
            value = attribute.positional()
            if not isinstance(value, str):
                self._fail("@map requires a string argument", attribute.token)
            attrs["map_name"] = value
        elif name == "relation":
            attrs["relation"] = RelationInfo(
                name=attribute.positional() if isinstance(attribute.positional(), str)
                else attribute.keyword("name"),
                fields=tuple(_names(attribute.keyword("fields"))),
                references=tuple(_names(attribute.keyword("references"))),
                on_delete=_ident_name(attribute.keyword("onDelete")),
            )
        elif name.startswith("db."):
            native = name[3:]
            if attribute.raw_args:
                native += "(" + ", ".join(attribute.raw_args) + ")"
            attrs["native_type"] = native
        # Anything else (@ignore, @db.* variants we do not model) is accepted and ignored

    def _parse_attribute(self) -> Attribute:
        at = self._advance()
        name = self._expect(TokenKind.IDENT, "attribute name").value
        if self._accept(TokenKind.DOT):
            name = f"{name}.{self._expect(TokenKind.IDENT, 'attribute name').value}"
        args: list[tuple[str | None, Any]] = []
        raw: list[str] = []
        if self._peek().kind == TokenKind.LPAREN:
            args, raw = self._parse_args()
        return Attribute(name=name, args=args, raw_args=raw, token=at)

    def _parse_model_directive(self, directives: dict[str, Any]) -> None:
        self._advance()
        name_token = self._expect(TokenKind.IDENT, "directive name")
        args: list[tuple[str | None, Any]] = []
        raw: list[str] = []
        if self._peek().kind == TokenKind.LPAREN:
            args, raw = self._parse_args()
        attribute = Attribute(name=name_token.value, args=args, raw_args=raw, token=name_token)

        if attribute.name in ("id", "unique", "index"):
            columns = attribute.positional()
            if columns is None:
                columns = attribute.keyword("fields")
            if not isinstance(columns, list) or not columns:
                self._fail(f"@@{attribute.name} requires a field list", name_token)
            cols = tuple(_names(columns))
            if attribute.name == "id":
                directives["id"] = cols
            else:
                directives[attribute.name].append(cols)
        elif attribute.name == "map":
            value = attribute.positional()
            if not isinstance(value, str):
                self._fail("@@map requires a string argument", name_token)
            directives["map"] = value

    # Enums

    def _parse_enum(self, name_token: Token, doc: list[str]) -> EnumType:
        self._expect(TokenKind.LBRACE, "'{' after enum name")
        values: list[str] = []
        db_name: str | None = None

        while True:
            token = self._peek()
            if token.kind == TokenKind.EOF:
                self._fail(f"Unterminated enum block '{name_token.value}'", name_token)
            if token.kind == TokenKind.RBRACE:
                self._advance()
                break
            if token.kind in (TokenKind.NEWLINE, TokenKind.DOC):
                self._advance()
                continue
            if token.kind == TokenKind.ATAT:
                directives: dict[str, Any] = {"unique": [], "index": []}
                self._parse_model_directive(directives)
                db_name = directives.get("map", db_name)
                self._end_line()
                continue
            if token.kind == TokenKind.IDENT:
                value = self._advance().value
                if value in values:
                    self._fail(
                        f"Duplicate value '{value}' in enum '{name_token.value}'", token
                    )
                values.append(value)
                while self._peek().kind == TokenKind.AT:
                    self._parse_attribute()
                self._accept(TokenKind.DOC)
                self._end_line()
                continue
            self._fail(f"Unexpected {self._describe(token)} in enum body", token)

        return EnumType(
            name=name_token.value,
            values=tuple(values),
            db_name=db_name,
            documentation="\n".join(doc) or None,
        )

    # Argument lists

    def _parse_args(self) -> tuple[list[tuple[str | None, Any]], list[str]]:
        self._expect(TokenKind.LPAREN, "'('")
        args: list[tuple[str | None, Any]] = []
        raw: list[str] = []
        if self._accept(TokenKind.RPAREN):
            return args, raw
        while True:
            key = None
            if self._peek().kind == TokenKind.IDENT and self._peek(1).kind == TokenKind.COLON:
                key = self._advance().value
                self._advance()
            start = self._peek().start
            value = self._parse_value()
            raw.append(self._source[start:self._tokens[self._pos - 1].end])
            args.append((key, value))
            if self._accept(TokenKind.COMMA):
                continue
            self._expect(TokenKind.RPAREN, "',' or ')' in argument list")
            return args, raw

    def _parse_value(self) -> Any:
        token = self._peek()
        if token.kind in (TokenKind.STRING, TokenKind.NUMBER):
            return self._advance().value
        if token.kind == TokenKind.LBRACKET:
            self._advance()
            items: list[Any] = []
            if self._accept(TokenKind.RBRACKET):
                return items
            while True:
                items.append(self._parse_value())
                if self._accept(TokenKind.COMMA):
                    continue
                self._expect(TokenKind.RBRACKET, "',' or ']' in list")
                return items
        if token.kind == TokenKind.IDENT:
            self._advance()
            if token.value in ("true", "false"):
                return token.value == "true"
            if self._peek().kind == TokenKind.LPAREN:
                args, _ = self._parse_args()
                return Call(name=token.value, args=args)
            # Sort/length modifiers inside index lists: name(sort: Desc)
            return Ident(name=token.value)
        self._fail(f"Unexpected {self._describe(token)} in argument list", token)


def _names(values: Any) -> list[str]:
    if not isinstance(values, list):
        return []
    names: list[str] = []
    for value in values:
        if isinstance(value, Ident):
            names.append(value.name)
        elif isinstance(value, Call):
            names.append(value.name)
        elif isinstance(value, str):
            names.append(value)
    return names


def _ident_name(value: Any) -> str | None:
    if isinstance(value, Ident):
        return value.name
    if isinstance(value, str):
        return value
    return None


def _to_default(value: Any, raw: str) -> ColumnDefault:
    """Map a ``@default`` argument onto the closed default vocabulary."""
    if isinstance(value, Call) and value.name in _GENERATORS:
        return ColumnDefault(kind=_GENERATORS[value.name])
    if isinstance(value, (bool, int, float, str)):
        return ColumnDefault(kind=DefaultKind.LITERAL, value=value)
    return ColumnDefault(kind=DefaultKind.OPAQUE, value=raw)


def _resolve_relations(model: ModelDef, model_names: set[str]) -> ModelDef:
    fields = tuple(
        f.model_copy(update={"is_relation": True}) if f.type in model_names else f
        for f in model.fields
    )
    return model.model_copy(update={"fields": fields})


def parse_schema(source: str) -> DeclarativeSchema:
    """Parse a declarative schema document.

    Args:
        source: Full document text.

    Returns:
        ``DeclarativeSchema`` with every model and enum, relation fields
        resolved against the declared model names.

    Raises:
        ParseError: On any malformed construct.  No partial schema is
            ever returned.

    Example:
        schema = parse_schema('model User {\\n  id String @id\\n}\\n')
        schema.models[0].table_name  # 'user'
    """
    return _Parser(source).parse()


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------


def _render_default(default: ColumnDefault) -> str:
    if default.kind == DefaultKind.OPAQUE:
        return str(default.value)
    if default.kind != DefaultKind.LITERAL:
        return f"{default.kind.value}()"
    value = default.value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    return json.dumps(value, ensure_ascii=False)


def _render_doc(doc: str | None, indent: str) -> list[str]:
    if not doc:
        return []
    return [f"{indent}/// {line}".rstrip() for line in doc.split("\n")]


def _render_field(field: FieldDef) -> str:
    parts = [field.name, field.type + ("[]" if field.is_list else "") + ("?" if field.is_optional else "")]
    if field.is_id:
        parts.append("@id")
    if field.is_unique:
        parts.append("@unique")
    if field.default is not None:
        parts.append(f"@default({_render_default(field.default)})")
    if field.is_updated_at:
        parts.append("@updatedAt")
    if field.relation is not None:
        rel = field.relation
        args: list[str] = []
        if rel.name:
            args.append(json.dumps(rel.name, ensure_ascii=False))
        if rel.fields:
            args.append(f"fields: [{', '.join(rel.fields)}]")
        if rel.references:
            args.append(f"references: [{', '.join(rel.references)}]")
        if rel.on_delete:
            args.append(f"onDelete: {rel.on_delete}")
        parts.append(f"@relation({', '.join(args)})" if args else "@relation")
    if field.map_name:
        parts.append(f"@map({json.dumps(field.map_name, ensure_ascii=False)})")
    if field.native_type:
        parts.append(f"@db.{field.native_type}")
    return " ".join(parts)


def render_schema(schema: DeclarativeSchema) -> str:
    """Serialize a ``DeclarativeSchema`` back into DSL text.

    ``parse_schema(render_schema(s)) == s`` for any schema this module
    produced.
    """
    blocks: list[str] = []

    for model in schema.models:
        lines = _render_doc(model.documentation, "")
        lines.append(f"model {model.name} {{")
        for field in model.fields:
            lines.extend(_render_doc(field.documentation, "  "))
            lines.append(f"  {_render_field(field)}")
        if model.primary_key:
            lines.append(f"  @@id([{', '.join(model.primary_key)}])")
        for cols in model.unique_indexes:
            lines.append(f"  @@unique([{', '.join(cols)}])")
        for cols in model.indexes:
            lines.append(f"  @@index([{', '.join(cols)}])")
        if model.db_name:
            lines.append(f"  @@map({json.dumps(model.db_name, ensure_ascii=False)})")
        lines.append("}")
        blocks.append("\n".join(lines))

    for enum in schema.enums:
        lines = _render_doc(enum.documentation, "")
        lines.append(f"enum {enum.name} {{")
        lines.extend(f"  {value}" for value in enum.values)
        if enum.db_name:
            lines.append(f"  @@map({json.dumps(enum.db_name, ensure_ascii=False)})")
        lines.append("}")
        blocks.append("\n".join(lines))

    return "\n\n".join(blocks) + "\n"
