"""
patchgate — `.ls` goal/capability/check document parser

File: src/patchgate/parsing/ls_document.py
Last updated: 2026-10-18

Purpose
- Turn `.ls` documents into a small syntax tree with source ranges for intent mapping.

Functional requirements
- Grammar: one ``goal "<text>"`` line, then one or more ``capability <ident> "<text>"``
  lines, then one or more ``check <ident> "<text>"`` lines; blank lines are allowed.
- Strings support the escapes ``\\\\``, ``\\"``, ``\\n``, ``\\t``.
- Any lexer or parser diagnostic yields ``ast=None``.
- Intent mapping consumes the parser through the ``DocumentParser`` protocol.

Non-functional requirements
- Lines and columns are 1-based; offsets are 0-based character indexes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Protocol


@dataclass(frozen=True, slots=True)
class SourcePosition:
    offset: int
    line: int
    column: int


@dataclass(frozen=True, slots=True)
class SourceRange:
    start: SourcePosition
    end: SourcePosition


class TokenKind(StrEnum):
    GOAL_KEYWORD = "GoalKeyword"
    CAPABILITY_KEYWORD = "CapabilityKeyword"
    CHECK_KEYWORD = "CheckKeyword"
    IDENTIFIER = "Identifier"
    STRING_LITERAL = "StringLiteral"
    NEWLINE = "Newline"
    EOF = "EOF"


@dataclass(frozen=True, slots=True)
class Token:
    kind: TokenKind
    lexeme: str
    range: SourceRange
    value: str | None = None


@dataclass(frozen=True, slots=True)
class Diagnostic:
    code: str
    message: str
    range: SourceRange


@dataclass(frozen=True, slots=True)
class GoalDeclaration:
    value: str
    range: SourceRange


@dataclass(frozen=True, slots=True)
class CapabilityDeclaration:
    name: str
    description: str
    range: SourceRange


@dataclass(frozen=True, slots=True)
class CheckDeclaration:
    name: str
    description: str
    range: SourceRange


@dataclass(frozen=True, slots=True)
class Document:
    goal: GoalDeclaration
    capabilities: tuple[CapabilityDeclaration, ...]
    checks: tuple[CheckDeclaration, ...]
    range: SourceRange


@dataclass(frozen=True, slots=True)
class LexResult:
    tokens: tuple[Token, ...]
    diagnostics: tuple[Diagnostic, ...]


@dataclass(frozen=True, slots=True)
class ParseResult:
    ast: Document | None
    diagnostics: tuple[Diagnostic, ...] = field(default_factory=tuple)


class DocumentParser(Protocol):
    """Structured-document parser consumed by intent mapping."""

    def parse(self, source: str) -> ParseResult: ...


_KEYWORD_KINDS = {
    "goal": TokenKind.GOAL_KEYWORD,
    "capability": TokenKind.CAPABILITY_KEYWORD,
    "check": TokenKind.CHECK_KEYWORD,
}
_ESCAPES = {"\\": "\\", '"': '"', "n": "\n", "t": "\t"}


def _is_letter(value: str) -> bool:
    return value.isascii() and value.isalpha()


def _is_identifier_part(value: str) -> bool:
    return value.isascii() and (value.isalnum() or value in "_-")


class _Lexer:
    def __init__(self, source: str) -> None:
        self._source = source
        self._index = 0
        self._line = 1
        self._column = 1
        self._tokens: list[Token] = []
        self._diagnostics: list[Diagnostic] = []

    def run(self) -> LexResult:
        source = self._source
        while self._index < len(source):
            char = source[self._index]
            if char in " \t":
                self._advance()
            elif char == "\n":
                start = self._position()
                self._advance()
                self._add_token(TokenKind.NEWLINE, start, "\n")
            elif char == "\r" and self._peek(1) == "\n":
                start = self._position()
                self._advance()
                self._advance()
                self._add_token(TokenKind.NEWLINE, start, "\r\n")
            elif char == '"':
                self._lex_string()
            elif _is_letter(char):
                start = self._position()
                begin = self._index
                while self._index < len(source) and _is_identifier_part(source[self._index]):
                    self._advance()
                lexeme = source[begin : self._index]
                kind = _KEYWORD_KINDS.get(lexeme, TokenKind.IDENTIFIER)
                self._add_token(kind, start, lexeme, lexeme)
            else:
                start = self._position()
                unexpected = self._advance()
                self._add_diagnostic(
                    "LEX_UNEXPECTED_CHARACTER", f'Unexpected character "{unexpected}"', start
                )

        eof = self._position()
        self._tokens.append(Token(TokenKind.EOF, "", SourceRange(eof, eof)))
        return LexResult(tuple(self._tokens), tuple(self._diagnostics))

    def _lex_string(self) -> None:
        source = self._source
        start = self._position()
        begin = self._index
        self._advance()
        parts: list[str] = []
        terminated = False
        while self._index < len(source):
            char = source[self._index]
            if char == '"':
                self._advance()
                terminated = True
                break
            if char in "\r\n":
                break
            if char == "\\":
                self._advance()
                if self._index >= len(source):
                    break
                escaped = self._advance()
                decoded = _ESCAPES.get(escaped)
                if decoded is None:
                    self._add_diagnostic(
                        "LEX_INVALID_ESCAPE", f'Invalid string escape sequence "\\{escaped}"', start
                    )
                else:
                    parts.append(decoded)
                continue
            parts.append(char)
            self._advance()

        if not terminated:
            self._add_diagnostic("LEX_UNTERMINATED_STRING", "Unterminated string literal", start)
            return
        self._add_token(
            TokenKind.STRING_LITERAL, start, source[begin : self._index], "".join(parts)
        )

    def _peek(self, distance: int) -> str | None:
        index = self._index + distance
        return self._source[index] if index < len(self._source) else None

    def _position(self) -> SourcePosition:
        return SourcePosition(self._index, self._line, self._column)

    def _advance(self) -> str:
        char = self._source[self._index]
        self._index += 1
        if char == "\n":
            self._line += 1
            self._column = 1
        else:
            self._column += 1
        return char

    def _add_token(
        self, kind: TokenKind, start: SourcePosition, lexeme: str, value: str | None = None
    ) -> None:
        self._tokens.append(Token(kind, lexeme, SourceRange(start, self._position()), value))

    def _add_diagnostic(self, code: str, message: str, start: SourcePosition) -> None:
        self._diagnostics.append(Diagnostic(code, message, SourceRange(start, self._position())))


def lex(source: str) -> LexResult:
    return _Lexer(source).run()


class _Parser:
    def __init__(self, tokens: tuple[Token, ...]) -> None:
        self._tokens = tokens
        self._index = 0
        self._diagnostics: list[Diagnostic] = []

    def parse(self) -> ParseResult:
        self._skip_newlines()
        document_start = self._current()
        goal = self._parse_goal_section()
        capabilities: list[CapabilityDeclaration] = []
        checks: list[CheckDeclaration] = []
        in_checks = False

        while not self._is_at(TokenKind.EOF):
            self._skip_newlines()
            token = self._current()
            if token.kind is TokenKind.EOF:
                break
            start_index = self._index

            if token.kind is TokenKind.CHECK_KEYWORD:
                in_checks = True
                check = self._parse_named_declaration(TokenKind.CHECK_KEYWORD, "check")
                if check is not None:
                    checks.append(CheckDeclaration(*check))
            elif not in_checks and token.kind is TokenKind.CAPABILITY_KEYWORD:
                capability = self._parse_named_declaration(
                    TokenKind.CAPABILITY_KEYWORD, "capability"
                )
                if capability is not None:
                    capabilities.append(CapabilityDeclaration(*capability))
            else:
                self._report_misplaced(token, in_checks=in_checks)
                self._skip_line()

            if self._index == start_index:
                self._skip_line()

        if goal is None and not any(
            (item.code, item.message)
            in {
                ("PARSE_EXPECTED_DECLARATION", "Document must start with a goal declaration"),
                ("PARSE_EXPECTED_TOKEN", "Expected a quoted string after 'goal'"),
            }
            for item in self._diagnostics
        ):
            self._add_diagnostic(
                "PARSE_MISSING_REQUIRED_DECLARATION",
                "Document must contain exactly one goal declaration",
                document_start.range,
            )

        if not capabilities:
            anchor = goal.range.end if goal is not None else document_start.range.start
            self._add_diagnostic(
                "PARSE_MISSING_REQUIRED_DECLARATION",
                "Document must contain at least one capability declaration",
                SourceRange(anchor, anchor),
            )

        if not checks:
            if capabilities:
                anchor = capabilities[-1].range.end
            elif goal is not None:
                anchor = goal.range.end
            else:
                anchor = document_start.range.start
            self._add_diagnostic(
                "PARSE_MISSING_REQUIRED_DECLARATION",
                "Document must contain at least one check declaration",
                SourceRange(anchor, anchor),
            )

        if goal is None or self._diagnostics:
            return ParseResult(None, tuple(self._diagnostics))
        return ParseResult(
            Document(
                goal=goal,
                capabilities=tuple(capabilities),
                checks=tuple(checks),
                range=SourceRange(goal.range.start, checks[-1].range.end),
            ),
            (),
        )

    def _report_misplaced(self, token: Token, *, in_checks: bool) -> None:
        if not in_checks:
            if token.kind is TokenKind.GOAL_KEYWORD:
                self._add_diagnostic(
                    "PARSE_UNEXPECTED_TOKEN",
                    "Unexpected 'goal' declaration: only one goal declaration is allowed",
                    token.range,
                )
            else:
                self._add_diagnostic(
                    "PARSE_EXPECTED_DECLARATION",
                    "Expected a capability declaration after the goal declaration",
                    token.range,
                )
        elif token.kind is TokenKind.CAPABILITY_KEYWORD:
            self._add_diagnostic(
                "PARSE_UNEXPECTED_TOKEN",
                "Capability declarations are not allowed after check declarations begin",
                token.range,
            )
        elif token.kind is TokenKind.GOAL_KEYWORD:
            self._add_diagnostic(
                "PARSE_UNEXPECTED_TOKEN",
                "Unexpected 'goal' declaration after check declarations",
                token.range,
            )
        else:
            self._add_diagnostic(
                "PARSE_EXPECTED_DECLARATION", "Expected a check declaration", token.range
            )

    def _parse_goal_section(self) -> GoalDeclaration | None:
        keyword = self._current()
        if keyword.kind is not TokenKind.GOAL_KEYWORD:
            self._add_diagnostic(
                "PARSE_EXPECTED_DECLARATION",
                "Document must start with a goal declaration",
                keyword.range,
            )
            return None
        self._advance()
        value = self._expect(TokenKind.STRING_LITERAL, "Expected a quoted string after 'goal'")
        if value is None or value.value is None:
            self._consume_until_line_boundary()
            return None
        self._validate_line_ending("goal declaration")
        return GoalDeclaration(value.value, SourceRange(keyword.range.start, value.range.end))

    def _parse_named_declaration(
        self, keyword_kind: TokenKind, label: str
    ) -> tuple[str, str, SourceRange] | None:
        keyword = self._advance()
        if keyword.kind is not keyword_kind:
            return None
        name = self._expect(TokenKind.IDENTIFIER, f"Expected {label} identifier after '{label}'")
        if name is None or name.value is None:
            self._consume_until_line_boundary()
            return None
        description = self._expect(
            TokenKind.STRING_LITERAL, f"Expected a quoted string after {label} identifier"
        )
        if description is None or description.value is None:
            self._consume_until_line_boundary()
            return None
        self._validate_line_ending(f"{label} declaration")
        return name.value, description.value, SourceRange(keyword.range.start, description.range.end)

    def _expect(self, kind: TokenKind, message: str) -> Token | None:
        token = self._current()
        if token.kind is kind:
            return self._advance()
        self._add_diagnostic("PARSE_EXPECTED_TOKEN", message, token.range)
        return None

    def _validate_line_ending(self, context: str) -> None:
        if self._is_at(TokenKind.NEWLINE) or self._is_at(TokenKind.EOF):
            return
        self._add_diagnostic(
            "PARSE_UNEXPECTED_TOKEN",
            f"Unexpected token after {context}; expected end of line",
            self._current().range,
        )
        self._consume_until_line_boundary()

    def _skip_line(self) -> None:
        self._consume_until_line_boundary()
        if self._is_at(TokenKind.NEWLINE):
            self._advance()

    def _consume_until_line_boundary(self) -> None:
        while not self._is_at(TokenKind.EOF) and not self._is_at(TokenKind.NEWLINE):
            self._advance()

    def _skip_newlines(self) -> None:
        while self._is_at(TokenKind.NEWLINE):
            self._advance()

    def _is_at(self, kind: TokenKind) -> bool:
        return self._current().kind is kind

    def _current(self) -> Token:
        return self._tokens[min(self._index, len(self._tokens) - 1)]

    def _advance(self) -> Token:
        token = self._current()
        if self._index < len(self._tokens) - 1:
            self._index += 1
        return token

    def _add_diagnostic(self, code: str, message: str, source_range: SourceRange) -> None:
        self._diagnostics.append(Diagnostic(code, message, source_range))


def parse_ls_document(source: str) -> ParseResult:
    """Lex and parse ``source``; lexer diagnostics short-circuit parsing."""

    lexed = lex(source)
    if lexed.diagnostics:
        return ParseResult(None, lexed.diagnostics)
    return _Parser(lexed.tokens).parse()


class LsDocumentParser:
    """Default ``DocumentParser`` for `.ls` files."""

    def parse(self, source: str) -> ParseResult:
        return parse_ls_document(source)


__all__ = [
    "CapabilityDeclaration",
    "CheckDeclaration",
    "Diagnostic",
    "Document",
    "DocumentParser",
    "GoalDeclaration",
    "LexResult",
    "LsDocumentParser",
    "ParseResult",
    "SourcePosition",
    "SourceRange",
    "Token",
    "TokenKind",
    "lex",
    "parse_ls_document",
]
