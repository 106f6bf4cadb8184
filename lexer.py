from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional


class LogoError(Exception):
    """Base class for interpreter errors."""


class LogoLexError(LogoError):
    """Raised when the source text cannot be split into lexemes."""


class LogoParseError(LogoError):
    """Raised when parsing fails."""

    def __init__(self, message: str, *, expected: Optional[str] = None, found: Optional["Lexeme"] = None) -> None:
        super().__init__(message)
        self.message = message
        self.expected = expected
        self.found = found


@dataclass(frozen=True)
class Lexeme:
    kind: str
    text: str
    line: int
    column: int


KEYWORDS = {
    "fn",
    "if",
    "else",
    "loop",
}

SYMBOLS = {
    "(": "LPAREN",
    ")": "RPAREN",
    "{": "LBRACE",
    "}": "RBRACE",
    ",": "COMMA",
}

SINGLE_OPS = {"+", "*", "/", "%"}

# Lexeme kinds after which a '-' is a binary operator rather than a sign.
OPERAND_END = {"NUMBER", "NAME", "STRING", "RPAREN"}


def _is_digit(ch: str) -> bool:
    return "0" <= ch <= "9"


class Lexer:
    def __init__(self, text: str, filename: str = "<string>") -> None:
        self.text = text
        self.filename = filename
        self.index = 0
        self.line = 1
        self.column = 1

    def tokenize(self) -> List[Lexeme]:
        lexemes: List[Lexeme] = []
        lexemes_append = lexemes.append
        _advance = self._advance
        symbols = SYMBOLS
        text = self.text
        n = len(text)

        while self.index < n:
            ch: str = text[self.index]
            if ch.isspace():
                _advance()
                continue
            if ch == "#":
                self._consume_comment()
                continue
            if ch in symbols:
                lexemes_append(Lexeme(symbols[ch], ch, self.line, self.column))
                _advance()
                continue
            if ch == '"':
                lexemes_append(self._consume_string())
                continue
            if ch == "-":
                previous = lexemes[-1].kind if lexemes else None
                if previous not in OPERAND_END and _is_digit(self._peek_at(1)):
                    lexemes_append(self._consume_number())
                else:
                    lexemes_append(Lexeme("OP", "-", self.line, self.column))
                    _advance()
                continue
            if ch in SINGLE_OPS:
                lexemes_append(Lexeme("OP", ch, self.line, self.column))
                _advance()
                continue
            if ch in "<>=":
                lexemes_append(self._consume_comparison())
                continue
            if _is_digit(ch):
                lexemes_append(self._consume_number())
                continue
            if self._is_identifier_start(ch):
                lexemes_append(self._consume_identifier())
                continue
            raise LogoLexError(
                f"Unexpected character '{ch}' at {self.filename}:{self.line}:{self.column}"
            )
        lexemes_append(Lexeme("EOF", "", self.line, self.column))
        return lexemes

    def _consume_comment(self) -> None:
        text = self.text
        n = len(text)
        _advance = self._advance
        while self.index < n and text[self.index] != "\n":
            _advance()

    def _consume_comparison(self) -> Lexeme:
        line, col = self.line, self.column
        first = self._peek()
        self._advance()
        if self._peek_at(0) == "=":
            self._advance()
            return Lexeme("OP", first + "=", line, col)
        if first == "=":
            return Lexeme("ASSIGN", "=", line, col)
        return Lexeme("OP", first, line, col)

    def _consume_number(self) -> Lexeme:
        line, col = self.line, self.column
        chars: List[str] = []
        if self._peek() == "-":
            chars.append("-")
            self._advance()
        chars.append(self._consume_digits())
        if not self._eof and self._peek() == ".":
            self._advance()
            chars.append(".")
            chars.append(self._consume_digits())
        return Lexeme("NUMBER", "".join(chars), line, col)

    def _consume_digits(self) -> str:
        digits: List[str] = []
        text = self.text
        n = len(text)
        while self.index < n and _is_digit(text[self.index]):
            digits.append(text[self.index])
            self._advance()
        return "".join(digits)

    def _consume_string(self) -> Lexeme:
        line, col = self.line, self.column
        self._advance()  # consume opening quote
        chars: List[str] = []
        while not self._eof:
            ch = self._peek()
            if ch == '"':
                self._advance()
                return Lexeme("STRING", "".join(chars), line, col)
            chars.append(ch)
            self._advance()
        raise LogoLexError(
            f"Unterminated string literal at {self.filename}:{line}:{col}"
        )

    def _consume_identifier(self) -> Lexeme:
        line, col = self.line, self.column
        chars: List[str] = []
        text = self.text
        n = len(text)
        while self.index < n and self._is_identifier_part(text[self.index]):
            chars.append(text[self.index])
            self._advance()
        value = "".join(chars)
        kind = "KEYWORD" if value in KEYWORDS else "NAME"
        return Lexeme(kind, value, line, col)

    def _is_identifier_start(self, ch: str) -> bool:
        return ch == "_" or ("a" <= ch <= "z") or ("A" <= ch <= "Z")

    def _is_identifier_part(self, ch: str) -> bool:
        return self._is_identifier_start(ch) or ("0" <= ch <= "9")

    @property
    def _eof(self) -> bool:
        return self.index >= len(self.text)

    def _peek(self) -> str:
        return self.text[self.index]

    def _peek_at(self, offset: int) -> str:
        position = self.index + offset
        if position >= len(self.text):
            return ""
        return self.text[position]

    def _advance(self) -> None:
        if self.text[self.index] == "\n":
            self.line += 1
            self.column = 1
        else:
            self.column += 1
        self.index += 1


def tokenize(text: str, filename: str = "<string>") -> List[Lexeme]:
    return Lexer(text, filename).tokenize()
