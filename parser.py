from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from lexer import Lexeme, LogoParseError


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


@dataclass
class Node:
    location: SourceLocation


@dataclass
class Program(Node):
    statements: List["Statement"]


class Statement(Node):
    pass


class Expression(Node):
    pass


@dataclass
class NumberLiteral(Expression):
    value: float


@dataclass
class StringLiteral(Expression):
    value: str


@dataclass
class NameReference(Expression):
    name: str


@dataclass
class BinaryOp(Expression):
    op: str
    left: Expression
    right: Expression


@dataclass
class CallExpression(Expression):
    name: str
    # Canonical built-in name, or None for a user function resolved at call time.
    builtin: Optional[str]
    args: List[Expression]


@dataclass
class ExpressionStatement(Statement):
    expression: CallExpression


@dataclass
class Assignment(Statement):
    target: str
    expression: Expression


@dataclass
class Loop(Statement):
    count: Expression
    body: List[Statement]


@dataclass
class IfStatement(Statement):
    condition: Expression
    then_body: List[Statement]
    else_body: List[Statement]


@dataclass(frozen=True)
class FunctionDefinition:
    name: str
    params: Tuple[str, ...]
    body: Tuple[Statement, ...]
    location: SourceLocation


@dataclass
class FuncDef(Statement):
    name: str
    function: FunctionDefinition


BINARY_OPS = {
    "+": "ADD",
    "-": "SUB",
    "*": "MUL",
    "/": "DIV",
    "%": "MOD",
    "<": "LT",
    ">": "GT",
    "<=": "LTE",
    ">=": "GTE",
    "==": "EQ",
}

# Higher binds tighter.
PRECEDENCE = {
    "<": 0,
    ">": 0,
    "<=": 0,
    ">=": 0,
    "==": 0,
    "+": 1,
    "-": 1,
    "*": 2,
    "/": 2,
    "%": 2,
}

BUILTIN_NAMES = {
    "forward",
    "backward",
    "left",
    "right",
    "up",
    "down",
    "pos",
    "angle",
    "thickness",
    "rand",
    "clear",
    "intvar",
    "floatvar",
    "getx",
    "gety",
    "getangle",
    "winw",
    "winh",
    "midx",
    "midy",
    "push",
    "pop",
    "line",
    "debug",
}

BUILTIN_ALIASES = {
    "f": "forward",
    "b": "backward",
    "l": "left",
    "r": "right",
    "u": "up",
    "d": "down",
    "p": "pos",
    "a": "angle",
    "t": "thickness",
    "c": "clear",
}


def resolve_builtin(name: str) -> Optional[str]:
    if name in BUILTIN_NAMES:
        return name
    return BUILTIN_ALIASES.get(name)


_KIND_NAMES = {
    "KEYWORD": "keyword",
    "NAME": "name",
    "NUMBER": "number",
    "STRING": "string",
    "LPAREN": "'('",
    "RPAREN": "')'",
    "LBRACE": "'{'",
    "RBRACE": "'}'",
    "COMMA": "','",
    "OP": "operator",
    "ASSIGN": "'='",
    "EOF": "end of input",
}


def _describe(lexeme: Lexeme) -> str:
    label = _KIND_NAMES.get(lexeme.kind, lexeme.kind)
    if lexeme.kind in ("KEYWORD", "NAME", "NUMBER", "OP"):
        return f"{label} '{lexeme.text}'"
    if lexeme.kind == "STRING":
        return f'{label} "{lexeme.text}"'
    return label


class Parser:
    def __init__(
        self,
        lexemes: List[Lexeme],
        filename: str = "<string>",
        source_lines: Optional[List[str]] = None,
    ):
        if not lexemes or lexemes[-1].kind != "EOF":
            last = lexemes[-1] if lexemes else None
            lexemes = list(lexemes) + [Lexeme("EOF", "", last.line if last else 1, last.column if last else 1)]
        self.lexemes = lexemes
        self.filename = filename
        self.source_lines = source_lines or []
        self.index = 0

    def parse(self) -> Program:
        statements: List[Statement] = self._parse_statements(stop_kinds={"EOF"})
        eof: Lexeme = self._peek()
        return Program(location=self._location_from_lexeme(eof), statements=statements)

    def _parse_statements(self, stop_kinds: Iterable[str]) -> List[Statement]:
        statements: List[Statement] = []
        while self._peek().kind not in stop_kinds:
            if self._peek().kind == "EOF":
                raise self._error("'}'", self._peek())
            statements.append(self._parse_statement())
        return statements

    def _parse_statement(self) -> Statement:
        lexeme = self._peek()
        if lexeme.kind == "KEYWORD":
            if lexeme.text == "loop":
                return self._parse_loop()
            if lexeme.text == "fn":
                return self._parse_fndef()
            if lexeme.text == "if":
                return self._parse_if()
        if lexeme.kind == "NAME" and self._peek_next().kind == "ASSIGN":
            return self._parse_assignment()
        call = self._parse_call()
        return ExpressionStatement(location=call.location, expression=call)

    def _parse_assignment(self) -> Assignment:
        name = self._consume("NAME")
        self._consume("ASSIGN")
        expr = self._parse_expression()
        return Assignment(location=self._location_from_lexeme(name), target=name.text, expression=expr)

    def _parse_loop(self) -> Loop:
        keyword = self._consume("KEYWORD", "loop")
        count = self._parse_parenthesized_expression()
        body = self._parse_block()
        return Loop(location=self._location_from_lexeme(keyword), count=count, body=body)

    def _parse_if(self) -> IfStatement:
        keyword = self._consume("KEYWORD", "if")
        condition = self._parse_parenthesized_expression()
        then_body = self._parse_block()
        else_body: List[Statement] = []
        if self._match("KEYWORD", "else"):
            else_body = self._parse_block()
        return IfStatement(
            location=self._location_from_lexeme(keyword),
            condition=condition,
            then_body=then_body,
            else_body=else_body,
        )

    def _parse_fndef(self) -> FuncDef:
        keyword = self._consume("KEYWORD", "fn")
        name = self._consume("NAME")
        self._consume("LPAREN")
        params: List[str] = []
        if self._peek().kind != "RPAREN":
            while True:
                param = self._consume("NAME")
                if param.text in params:
                    raise LogoParseError(
                        f"Duplicate parameter '{param.text}' in function {name.text} "
                        f"at {self.filename}:{param.line}:{param.column}",
                        expected="unique parameter name",
                        found=param,
                    )
                params.append(param.text)
                if not self._match("COMMA"):
                    break
        self._consume("RPAREN")
        body = self._parse_block()
        location = self._location_from_lexeme(keyword)
        function = FunctionDefinition(name=name.text, params=tuple(params), body=tuple(body), location=location)
        return FuncDef(location=location, name=name.text, function=function)

    def _parse_block(self) -> List[Statement]:
        self._consume("LBRACE")
        statements = self._parse_statements(stop_kinds={"RBRACE"})
        self._consume("RBRACE")
        return statements

    def _parse_call(self) -> CallExpression:
        name = self._consume("NAME")
        self._consume("LPAREN")
        args: List[Expression] = []
        if self._peek().kind != "RPAREN":
            while True:
                args.append(self._parse_expression())
                if not self._match("COMMA"):
                    break
        self._consume("RPAREN")
        return CallExpression(
            location=self._location_from_lexeme(name),
            name=name.text,
            builtin=resolve_builtin(name.text),
            args=args,
        )

    def _parse_parenthesized_expression(self) -> Expression:
        self._consume("LPAREN")
        expr = self._parse_expression()
        self._consume("RPAREN")
        return expr

    def _parse_expression(self) -> Expression:
        operands: List[Expression] = []
        operators: List[Lexeme] = []
        while True:
            operands.append(self._parse_operand())
            if self._peek().kind != "OP":
                break
            op = self._consume("OP")
            while operators and PRECEDENCE[operators[-1].text] >= PRECEDENCE[op.text]:
                self._reduce(operands, operators)
            operators.append(op)
        while operators:
            self._reduce(operands, operators)
        return operands[0]

    def _reduce(self, operands: List[Expression], operators: List[Lexeme]) -> None:
        right = operands.pop()
        left = operands.pop()
        op = operators.pop()
        operands.append(
            BinaryOp(location=self._location_from_lexeme(op), op=BINARY_OPS[op.text], left=left, right=right)
        )

    def _parse_operand(self) -> Expression:
        lexeme = self._peek()
        if lexeme.kind == "NUMBER":
            self.index += 1
            try:
                number = float(lexeme.text)
            except ValueError:
                raise self._error("number", lexeme)
            return NumberLiteral(location=self._location_from_lexeme(lexeme), value=number)
        if lexeme.kind == "STRING":
            self.index += 1
            return StringLiteral(location=self._location_from_lexeme(lexeme), value=lexeme.text)
        if lexeme.kind == "NAME":
            if self._peek_next().kind == "LPAREN":
                return self._parse_call()
            self.index += 1
            return NameReference(location=self._location_from_lexeme(lexeme), name=lexeme.text)
        raise self._error("expression", lexeme)

    def _consume(self, kind: str, text: Optional[str] = None) -> Lexeme:
        lexeme = self._peek()
        if lexeme.kind != kind or (text is not None and lexeme.text != text):
            expected = f"{_KIND_NAMES.get(kind, kind)} '{text}'" if text is not None else _KIND_NAMES.get(kind, kind)
            raise self._error(expected, lexeme)
        self.index += 1
        return lexeme

    def _match(self, kind: str, text: Optional[str] = None) -> bool:
        lexeme = self._peek()
        if lexeme.kind == kind and (text is None or lexeme.text == text):
            self.index += 1
            return True
        return False

    def _peek(self) -> Lexeme:
        return self.lexemes[self.index]

    def _peek_next(self) -> Lexeme:
        if self.index + 1 >= len(self.lexemes):
            return self.lexemes[-1]
        return self.lexemes[self.index + 1]

    def _error(self, expected: str, found: Lexeme) -> LogoParseError:
        return LogoParseError(
            f"Expected {expected} but found {_describe(found)} at {self.filename}:{found.line}:{found.column}",
            expected=expected,
            found=found,
        )

    def _location_from_lexeme(self, lexeme: Lexeme) -> SourceLocation:
        line_index = lexeme.line - 1
        statement = ""
        if 0 <= line_index < len(self.source_lines):
            statement = self.source_lines[line_index].strip()
        return SourceLocation(file=self.filename, line=lexeme.line, column=lexeme.column, statement=statement)


def parse(lexemes: List[Lexeme], filename: str = "<string>", source_lines: Optional[List[str]] = None) -> Program:
    return Parser(lexemes, filename, source_lines).parse()
