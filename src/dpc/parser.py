from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple
import ast as _py_ast
import re

from . import ast as A
from .diagnostics import Diagnostic, Span
from .lexer import (
    Token,
    TK_COMMENT, TK_EOF, TK_IDENT, TK_KEYWORD, TK_NEWLINE, TK_NUMBER,
    TK_OPAQUE, TK_PUNCT, TK_SIGIL, TK_STRING,
)

_re_function_name = re.compile(r"^[a-z0-9_.\-]+(?:/[a-z0-9_.\-]+)*$")
_re_plain_name = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

ASSIGN_OPS = ("=", "+=", "-=", "*=", "/=", "%=")
COMPARE_OPS = ("==", "!=", "<", "<=", ">", ">=")


@dataclass
class ParseResult:
    program: A.Program
    diagnostics: List[Diagnostic]


class _Abort(Exception):
    def __init__(self, diag: Diagnostic):
        super().__init__(diag.message)
        self.diag = diag


def _describe(tok: Token) -> str:
    if tok.kind == TK_EOF:
        return "end of file"
    if tok.kind == TK_NEWLINE:
        return "end of line"
    return f"'{tok.value}'"


def _decode_string(raw: str) -> str:
    try:
        return _py_ast.literal_eval(raw)
    except (SyntaxError, ValueError):
        return raw[1:-1]


class Parser:
    def __init__(self, tokens: List[Token], filename: str, module: str):
        self.tokens = tokens
        self.filename = filename
        self.module = module
        self.pos = 0
        self.depth = 0
        self.diagnostics: List[Diagnostic] = []

    # ---------- token helpers ----------
    def peek(self, k: int = 0) -> Token:
        i = min(self.pos + k, len(self.tokens) - 1)
        return self.tokens[i]

    def advance(self) -> Token:
        tok = self.peek()
        if tok.kind != TK_EOF:
            self.pos += 1
        return tok

    def at(self, kind: str, value: Optional[str] = None) -> bool:
        tok = self.peek()
        return tok.kind == kind and (value is None or tok.value == value)

    def at_punct(self, *values: str) -> bool:
        tok = self.peek()
        return tok.kind == TK_PUNCT and tok.value in values

    def expect(self, kind: str, value: Optional[str], what: str) -> Token:
        if self.at(kind, value):
            return self.advance()
        tok = self.peek()
        raise _Abort(Diagnostic("DPC-SYN-0001", f"Expected {what}, found {_describe(tok)}.", tok.span))

    def error(self, code: str, msg: str, span: Span, fix: Optional[str] = None) -> None:
        self.diagnostics.append(Diagnostic(code, msg, span, fix))

    def _sync(self) -> None:
        """Skip to the next statement boundary, jumping over balanced blocks."""
        nest = 0
        while not self.at(TK_EOF):
            tok = self.peek()
            if tok.kind == TK_PUNCT and tok.value == "{":
                nest += 1
            elif tok.kind == TK_PUNCT and tok.value == "}":
                if nest == 0:
                    return
                nest -= 1
            elif tok.kind == TK_NEWLINE and nest == 0:
                self.advance()
                return
            self.advance()

    def _end_statement(self) -> None:
        if self.at(TK_NEWLINE):
            self.advance()
            return
        if self.at(TK_EOF) or self.at_punct("}"):
            return
        tok = self.peek()
        raise _Abort(Diagnostic("DPC-SYN-0001", f"Unexpected {_describe(tok)} after statement.", tok.span))

    # ---------- program / blocks ----------
    def parse_program(self) -> A.Program:
        statements: List[A.Stmt] = []
        while not self.at(TK_EOF):
            if self.at_punct("}"):
                tok = self.advance()
                self.error("DPC-SYN-0002", "Unmatched '}'.", tok.span, "Remove the brace or open a block before it.")
                continue
            st = self._statement_recovering()
            if st is not None:
                statements.append(st)
        return A.Program(self.filename, self.module, statements)

    def _statement_recovering(self) -> Optional[A.Stmt]:
        try:
            return self.statement()
        except _Abort as e:
            self.diagnostics.append(e.diag)
            self._sync()
            return None

    def block(self) -> A.Block:
        open_tok = self.expect(TK_PUNCT, "{", "'{'")
        self.depth += 1
        depth = self.depth
        statements: List[A.Stmt] = []
        end = open_tok.span
        while True:
            if self.at_punct("}"):
                end = self.advance().span
                break
            if self.at(TK_EOF):
                self.error("DPC-SYN-0003", "Block is never closed.", open_tok.span, "Add a matching '}'.")
                end = self.peek().span
                break
            st = self._statement_recovering()
            if st is not None:
                statements.append(st)
        self.depth -= 1
        return A.Block(statements, open_tok.span.to(end), depth)

    # ---------- statements ----------
    def statement(self) -> Optional[A.Stmt]:
        tok = self.peek()

        if tok.kind == TK_NEWLINE:
            self.advance()
            return None
        if tok.kind == TK_COMMENT:
            self.advance()
            return A.Comment(tok.value, tok.span)
        if tok.kind == TK_OPAQUE or (tok.kind == TK_SIGIL and tok.value in ("%", "%%")):
            return self.passthrough()
        if tok.kind == TK_SIGIL and tok.value == "!":
            return self.macro_invocation()
        if tok.kind == TK_KEYWORD:
            handler = {
                "var": self.var_decl,
                "set": self.assignment,
                "if": self.if_else,
                "while": self.loop,
                "function": self.function_decl,
                "macro": self.macro_decl,
                "call": self.call,
            }.get(tok.value)
            if handler is not None:
                return handler()
            if tok.value == "else":
                raise _Abort(Diagnostic("DPC-SYN-0001", "'else' without a matching 'if'.", tok.span))
        raise _Abort(Diagnostic("DPC-SYN-0001", f"Unexpected {_describe(tok)}.", tok.span))

    def _text_parts(self) -> Tuple[str, Tuple[A.TextPart, ...], Span]:
        """OPAQUE/SIGIL run -> (raw text, parts with Name references, span)."""
        first = self.peek()
        raw: List[str] = []
        parts: List[A.TextPart] = []
        last = first
        while True:
            tok = self.peek()
            if tok.kind == TK_OPAQUE:
                self.advance()
                raw.append(tok.value)
                parts.append(tok.value)
            elif tok.kind == TK_SIGIL and tok.value == "%%":
                self.advance()
                raw.append("%%")
                parts.append("%")
            elif tok.kind == TK_SIGIL and tok.value == "%":
                self.advance()
                name = self.expect(TK_IDENT, None, "a variable name after '%'")
                raw.append("%" + name.value)
                parts.append(A.Name(name.value, tok.span.to(name.span)))
            else:
                break
            last = self.tokens[self.pos - 1]

        merged: List[A.TextPart] = []
        for p in parts:
            if isinstance(p, str) and merged and isinstance(merged[-1], str):
                merged[-1] = merged[-1] + p
            else:
                merged.append(p)
        return "".join(raw), tuple(merged), first.span.to(last.span)

    def passthrough(self) -> A.PassthroughCommand:
        text, parts, span = self._text_parts()
        self._end_statement()
        return A.PassthroughCommand(text, parts, span)

    def var_decl(self) -> A.VariableDeclaration:
        kw = self.advance()
        name = self.expect(TK_IDENT, None, "a variable name")
        value = None
        end = name.span
        if self.at_punct("="):
            self.advance()
            value = self.expression()
            end = value.span
        self._end_statement()
        return A.VariableDeclaration(name.value, value, kw.span.to(end), name.span)

    def assignment(self) -> A.Assignment:
        kw = self.advance()
        name = self.expect(TK_IDENT, None, "a variable name")
        if not self.at_punct(*ASSIGN_OPS):
            tok = self.peek()
            raise _Abort(Diagnostic(
                "DPC-SYN-0001",
                f"Expected an assignment operator, found {_describe(tok)}.",
                tok.span,
                "Use one of " + ", ".join(ASSIGN_OPS) + ".",
            ))
        op = self.advance().value
        value = self.expression()
        self._end_statement()
        return A.Assignment(A.Name(name.value, name.span), op, value, kw.span.to(value.span))

    def _condition_header(self) -> A.Condition:
        self.expect(TK_PUNCT, "(", "'(' after the keyword")
        cond = self.condition()
        self.expect(TK_PUNCT, ")", "')' to close the condition")
        return cond

    def if_else(self) -> A.IfElse:
        kw = self.advance()
        cond = self._condition_header()
        then_block = self.block()
        else_block = None

        # `else` may follow on the next line
        save = self.pos
        while self.at(TK_NEWLINE):
            self.advance()
        if self.at(TK_KEYWORD, "else"):
            self.advance()
            if self.at(TK_KEYWORD, "if"):
                self.depth += 1
                inner = self.if_else()
                self.depth -= 1
                else_block = A.Block([inner], inner.span, self.depth + 1)
            else:
                else_block = self.block()
        else:
            self.pos = save

        end = (else_block or then_block).span
        return A.IfElse(cond, then_block, else_block, kw.span.to(end))

    def loop(self) -> A.Loop:
        kw = self.advance()
        cond = self._condition_header()
        body = self.block()
        return A.Loop(cond, body, kw.span.to(body.span))

    def _params(self) -> List[A.Param]:
        params: List[A.Param] = []
        if not self.at_punct("("):
            return params
        self.advance()
        if self.at_punct(")"):
            self.advance()
            return params
        while True:
            tok = self.expect(TK_IDENT, None, "a parameter name")
            params.append(A.Param(tok.value, tok.span))
            if self.at_punct(","):
                self.advance()
                continue
            self.expect(TK_PUNCT, ")", "',' or ')' in the parameter list")
            return params

    def function_decl(self) -> A.FunctionDeclaration:
        kw = self.advance()
        name = self.expect(TK_IDENT, None, "a function name")
        if not _re_function_name.match(name.value):
            self.error(
                "DPC-SYN-0004",
                f"Invalid function name '{name.value}'.",
                name.span,
                "Use lowercase letters, digits, '_', '-', '.' and '/' separators.",
            )
        params = self._params()
        body = self.block()
        return A.FunctionDeclaration(name.value, params, body, kw.span.to(body.span), name.span)

    def macro_decl(self) -> A.MacroDeclaration:
        kw = self.advance()
        name = self.expect(TK_IDENT, None, "a macro name")
        if not _re_plain_name.match(name.value):
            self.error("DPC-SYN-0004", f"Invalid macro name '{name.value}'.", name.span)
        params = self._params()
        body = self.block()
        return A.MacroDeclaration(name.value, params, body, kw.span.to(body.span), name.span)

    def call(self) -> A.FunctionCall:
        kw = self.advance()
        name = self.expect(TK_IDENT, None, "a function name")
        args: List[A.Expr] = []
        end = name.span
        if self.at_punct("("):
            self.advance()
            if not self.at_punct(")"):
                while True:
                    args.append(self.expression())
                    if self.at_punct(","):
                        self.advance()
                        continue
                    break
            end = self.expect(TK_PUNCT, ")", "')' to close the argument list").span
        self._end_statement()
        return A.FunctionCall(A.Name(name.value, name.span), args, kw.span.to(end))

    def macro_invocation(self) -> A.MacroInvocation:
        bang = self.advance()
        name = self.expect(TK_IDENT, None, "a macro name after '!'")
        args: List[A.MacroArg] = []
        end = name.span
        if self.at_punct("("):
            self.advance()
            if not self.at_punct(")"):
                while True:
                    if self.at(TK_STRING):
                        tok = self.advance()
                        args.append(A.StringLiteral(_decode_string(tok.value), tok.span))
                    else:
                        args.append(self.expression())
                    if self.at_punct(","):
                        self.advance()
                        continue
                    break
            end = self.expect(TK_PUNCT, ")", "')' to close the argument list").span
        self._end_statement()
        return A.MacroInvocation(A.Name(name.value, name.span), args, bang.span.to(end))

    # ---------- conditions ----------
    def condition(self) -> A.Condition:
        terms = [self.cond_term()]
        while self.at_punct("&&"):
            self.advance()
            terms.append(self.cond_term())
        return A.Condition(terms, terms[0].span.to(terms[-1].span))

    def cond_term(self):
        start = self.peek().span
        negated = False
        while self.at_punct("!"):
            self.advance()
            negated = not negated

        if self.at(TK_OPAQUE) or self.at(TK_SIGIL, "%") or self.at(TK_SIGIL, "%%"):
            text, parts, span = self._text_parts()
            return A.NativeTest(text, parts, negated, start.to(span))

        left = self.expression()
        if not self.at_punct(*COMPARE_OPS):
            # bare expression: true when non-zero
            return A.Compare("!=", left, A.Number(0, left.span), negated, start.to(left.span))
        op = self.advance().value
        right = self.expression()
        return A.Compare(op, left, right, negated, start.to(right.span))

    # ---------- expressions ----------
    def expression(self) -> A.Expr:
        left = self.term()
        while self.at_punct("+", "-"):
            op = self.advance().value
            right = self.term()
            left = A.Binary(op, left, right, left.span.to(right.span))
        return left

    def term(self) -> A.Expr:
        left = self.unary()
        while self.at_punct("*", "/", "%"):
            op = self.advance().value
            right = self.unary()
            left = A.Binary(op, left, right, left.span.to(right.span))
        return left

    def unary(self) -> A.Expr:
        if self.at_punct("-"):
            tok = self.advance()
            operand = self.unary()
            if isinstance(operand, A.Number):
                return A.Number(-operand.value, tok.span.to(operand.span))
            return A.Unary("-", operand, tok.span.to(operand.span))
        return self.primary()

    def primary(self) -> A.Expr:
        tok = self.peek()
        if tok.kind == TK_NUMBER:
            self.advance()
            return A.Number(int(tok.value), tok.span)
        if tok.kind == TK_IDENT:
            self.advance()
            return A.Name(tok.value, tok.span)
        if tok.kind == TK_PUNCT and tok.value == "(":
            self.advance()
            inner = self.expression()
            self.expect(TK_PUNCT, ")", "')'")
            return inner
        raise _Abort(Diagnostic("DPC-SYN-0001", f"Expected an expression, found {_describe(tok)}.", tok.span))


def parse(tokens: List[Token], filename: str = "<input>", module: str = "main") -> ParseResult:
    p = Parser(tokens, filename, module)
    program = p.parse_program()
    return ParseResult(program, p.diagnostics)
