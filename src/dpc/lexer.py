from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple
import re

from .diagnostics import Diagnostic, Span

# Token kinds
TK_KEYWORD="KEYWORD"
TK_IDENT="IDENT"
TK_NUMBER="NUMBER"
TK_STRING="STRING"
TK_SIGIL="SIGIL"
TK_PUNCT="PUNCT"
TK_OPAQUE="OPAQUE"
TK_COMMENT="COMMENT"
TK_NEWLINE="NEWLINE"
TK_EOF="EOF"

KEYWORDS={"var","set","if","else","while","function","macro","call"}

# `execute if <test>` subcommands that stay opaque inside a condition
NATIVE_TESTS={
    "entity","block","blocks","data","predicate","score",
    "biome","dimension","function","items","loaded",
}

PUNCT2={"==","!=","<=",">=","&&","+=","-=","*=","/=","%="}
PUNCT1=set("(){},=<>+-*/%!")

# a native test keyword followed by one of these is an ordinary name in an expression
_EXPR_FOLLOW=set("=!<>+-*/%)&")

_re_ident=re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_re_path=re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.\-]*(?:/[A-Za-z0-9_][A-Za-z0-9_.\-]*)*")
_re_number=re.compile(r"\d+")
_re_string=re.compile(r'"(?:[^"\\]|\\.)*"')
_re_sigil=re.compile(r"%%|%([A-Za-z_][A-Za-z0-9_]*)")
# JSON text component keys whose values are translation formats (`%s`, `%1$s`)
_re_format_value=re.compile(r'"(?:translate|fallback)"\s*:\s*("(?:[^"\\]|\\.)*")')


@dataclass(frozen=True)
class Token:
    kind: str
    value: str
    span: Span


class _Lexer:
    def __init__(self, filename: str):
        self.filename=filename
        self.tokens: List[Token]=[]
        self.diagnostics: List[Diagnostic]=[]
        self.depth=0  # sugar blocks currently open
        self.li=0
        self.line=""

    # --- helpers ---
    def _span(self, start: int, end: int) -> Span:
        return Span(self.filename, self.li, start+1, self.li, end+1)

    def _tok(self, kind: str, start: int, end: int, value: Optional[str]=None) -> None:
        text=self.line[start:end] if value is None else value
        self.tokens.append(Token(kind, text, self._span(start, end)))

    def _error(self, code: str, start: int, end: int, msg: str, fix: Optional[str]=None) -> None:
        self.diagnostics.append(Diagnostic(code, msg, self._span(start, end), fix))

    # --- line driver ---
    def lex_line(self, li: int, line: str) -> None:
        self.li=li
        self.line=line
        n=len(line)

        lead=len(line)-len(line.lstrip(" \t"))
        if "\t" in line[:lead]:
            col=line.index("\t")
            self._error("DPC-LEX-0003", col, col+1, "Tabs are not allowed in indentation.", "Indent with spaces.")

        i=0
        while i < n:
            if line[i] in " \t":
                i+=1
                continue
            i=self._statement(i)

        self.tokens.append(Token(TK_NEWLINE, "\n", self._span(n, n)))

    def _statement(self, i: int) -> int:
        line=self.line
        n=len(line)
        ch=line[i]

        if ch=="#":
            self._tok(TK_COMMENT, i, n, line[i:].rstrip())
            return n
        if ch=="}":
            self._tok(TK_PUNCT, i, i+1)
            self.depth=max(0, self.depth-1)
            return i+1
        if ch=="{":
            self._tok(TK_PUNCT, i, i+1)
            self.depth+=1
            return i+1
        if ch=="!" and i+1 < n and _re_ident.match(line, i+1):
            self._tok(TK_SIGIL, i, i+1)
            return self._sugar(i+1)

        m=_re_ident.match(line, i)
        if m and self._is_sugar(m.group(0), m.end()):
            return self._sugar(i)
        return self._passthrough(i)

    def _is_sugar(self, word: str, end: int) -> bool:
        rest=self.line[end:]
        if word in ("var","set","call"):
            return rest[:1] in (" ","\t")
        if word in ("if","while"):
            return rest.lstrip().startswith("(")
        if word=="else":
            return True
        if word=="macro":
            return True
        if word=="function":
            stripped=rest.lstrip(" \t")
            if len(stripped)==len(rest):
                return False
            m=_re_path.match(stripped)
            if not m:
                return False
            return stripped[m.end():].lstrip()[:1] in ("(","{")
        return False

    # --- sugar statements ---
    def _sugar(self, i: int) -> int:
        line=self.line
        n=len(line)
        pending_cond=False
        cond_depth=0
        term_start=False

        while i < n:
            ch=line[i]
            if ch in " \t":
                i+=1
                continue

            if cond_depth > 0 and term_start and self._native_start(i):
                i=self._native(i)
                term_start=False
                continue

            if ch=='"':
                m=_re_string.match(line, i)
                if not m:
                    self._error("DPC-LEX-0001", i, n, "Unterminated string literal.", "Close the string with '\"'.")
                    return n
                self._tok(TK_STRING, i, m.end())
                i=m.end()
                term_start=False
                continue

            if ch.isdigit():
                m=_re_number.match(line, i)
                self._tok(TK_NUMBER, i, m.end())
                i=m.end()
                term_start=False
                continue

            if ch.isalpha() or ch=="_":
                prev=self.tokens[-1] if self.tokens else None
                if prev is not None and prev.kind==TK_KEYWORD and prev.value in ("function","call"):
                    m=_re_path.match(line, i)
                else:
                    m=_re_ident.match(line, i)
                word=m.group(0)
                self._tok(TK_KEYWORD if word in KEYWORDS else TK_IDENT, i, m.end())
                if word in ("if","while"):
                    pending_cond=True
                i=m.end()
                term_start=False
                continue

            two=line[i:i+2]
            if two in PUNCT2:
                self._tok(TK_PUNCT, i, i+2)
                term_start=(two=="&&")
                i+=2
                continue

            if ch in PUNCT1:
                if ch=="}":
                    return i
                self._tok(TK_PUNCT, i, i+1)
                if ch=="{":
                    self.depth+=1
                    return i+1
                if ch=="(":
                    if pending_cond:
                        pending_cond=False
                        cond_depth=1
                        term_start=True
                    elif cond_depth > 0:
                        cond_depth+=1
                        term_start=True
                elif ch==")":
                    if cond_depth > 0:
                        cond_depth-=1
                    term_start=False
                elif ch!="!":
                    term_start=False
                i+=1
                continue

            self._error("DPC-LEX-0002", i, i+1, f"Unexpected character '{ch}'.", "Remove or replace the character.")
            i+=1
        return n

    def _native_start(self, i: int) -> bool:
        m=_re_ident.match(self.line, i)
        if not m or m.group(0) not in NATIVE_TESTS:
            return False
        rest=self.line[m.end():]
        stripped=rest.lstrip(" ")
        if len(stripped)==len(rest) or not stripped:
            return False
        if stripped[0]=="%":
            # `%name` and `%%` start a sigil, `% 2` is modulo
            return len(stripped) > 1 and (stripped[1].isalpha() or stripped[1] in "_%")
        return stripped[0] not in _EXPR_FOLLOW

    def _native(self, i: int) -> int:
        """Scan an opaque `execute if` test up to `&&` or the closing parenthesis."""
        line=self.line
        n=len(line)
        j=i
        nest=0
        quoted=False
        while j < n:
            ch=line[j]
            if quoted:
                if ch=="\\":
                    j+=2
                    continue
                if ch=='"':
                    quoted=False
            elif ch=='"':
                quoted=True
            elif ch in "([{":
                nest+=1
            elif ch in ")]}":
                if nest==0:
                    if ch==")":
                        break
                else:
                    nest-=1
            elif nest==0 and line.startswith("&&", j):
                break
            j+=1
        if j >= n:
            self._error("DPC-LEX-0004", i, n, "Unterminated condition.", "Close the condition with ')'.")
        self._fragment(i, j)
        return j

    # --- passthrough ---
    def _passthrough(self, i: int) -> int:
        line=self.line
        n=len(line)
        stop_at_close=self.depth > 0
        j=i
        nest=0
        quoted=False
        while j < n:
            ch=line[j]
            if quoted:
                if ch=="\\":
                    j+=2
                    continue
                if ch=='"':
                    quoted=False
            elif ch=='"':
                quoted=True
            elif ch=="{":
                nest+=1
            elif ch=="}":
                if nest==0 and stop_at_close:
                    break
                nest=max(0, nest-1)
            j+=1
        j=min(j, n)
        self._fragment(i, j)
        return j

    def _fragment(self, start: int, end: int) -> None:
        """Emit verbatim text, splitting out `%name` sigils and `%%` escapes.

        Translation format strings in JSON text are left untouched.
        """
        text=self.line[start:end].rstrip()
        end=start+len(text)
        formats=[f.span(1) for f in _re_format_value.finditer(self.line, start, end)]
        pos=start
        for m in _re_sigil.finditer(self.line, start, end):
            if any(a <= m.start() < b for a, b in formats):
                continue
            if m.start() > pos:
                self._tok(TK_OPAQUE, pos, m.start())
            if m.group(0)=="%%":
                self._tok(TK_SIGIL, m.start(), m.end())
            else:
                self._tok(TK_SIGIL, m.start(), m.start()+1)
                self._tok(TK_IDENT, m.start(1), m.end(1))
            pos=m.end()
        if pos < end:
            self._tok(TK_OPAQUE, pos, end)


def lex(text: str, filename: str="<input>") -> Tuple[List[Token], List[Diagnostic]]:
    """Deterministic single-pass lexer for the sugared mcfunction dialect.

    Lines are classified at every statement start: sugar keywords, the macro
    sigil and block braces become structured tokens; anything else is kept
    verbatim as OPAQUE passthrough text. Comments are kept as tokens.
    """
    text=text.replace("\r\n","\n").replace("\r","\n")

    # Avoid spurious last empty line when source ends with \n.
    if text.endswith("\n"):
        lines=text[:-1].split("\n")
    else:
        lines=text.split("\n")

    lx=_Lexer(filename)
    for li, raw in enumerate(lines, start=1):
        lx.lex_line(li, raw)

    lx.tokens.append(Token(TK_EOF, "", Span.point(filename, len(lines)+1, 1)))
    return lx.tokens, lx.diagnostics
