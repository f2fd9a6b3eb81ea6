"""Language guess, lint hints and syntax highlighting for template content.

Only Luau and Python are recognised; the guess counts regex hits for each
language and anything ambiguous is treated as plain text. Tokenising is done
by Pygments, with its token types folded into the handful of ``code-<type>``
classes the stylesheet knows about.
"""
from __future__ import annotations

import html
import re
from dataclasses import dataclass

from pygments.lexers import LuauLexer, PythonLexer, TextLexer
from pygments.token import Comment, Keyword, Name, Number, Operator, Punctuation, String


LUAU = "Luau"
PYTHON = "Python"
UNKNOWN = "Unknown"

MAX_HIGHLIGHT_LINES = 220
MAX_LINE_LENGTH = 110

_LUAU_PATTERNS = (
    re.compile(r"--.*$", re.M),
    re.compile(r"\b(local|function|end|then|elseif|repeat|until|game|workspace|script|task|ipairs|pairs|Enum|Vector3|CFrame)\b"),
    re.compile(r"\b[A-Z][A-Za-z0-9_]*\.new\("),
)
_PYTHON_PATTERNS = (
    re.compile(r"#.*$", re.M),
    re.compile(r"\b(def|import|from|class|elif|except|lambda|with|yield|async|await|self|None|True|False)\b"),
    re.compile(r":\s*$", re.M),
    re.compile(r"\bself\."),
)

# a block header with no colon after the keyword
_PY_BLOCK_RE = re.compile(r"^(if|for|while|def|class|elif|else|try|except|finally|with)\b[^:]*$")

_LEXERS = {LUAU: LuauLexer, PYTHON: PythonLexer}

# checked in order; the first matching parent type wins
_TOKEN_KINDS = (
    (Comment, "comment"),
    (String, "string"),
    (Number, "number"),
    (Keyword, "keyword"),
    (Name.Builtin, "builtin"),
    (Name.Function, "function"),
    (Operator, "operator"),
    (Punctuation, "operator"),
)


@dataclass(frozen=True)
class Token:
    text: str
    type: str


def _hits(patterns, content: str) -> int:
    return sum(len(p.findall(content)) for p in patterns)


def detect_language(content: str) -> str:
    luau = _hits(_LUAU_PATTERNS, content)
    python = _hits(_PYTHON_PATTERNS, content)
    if luau == python:
        return UNKNOWN
    return LUAU if luau > python else PYTHON


def lint_hints(content: str, language: str) -> list[str]:
    hints = []
    lines = content.split("\n")
    if any(len(line) > MAX_LINE_LENGTH for line in lines):
        hints.append(f"Some lines are longer than {MAX_LINE_LENGTH} characters.")
    tab_indent = any(re.match(r"^\t+", line) for line in lines)
    space_indent = any(re.match(r"^ {2,}", line) for line in lines)
    if tab_indent and space_indent:
        hints.append("Indentation mixes tabs and spaces.")

    if language == PYTHON:
        code_lines = (line.strip() for line in lines if not line.strip().startswith("#"))
        if any(_PY_BLOCK_RE.match(line) for line in code_lines):
            hints.append("A Python block statement may be missing its trailing colon (:).")
    elif language == LUAU:
        functions = len(re.findall(r"\bfunction\b", content))
        ends = len(re.findall(r"\bend\b", content))
        if functions > ends:
            hints.append("A Luau function may be missing its closing end.")
    return hints[:3]


def _kind(ttype) -> str:
    for parent, kind in _TOKEN_KINDS:
        if ttype in parent:
            return kind
    return "plain"


def tokenize(content: str, language: str) -> list[Token]:
    """Pygments tokens for ``content``, adjacent tokens of one kind merged."""
    lexer = _LEXERS.get(language, TextLexer)(stripnl=False, ensurenl=False)
    tokens: list[Token] = []
    for ttype, value in lexer.get_tokens(content):
        if not value:
            continue
        kind = _kind(ttype)
        if tokens and tokens[-1].type == kind:
            tokens[-1] = Token(tokens[-1].text + value, kind)
        else:
            tokens.append(Token(value, kind))
    return tokens


def lex_line(line: str, language: str) -> list[Token]:
    if not line:
        return [Token(" ", "plain")]
    return tokenize(line, language)


def _split_lines(tokens: list[Token]) -> list[list[Token]]:
    lines: list[list[Token]] = [[]]
    for token in tokens:
        for i, part in enumerate(token.text.split("\n")):
            if i:
                lines.append([])
            if part:
                lines[-1].append(Token(part, token.type))
    return lines


def highlight_to_html(content: str, language: str) -> str:
    # lexed as a whole so multi-line strings and comments keep their kind
    source = "\n".join(content.split("\n")[:MAX_HIGHLIGHT_LINES])
    return "\n".join(
        "".join(f'<span class="code-{t.type}">{html.escape(t.text)}</span>' for t in line)
        for line in _split_lines(tokenize(source, language))
    )
