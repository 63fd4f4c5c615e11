"""
Preamble command extraction.

Finds user-defined macros in the source so the registry-backed
reconstruction can hand them to the renderer as MathJax macros:

    \\newcommand{\\R}{\\mathbb{R}}              -> R: ["\\mathbb{R}"]
    \\renewcommand{\\vec}[1]{\\mathbf{#1}}      -> vec: ["\\mathbf{#1}", 1]
    \\newcommand{\\norm}[2][2]{\\|#2\\|_{#1}}    -> norm: ["\\|#2\\|_{#1}", 2, "2"]
    \\DeclareMathOperator{\\tr}{tr}             -> tr: ["\\operatorname{tr}"]
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# \newcommand{\name}[n][default]{ ... also \renewcommand, \providecommand, starred forms
RE_NEWCOMMAND = re.compile(
    r'\\(?P<cmd>newcommand|renewcommand|providecommand)\*?\s*'
    r'\{\s*\\(?P<name>[A-Za-z]+)\s*\}'
    r'(?:\s*\[(?P<args>\d+)\])?'
    r'(?:\s*\[(?P<default>[^\]]*)\])?'
    r'\s*(?=\{)'
)

# \DeclareMathOperator{\name}{ / \DeclareMathOperator*{\name}{
RE_MATH_OPERATOR = re.compile(
    r'\\DeclareMathOperator(?P<star>\*?)\s*\{\s*\\(?P<name>[A-Za-z]+)\s*\}\s*(?=\{)'
)


@dataclass
class PreambleCommand:
    """A macro definition found in the source."""
    name: str
    definition: str
    args: int = 0
    default_arg: Optional[str] = None
    source_command: str = "newcommand"
    source_offset: int = 0

    @property
    def is_operator(self) -> bool:
        return self.source_command == "DeclareMathOperator"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "definition": self.definition,
            "args": self.args,
            "default_arg": self.default_arg,
            "source_command": self.source_command,
            "source_offset": self.source_offset,
        }


def extract_balanced_braces(text: str, start: int) -> Optional[Tuple[str, int]]:
    """Content of the {...} group opening at or after start, and its end index."""
    depth = 0
    content_start = -1
    i = start
    while i < len(text):
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "{":
            if depth == 0:
                content_start = i + 1
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[content_start:i], i
        i += 1
    return None


def extract_preamble_commands(text: str) -> List[PreambleCommand]:
    """All macro definitions in document order; unbalanced bodies are skipped."""
    commands: List[PreambleCommand] = []
    if not isinstance(text, str) or "\\" not in text:
        return commands

    for m in RE_NEWCOMMAND.finditer(text):
        body = extract_balanced_braces(text, m.end())
        if body is None:
            logger.warning("Unbalanced definition for \\%s skipped", m.group("name"))
            continue
        commands.append(PreambleCommand(
            name=m.group("name"),
            definition=body[0],
            args=int(m.group("args") or 0),
            default_arg=m.group("default"),
            source_command=m.group("cmd"),
            source_offset=m.start(),
        ))

    for m in RE_MATH_OPERATOR.finditer(text):
        body = extract_balanced_braces(text, m.end())
        if body is None:
            logger.warning("Unbalanced operator \\%s skipped", m.group("name"))
            continue
        commands.append(PreambleCommand(
            name=m.group("name"),
            definition=body[0],
            source_command="DeclareMathOperator",
            source_offset=m.start(),
        ))

    commands.sort(key=lambda c: c.source_offset)
    logger.debug("Found %d preamble command(s)", len(commands))
    return commands


def commands_to_macros(commands: List[PreambleCommand]) -> Dict[str, list]:
    """
    Convert definitions to the MathJax ``tex.macros`` format.

    Later definitions of the same name win, matching \\renewcommand.
    """
    macros: Dict[str, list] = {}
    for cmd in commands:
        if not cmd.name:
            continue
        if cmd.is_operator:
            macros[cmd.name] = [f"\\operatorname{{{cmd.definition}}}"]
        elif cmd.default_arg is not None:
            macros[cmd.name] = [cmd.definition, cmd.args, cmd.default_arg]
        elif cmd.args:
            macros[cmd.name] = [cmd.definition, cmd.args]
        else:
            macros[cmd.name] = [cmd.definition]
    return macros
