"""ENGLANG extension: extra text statements.

Adds:
  uppercase <value> into <var>
  lowercase <value> into <var>
  reverse <value> into <var>
  trim <value> into <var>
"""

from __future__ import annotations

from typing import Callable, List

from extensions import ExtensionAPI
from values import text

ENGLANG_EXTENSION_NAME = "strings"
ENGLANG_EXTENSION_API_VERSION = 1


def _text_statement(transform: Callable[[str], str]):
    def handler(interpreter, tokens: List, _index: int) -> None:
        interpreter.assign(tokens[3].value, text(transform(interpreter.text_of(tokens[1]))))

    return handler


def englang_register(ext: ExtensionAPI) -> None:
    ext.metadata(name="strings", version="0.1.0")
    ext.register_statement("uppercase _ into _", _text_statement(str.upper), doc="uppercase <value> into <var>")
    ext.register_statement("lowercase _ into _", _text_statement(str.lower), doc="lowercase <value> into <var>")
    ext.register_statement("reverse _ into _", _text_statement(lambda s: s[::-1]), doc="reverse <value> into <var>")
    ext.register_statement("trim _ into _", _text_statement(str.strip), doc="trim <value> into <var>")
