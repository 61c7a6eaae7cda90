import collections.abc
import sys
from contextlib import AbstractContextManager
from typing import Any, Callable

import emoji
from colors import red, yellow
from jinja2 import Environment, StrictUndefined, Template
from jinja2.exceptions import TemplateSyntaxError, UndefinedError


class UserError(Exception):
    def __init__(self, message) -> None:
        super().__init__(message)
        self.message = message


class Logger(AbstractContextManager):
    _global_indent: int = 0

    def __init__(self, header: str = None, indent_amount: int = 6, spacious: bool = True) -> None:
        super().__init__()
        self._header: str = header
        self._indent_amount: int = indent_amount
        self._spacious: bool = spacious
        self._indent: int = Logger._global_indent
        self._line_ended: bool = True

    def __enter__(self) -> 'Logger':
        if self._header:
            self.info(self._header)
            if self._spacious:
                self.info('')

        Logger._global_indent += self._indent_amount
        self._indent: int = Logger._global_indent
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> Any:
        if self._spacious:
            self.info('')

        Logger._global_indent -= self._indent_amount
        self._indent: int = Logger._global_indent

        # returning None lets exceptions propagate to the caller
        return None

    def _wrap_message(self, message: str, color: Callable[[str], str] = None) -> str:
        if color: message = color(message)
        lines: list = message.split('\n')
        if self._line_ended:
            return "\n".join([(' ' * self._indent) + emoji.emojize(line, language='alias') for line in lines])
        else:
            first_line = emoji.emojize(lines.pop(0), language='alias')
            rest_lines = "\n".join([emoji.emojize(line, language='alias') for line in lines])
            return first_line + rest_lines

    def info(self, message: str, newline: bool = True) -> None:
        print(self._wrap_message(message), file=sys.stdout, end='\n' if newline else '')
        sys.stdout.flush()
        self._line_ended: bool = newline

    def warn(self, message: str, newline: bool = True) -> None:
        print(self._wrap_message(message, yellow), file=sys.stdout, end='\n' if newline else '')
        sys.stdout.flush()
        self._line_ended: bool = newline

    def error(self, message: str, newline: bool = True) -> None:
        print(self._wrap_message(message, red), file=sys.stderr, end='\n' if newline else '')
        sys.stderr.flush()
        self._line_ended: bool = newline


def merge_into(target: dict, *args) -> dict:
    for source in args:
        for k, v in source.items():
            if k in target and isinstance(target[k], dict) and isinstance(v, collections.abc.Mapping):
                merge_into(target[k], v)
            else:
                target[k] = v
    return target


def render_template(source: str, context: dict) -> str:
    """Renders a Jinja2 template string, failing on undefined variables."""
    try:
        template: Template = Environment(undefined=StrictUndefined).from_string(source)
        return template.render(context)
    except (TemplateSyntaxError, UndefinedError) as e:
        raise UserError(f"template error: {e.message}") from e


def post_process(value: Any, context: dict) -> Any:

    def _evaluate(expr: str) -> Any:
        environment: Environment = Environment()
        try:
            if expr.startswith('{{') and expr.endswith('}}') and expr.find('{{') == expr.rfind('{{'):
                # single expression: keep the evaluated type (int, bool, ...)
                expr = expr[2:len(expr) - 2]
                return environment.compile_expression(expr)(context)
            elif expr.find('{{') >= 0:
                template: Template = environment.from_string(expr, globals=context)
                return template.render(context)
            else:
                return expr
        except TemplateSyntaxError as e:
            raise UserError(f"expression error in '{expr}': {e.message}") from e

    def _post_process_config(value) -> Any:
        if isinstance(value, str):
            return _evaluate(value)
        elif isinstance(value, dict):
            return {k: _post_process_config(value=v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_post_process_config(value=item) for item in value]
        else:
            return value

    return _post_process_config(value=value)
