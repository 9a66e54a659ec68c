"""Restricted evaluation of user-supplied transform code."""

import json
import operator
import re
import textwrap
import threading
from typing import Any, Callable, Dict, Optional

from RestrictedPython import compile_restricted, safe_builtins, PrintCollector
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import (
    full_write_guard,
    guarded_iter_unpack_sequence,
    guarded_unpack_sequence,
    safer_getattr,
)

from .exceptions import UserCodeError
from .logging import get_logger

logger = get_logger(__name__)

# The editor spells the bound input as $json / $input. String literals and
# comments are matched first so their text is left alone.
_PLACEHOLDER_PATTERN = re.compile(
    r"""(?P<literal>[rRbBuUfF]{0,2}(?:\"\"\"[\s\S]*?\"\"\"|'''[\s\S]*?'''|"(?:\\.|[^"\\\n])*"|'(?:\\.|[^'\\\n])*'))"""
    r"|(?P<comment>#[^\n]*)"
    r"|\$(?P<name>json|input)\b"
)
_DEF_PATTERN = re.compile(r"^def\s+([A-Za-z]\w*)\s*\(", re.MULTILINE)
_ENTRY_POINT = "transform"

_INPLACE_OPERATORS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
    "|=": operator.ior,
    "&=": operator.iand,
}


def _inplacevar(op: str, target: Any, value: Any) -> Any:
    if op not in _INPLACE_OPERATORS:
        raise SyntaxError(f"Operator {op} is not supported")
    return _INPLACE_OPERATORS[op](target, value)


def _apply(func: Callable, *args, **kwargs) -> Any:
    return func(*args, **kwargs)


class JsonObject(dict):
    """Dict that also allows ``obj.key`` reads, so ``json.bitcoin.usd`` works."""

    # Item assignment is plain dict behaviour; lets the write guard pass it through
    _guarded_writes = True

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name) from None


def to_sandbox_value(value: Any) -> Any:
    """Deep-copy ``value`` into sandbox containers."""
    if isinstance(value, dict):
        return JsonObject((key, to_sandbox_value(item)) for key, item in value.items())
    if isinstance(value, (list, tuple)):
        return [to_sandbox_value(item) for item in value]
    return value


def to_plain_value(value: Any) -> Any:
    """Convert sandbox containers back into plain dicts and lists."""
    if isinstance(value, dict):
        return {key: to_plain_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain_value(item) for item in value]
    return value


def normalize_placeholders(code: str) -> str:
    """Rewrite ``$json`` and ``$input`` into the bound names ``json`` and ``input``."""
    return _PLACEHOLDER_PATTERN.sub(lambda match: match.group("name") or match.group(0), code)


def _build_builtins() -> Dict[str, Any]:
    builtins = dict(safe_builtins)
    builtins.update({
        "dict": dict,
        "list": list,
        "set": set,
        "min": min,
        "max": max,
        "sum": sum,
        "any": any,
        "all": all,
        "enumerate": enumerate,
        "map": map,
        "filter": filter,
        "reversed": reversed,
        "json_dumps": json.dumps,
        "json_loads": json.loads,
    })
    return builtins


_BUILTINS = _build_builtins()


class UserCodeEvaluator:
    """
    Evaluate transform code under RestrictedPython with a wall-clock budget.

    The node input is bound as both ``json`` and ``input``. Accepted forms:

    * an expression, whose value is the result (a lambda is called with the input)
    * a ``def``; ``transform`` is called if defined, otherwise the last top-level function
    * a statement list, run as a function body so ``return`` yields the result

    Imports, names or attributes starting with an underscore, and builtins
    outside the safe set are rejected. The evaluator never touches the
    caller's objects: inputs are deep-copied before evaluation.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    def evaluate(self, code: str, json_value: Any, input_value: Any = None) -> Any:
        """
        Run ``code`` against the given input.

        Args:
            code: User transform code
            json_value: Value bound as ``json``
            input_value: Value bound as ``input`` (defaults to ``json_value``)

        Returns:
            The transform's result as plain JSON-like values, or None

        Raises:
            UserCodeError: On compile errors, runtime errors or exceeding the budget
        """
        source = textwrap.dedent(normalize_placeholders(code or "")).strip()
        if not source:
            return None

        if input_value is None:
            input_value = json_value
        restricted_globals = self._make_globals(
            to_sandbox_value(json_value),
            to_sandbox_value(input_value)
        )
        runner = self._compile(source, restricted_globals)
        return to_plain_value(self._run_with_timeout(runner))

    def _make_globals(self, json_value: Any, input_value: Any) -> Dict[str, Any]:
        return {
            "__builtins__": _BUILTINS,
            "__name__": "user_transform",
            "__metaclass__": type,
            "_getattr_": safer_getattr,
            "_getitem_": default_guarded_getitem,
            "_getiter_": default_guarded_getiter,
            "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
            "_unpack_sequence_": guarded_unpack_sequence,
            "_write_": full_write_guard,
            "_inplacevar_": _inplacevar,
            "_apply_": _apply,
            "_print_": PrintCollector,
            "json": json_value,
            "input": input_value,
        }

    def _compile(self, source: str, restricted_globals: Dict[str, Any]) -> Callable[[], Any]:
        json_value = restricted_globals["json"]
        input_value = restricted_globals["input"]

        try:
            expression = compile_restricted(source, "<transform>", "eval")
        except SyntaxError:
            expression = None

        if expression is not None:
            def run_expression():
                value = eval(expression, restricted_globals)
                if callable(value):
                    return _call_with_arity(value, json_value, input_value)
                return value
            return run_expression

        if _DEF_PATTERN.match(source):
            program = source
            entry_point = None
        else:
            body = textwrap.indent(source, "    ")
            program = f"def {_ENTRY_POINT}(json, input):\n{body}\n"
            entry_point = _ENTRY_POINT

        try:
            byte_code = compile_restricted(program, "<transform>", "exec")
        except SyntaxError as e:
            raise UserCodeError(f"Invalid transform code: {e}") from e

        def run_program():
            exec(byte_code, restricted_globals)
            name = entry_point
            if name is None:
                defined = _DEF_PATTERN.findall(source)
                name = _ENTRY_POINT if _ENTRY_POINT in defined else defined[-1]
            return _call_with_arity(restricted_globals[name], json_value, input_value)
        return run_program

    def _run_with_timeout(self, runner: Callable[[], Any]) -> Any:
        outcome: Dict[str, Any] = {}

        def target():
            try:
                outcome["result"] = runner()
            except Exception as e:
                outcome["error"] = e

        # Daemon thread: a runaway transform must not keep the process alive
        worker = threading.Thread(target=target, name="user-transform", daemon=True)
        worker.start()
        worker.join(self.timeout)

        if worker.is_alive():
            logger.warning(f"Transform exceeded its {self.timeout}s budget")
            raise UserCodeError(f"Transform timed out after {self.timeout} seconds")

        error: Optional[Exception] = outcome.get("error")
        if error is not None:
            if isinstance(error, UserCodeError):
                raise error
            raise UserCodeError(f"{type(error).__name__}: {error}") from error
        return outcome.get("result")


def _call_with_arity(func: Callable, json_value: Any, input_value: Any) -> Any:
    """Call ``func`` with as many of (json, input) as it accepts."""
    code = getattr(func, "__code__", None)
    if code is None:
        return func(json_value, input_value)
    if code.co_flags & 0x04:  # *args
        return func(json_value, input_value)
    return func(*(json_value, input_value)[:code.co_argcount])
