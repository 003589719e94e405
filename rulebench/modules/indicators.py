"""
Indicator Definitions - Declarative weighted predicates.

An indicator is {label, weight, predicate}. The predicate is written either
as a mapping tree or as a one-line expression; both compile into the same
pure function over a ProcessEvent. Every structural problem is reported as
InvalidIndicatorDefinition at load time, never while scoring.

Mapping form:
    predicate:
      all:
        - {field: fileName, op: contains, value: wmiprvse}
        - {field: initiatingProcessFileName, op: contains, value: powershell}

Expression form:
    predicate: fileName contains "wmiprvse" AND initiatingProcessFileName contains "powershell"
"""
import fnmatch
import os
import re
from typing import Any, Callable, Dict, Iterable, List, Mapping, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, field_validator

from rulebench.core.exceptions import InvalidIndicatorDefinition
from rulebench.core.schemas import CANONICAL_FIELDS, UNKNOWN_PROCESS_ID, ProcessEvent
from rulebench.utils.logger import Logger

Predicate = Callable[[ProcessEvent], bool]

INTEGER_FIELDS = {"process_id", "initiating_process_id"}
UNSUPPORTED_FIELDS = {"timestamp"}

STRING_OPS = {
    "equals", "not_equals", "contains", "not_contains", "startswith", "endswith",
    "regex", "wildcard", "in", "not_in", "contains_any", "contains_all", "token", "exists",
}
INTEGER_OPS = {"equals", "not_equals", "in", "not_in", "gt", "gte", "lt", "lte", "exists"}
LIST_OPS = {"in", "not_in", "contains_any", "contains_all"}

OP_ALIASES = {
    "==": "equals", "=": "equals", "!=": "not_equals",
    ">": "gt", ">=": "gte", "<": "lt", "<=": "lte",
    "matches": "regex", "like": "wildcard", "has": "contains",
    "starts_with": "startswith", "ends_with": "endswith",
    "!contains": "not_contains", "!in": "not_in",
}

_CMD_TOKEN_RE = re.compile(r'"[^"]*"|\'[^\']*\'|\S+')


def command_tokens(command_line: str) -> List[str]:
    """Whitespace tokens of a command line, quoted runs kept whole and unquoted."""
    return [t.strip("\"'") for t in _CMD_TOKEN_RE.findall(command_line)]


def resolve_field(name: Any, label: str = None) -> str:
    """Map a canonical (camelCase) or python (snake_case) field name to its attribute."""
    if not isinstance(name, str) or not name:
        raise InvalidIndicatorDefinition("predicate leaf needs a 'field' name", label)
    attr = CANONICAL_FIELDS.get(name, name)
    if attr in UNSUPPORTED_FIELDS:
        raise InvalidIndicatorDefinition(f"field '{name}' cannot be used in a predicate", label)
    if attr not in ProcessEvent.model_fields:
        valid = sorted(k for k, v in CANONICAL_FIELDS.items() if v not in UNSUPPORTED_FIELDS)
        raise InvalidIndicatorDefinition(f"unknown field '{name}'. Valid fields: {valid}", label)
    return attr


# ═══════════════════════════════════════════════════════════════════════════
# PREDICATE COMPILER
# ═══════════════════════════════════════════════════════════════════════════

def compile_predicate(node: Any, label: str = None) -> Predicate:
    """Compile a predicate (expression string or mapping tree) into a callable."""
    if isinstance(node, str):
        node = parse_expression(node, label)
    if not isinstance(node, Mapping):
        raise InvalidIndicatorDefinition(
            f"predicate must be a mapping or expression string, got {type(node).__name__}", label)

    combinators = [k for k in ("all", "any", "not") if k in node]
    if combinators and "field" in node:
        raise InvalidIndicatorDefinition("predicate node mixes 'field' with a combinator", label)
    if len(combinators) > 1:
        raise InvalidIndicatorDefinition(f"predicate node has several combinators {combinators}", label)

    if not combinators:
        return _compile_leaf(node, label)

    key = combinators[0]
    if len(node) != 1:
        extra = sorted(k for k in node if k != key)
        raise InvalidIndicatorDefinition(f"unexpected keys {extra} next to '{key}'", label)
    body = node[key]
    if key == "not":
        inner = compile_predicate(body, label)
        return lambda event: not inner(event)

    if not isinstance(body, list) or not body:
        raise InvalidIndicatorDefinition(f"'{key}' needs a non-empty list of predicates", label)
    children = tuple(compile_predicate(child, label) for child in body)
    if key == "all":
        return lambda event: all(child(event) for child in children)
    return lambda event: any(child(event) for child in children)


def _compile_leaf(node: Mapping, label: str) -> Predicate:
    unknown = set(node) - {"field", "op", "value", "case_sensitive"}
    if unknown:
        raise InvalidIndicatorDefinition(f"unexpected keys {sorted(unknown)} in predicate leaf", label)
    attr = resolve_field(node.get("field"), label)
    raw_op = node.get("op")
    if not isinstance(raw_op, str) or not raw_op:
        raise InvalidIndicatorDefinition(f"predicate on '{node.get('field')}' needs an 'op'", label)
    op = OP_ALIASES.get(raw_op.lower(), raw_op.lower())
    case_sensitive = node.get("case_sensitive", False)
    if not isinstance(case_sensitive, bool):
        raise InvalidIndicatorDefinition("'case_sensitive' must be true or false", label)

    if attr in INTEGER_FIELDS:
        if op not in INTEGER_OPS:
            raise InvalidIndicatorDefinition(
                f"operator '{raw_op}' is not valid for integer field '{node['field']}'", label)
        return _integer_predicate(attr, op, node.get("value"), "value" in node, label)

    if op not in STRING_OPS:
        raise InvalidIndicatorDefinition(
            f"operator '{raw_op}' is not valid for string field '{node['field']}'", label)
    return _string_predicate(attr, op, node.get("value"), "value" in node, case_sensitive, label)


def _string_predicate(attr: str, op: str, value: Any, has_value: bool,
                      case_sensitive: bool, label: str) -> Predicate:
    if op == "exists":
        return lambda event: getattr(event, attr) != ""

    fold = (lambda s: s) if case_sensitive else str.lower

    if op in LIST_OPS or op == "token":
        values = value if isinstance(value, list) else [value]
        if op in LIST_OPS and not isinstance(value, list):
            raise InvalidIndicatorDefinition(f"operator '{op}' needs a list value", label)
        if not has_value or not values or not all(isinstance(v, str) for v in values):
            raise InvalidIndicatorDefinition(f"operator '{op}' needs string values", label)
        folded = tuple(fold(v) for v in values)
        if op == "in":
            members = frozenset(folded)
            return lambda event: fold(getattr(event, attr)) in members
        if op == "not_in":
            members = frozenset(folded)
            return lambda event: fold(getattr(event, attr)) not in members
        if op == "contains_any":
            return lambda event: any(v in fold(getattr(event, attr)) for v in folded)
        if op == "contains_all":
            return lambda event: all(v in fold(getattr(event, attr)) for v in folded)
        wanted = frozenset(folded)
        return lambda event: any(fold(t) in wanted for t in command_tokens(getattr(event, attr)))

    if not has_value or not isinstance(value, str):
        raise InvalidIndicatorDefinition(f"operator '{op}' needs a string value", label)

    if op == "regex":
        try:
            pattern = re.compile(value, 0 if case_sensitive else re.IGNORECASE)
        except re.error as e:
            raise InvalidIndicatorDefinition(f"invalid regex {value!r}: {e}", label) from None
        return lambda event: pattern.search(getattr(event, attr)) is not None

    needle = fold(value)
    if op == "equals":
        return lambda event: fold(getattr(event, attr)) == needle
    if op == "not_equals":
        return lambda event: fold(getattr(event, attr)) != needle
    if op == "contains":
        return lambda event: needle in fold(getattr(event, attr))
    if op == "not_contains":
        return lambda event: needle not in fold(getattr(event, attr))
    if op == "startswith":
        return lambda event: fold(getattr(event, attr)).startswith(needle)
    if op == "endswith":
        return lambda event: fold(getattr(event, attr)).endswith(needle)
    # wildcard
    return lambda event: fnmatch.fnmatchcase(fold(getattr(event, attr)), needle)


def _integer_predicate(attr: str, op: str, value: Any, has_value: bool, label: str) -> Predicate:
    if op == "exists":
        return lambda event: getattr(event, attr) != UNKNOWN_PROCESS_ID

    def is_int(v):
        return isinstance(v, int) and not isinstance(v, bool)

    if op in ("in", "not_in"):
        if not has_value or not isinstance(value, list) or not value or not all(is_int(v) for v in value):
            raise InvalidIndicatorDefinition(f"operator '{op}' needs a list of integers", label)
        members = frozenset(value)
        if op == "in":
            return lambda event: getattr(event, attr) in members
        return lambda event: getattr(event, attr) not in members

    if not has_value or not is_int(value):
        raise InvalidIndicatorDefinition(f"operator '{op}' needs an integer value", label)
    comparisons = {
        "equals": lambda event: getattr(event, attr) == value,
        "not_equals": lambda event: getattr(event, attr) != value,
        "gt": lambda event: getattr(event, attr) > value,
        "gte": lambda event: getattr(event, attr) >= value,
        "lt": lambda event: getattr(event, attr) < value,
        "lte": lambda event: getattr(event, attr) <= value,
    }
    return comparisons[op]


# ═══════════════════════════════════════════════════════════════════════════
# EXPRESSION PARSER
# ═══════════════════════════════════════════════════════════════════════════

_EXPR_TOKEN_RE = re.compile(r"""
    (?P<space>\s+)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<number>-?\d+)
  | (?P<symbol>==|!=|>=|<=|>|<|=|\(|\)|\[|\]|,)
  | (?P<word>!?[A-Za-z_@][A-Za-z0-9_.]*)
""", re.VERBOSE)

_KEYWORDS = {"and", "or", "not"}


def _tokenize(text: str, label: str) -> List[Tuple[str, Any]]:
    tokens = []
    pos = 0
    while pos < len(text):
        match = _EXPR_TOKEN_RE.match(text, pos)
        if not match:
            raise InvalidIndicatorDefinition(
                f"unexpected character {text[pos]!r} at offset {pos} in expression", label)
        kind = match.lastgroup
        raw = match.group(kind)
        pos = match.end()
        if kind == "space":
            continue
        if kind == "string":
            tokens.append(("string", re.sub(r"\\([\"'\\])", r"\1", raw[1:-1])))
        elif kind == "number":
            tokens.append(("number", int(raw)))
        elif kind == "word" and raw.lower() in _KEYWORDS:
            tokens.append(("keyword", raw.lower()))
        else:
            tokens.append((kind, raw))
    return tokens


class _ExpressionParser:
    """Recursive descent: or_expr := and_expr (OR and_expr)*; AND binds tighter."""

    def __init__(self, tokens: List[Tuple[str, Any]], label: str) -> None:
        self.tokens = tokens
        self.pos = 0
        self.label = label

    def _peek(self) -> Tuple[str, Any]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else ("end", None)

    def _next(self) -> Tuple[str, Any]:
        token = self._peek()
        self.pos += 1
        return token

    def _fail(self, msg: str):
        raise InvalidIndicatorDefinition(f"expression syntax error: {msg}", self.label)

    def parse(self) -> Dict[str, Any]:
        if not self.tokens:
            self._fail("empty expression")
        node = self._or()
        kind, value = self._peek()
        if kind != "end":
            self._fail(f"unexpected {value!r}")
        return node

    def _or(self) -> Dict[str, Any]:
        parts = [self._and()]
        while self._peek() == ("keyword", "or"):
            self._next()
            parts.append(self._and())
        return parts[0] if len(parts) == 1 else {"any": parts}

    def _and(self) -> Dict[str, Any]:
        parts = [self._unary()]
        while self._peek() == ("keyword", "and"):
            self._next()
            parts.append(self._unary())
        return parts[0] if len(parts) == 1 else {"all": parts}

    def _unary(self) -> Dict[str, Any]:
        kind, value = self._peek()
        if (kind, value) == ("keyword", "not"):
            self._next()
            return {"not": self._unary()}
        if (kind, value) == ("symbol", "("):
            self._next()
            node = self._or()
            if self._next() != ("symbol", ")"):
                self._fail("missing ')'")
            return node
        return self._comparison()

    def _comparison(self) -> Dict[str, Any]:
        kind, field = self._next()
        if kind != "word":
            self._fail(f"expected a field name, got {field!r}")
        kind, op = self._next()
        if kind not in ("word", "symbol") or op in ("(", ")", "[", "]", ","):
            self._fail(f"expected an operator after '{field}', got {op!r}")
        if OP_ALIASES.get(op.lower(), op.lower()) == "exists":
            return {"field": field, "op": op}
        return {"field": field, "op": op, "value": self._value()}

    def _value(self) -> Any:
        kind, value = self._next()
        if kind in ("string", "number"):
            return value
        if (kind, value) == ("symbol", "["):
            items = [self._value()]
            while self._peek() == ("symbol", ","):
                self._next()
                items.append(self._value())
            if self._next() != ("symbol", "]"):
                self._fail("missing ']'")
            return items
        self._fail(f"expected a value, got {value!r}")


def parse_expression(text: str, label: str = None) -> Dict[str, Any]:
    """Parse an expression string into the mapping-tree predicate form."""
    return _ExpressionParser(_tokenize(text, label), label).parse()


# ═══════════════════════════════════════════════════════════════════════════
# INDICATORS
# ═══════════════════════════════════════════════════════════════════════════

class IndicatorDefinition(BaseModel):
    """Structural contract of one external indicator definition."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    label: str
    weight: StrictInt = Field(gt=0)
    predicate: Union[str, Dict[str, Any]]
    description: str = ""

    @field_validator("label")
    @classmethod
    def _non_empty_label(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("label must not be empty")
        return value


class Indicator:
    """A named weighted predicate over ProcessEvent."""

    def __init__(self, label: str, weight: int, predicate: Union[str, Mapping, Predicate],
                 description: str = "") -> None:
        if callable(predicate) and not isinstance(predicate, (str, Mapping)):
            definition = _check_definition(
                {"label": label, "weight": weight, "predicate": "", "description": description})
            self._evaluate = predicate
            self.predicate = getattr(predicate, "__name__", "<callable>")
        else:
            if isinstance(predicate, Mapping):
                predicate = dict(predicate)
            definition = _check_definition(
                {"label": label, "weight": weight, "predicate": predicate, "description": description})
            self._evaluate = compile_predicate(definition.predicate, definition.label)
            self.predicate = definition.predicate
        self.label = definition.label
        self.weight = definition.weight
        self.description = definition.description

    @classmethod
    def from_definition(cls, definition: Mapping[str, Any]) -> "Indicator":
        if not isinstance(definition, Mapping):
            raise InvalidIndicatorDefinition(
                f"definition must be a mapping, got {type(definition).__name__}")
        parsed = _check_definition(definition)
        return cls(parsed.label, parsed.weight, parsed.predicate, parsed.description)

    def evaluate(self, event: ProcessEvent) -> bool:
        return bool(self._evaluate(event))

    def to_definition(self) -> Dict[str, Any]:
        return {"label": self.label, "weight": self.weight,
                "predicate": self.predicate, "description": self.description}

    def __repr__(self) -> str:
        return f"Indicator({self.label!r}, weight={self.weight})"


def _check_definition(definition: Mapping[str, Any]) -> IndicatorDefinition:
    label = definition.get("label") if isinstance(definition.get("label"), str) else None
    try:
        return IndicatorDefinition.model_validate(dict(definition))
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'definition'}: {err['msg']}"
            for err in e.errors())
        raise InvalidIndicatorDefinition(problems, label) from None


IndicatorSource = Union[str, os.PathLike, Mapping[str, Any], Iterable[Union[Indicator, Mapping[str, Any]]]]


def _read_definition_file(path: Union[str, os.PathLike]) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except OSError as e:
        raise InvalidIndicatorDefinition(f"cannot read indicator file {path}: {e}") from None
    except yaml.YAMLError as e:
        raise InvalidIndicatorDefinition(f"cannot parse indicator file {path}: {e}") from None


def load_indicators(source: IndicatorSource) -> List[Indicator]:
    """
    Load and compile an ordered indicator set.

    Accepts a YAML/JSON file path, a mapping with an 'indicators' list,
    or an iterable of Indicator objects and/or definition mappings.
    Definition order is preserved; it is the scoring order.
    """
    origin = "<definitions>"
    if isinstance(source, (str, os.PathLike)):
        origin = str(source)
        source = _read_definition_file(source)
    if isinstance(source, Mapping):
        source = source.get("indicators")
    if source is None or isinstance(source, (str, bytes)) or not isinstance(source, Iterable):
        raise InvalidIndicatorDefinition(f"{origin} does not contain a list of indicators")

    indicators: List[Indicator] = []
    seen = set()
    for item in source:
        indicator = item if isinstance(item, Indicator) else Indicator.from_definition(item)
        if indicator.label in seen:
            raise InvalidIndicatorDefinition("duplicate label", indicator.label)
        seen.add(indicator.label)
        indicators.append(indicator)

    if not indicators:
        raise InvalidIndicatorDefinition(f"{origin} defines no indicators")
    Logger().info(f"Loaded {len(indicators)} indicators from {origin}")
    return indicators
