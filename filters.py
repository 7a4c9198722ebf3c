"""
Typed filter expressions for the PostgREST table service

Each leaf filter targets a single column and renders to the service's
``operator.value`` syntax. ``build_params`` turns a list of filters into
query parameters, moving repeated constraints on one column into a single
``and=(...)`` group so a range never collapses to one bound.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

RESERVED_CHARS = set(',()":')


def format_value(value: Any) -> str:
    """Render a scalar the way PostgREST expects it"""
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


def quote_value(value: Any) -> str:
    """Quote a value used inside a logic tree when it holds reserved chars"""
    text = format_value(value)
    if any(ch in RESERVED_CHARS for ch in text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


class Filter:
    """Base class for all filter expressions"""

    def inline(self) -> str:
        """Render for use inside an ``or(...)``/``and(...)`` tree"""
        raise NotImplementedError


@dataclass(frozen=True)
class _Comparison(Filter):
    column: str
    value: Any

    operator = ""

    def render(self) -> str:
        return f"{self.operator}.{format_value(self.value)}"

    def inline(self) -> str:
        return f"{self.column}.{self.operator}.{quote_value(self.value)}"


class Eq(_Comparison):
    operator = "eq"


class Neq(_Comparison):
    operator = "neq"


class Gt(_Comparison):
    operator = "gt"


class Gte(_Comparison):
    operator = "gte"


class Lt(_Comparison):
    operator = "lt"


class Lte(_Comparison):
    operator = "lte"


class Like(_Comparison):
    operator = "like"


class ILike(_Comparison):
    operator = "ilike"


@dataclass(frozen=True)
class IsNull(Filter):
    column: str

    def render(self) -> str:
        return "is.null"

    def inline(self) -> str:
        return f"{self.column}.is.null"


@dataclass(frozen=True)
class NotNull(Filter):
    column: str

    def render(self) -> str:
        return "not.is.null"

    def inline(self) -> str:
        return f"{self.column}.not.is.null"


@dataclass(frozen=True)
class In(Filter):
    column: str
    values: Tuple[Any, ...]

    def __init__(self, column: str, values: Iterable[Any]):
        object.__setattr__(self, "column", column)
        object.__setattr__(self, "values", tuple(values))

    def _list(self) -> str:
        return ",".join(quote_value(v) for v in self.values)

    def render(self) -> str:
        return f"in.({self._list()})"

    def inline(self) -> str:
        return f"{self.column}.in.({self._list()})"


@dataclass(frozen=True)
class Contains(Filter):
    """Array containment (``cs``), e.g. an address inside ``mentions``"""

    column: str
    values: Tuple[Any, ...]

    def __init__(self, column: str, values: Any):
        if isinstance(values, (str, int)):
            values = (values,)
        object.__setattr__(self, "column", column)
        object.__setattr__(self, "values", tuple(values))

    def _literal(self) -> str:
        return "{" + ",".join(quote_value(v) for v in self.values) + "}"

    def render(self) -> str:
        return f"cs.{self._literal()}"

    def inline(self) -> str:
        return f"{self.column}.cs.{self._literal()}"


@dataclass(frozen=True)
class _Group(Filter):
    conditions: Tuple[Filter, ...]

    keyword = ""

    def __init__(self, *conditions: Filter):
        if len(conditions) == 1 and isinstance(conditions[0], (list, tuple)):
            conditions = tuple(conditions[0])
        if not conditions:
            raise ValueError(f"{self.keyword}() requires at least one condition")
        object.__setattr__(self, "conditions", tuple(conditions))

    def body(self) -> str:
        return "(" + ",".join(c.inline() for c in self.conditions) + ")"

    def inline(self) -> str:
        return f"{self.keyword}{self.body()}"


class Or(_Group):
    keyword = "or"


class And(_Group):
    keyword = "and"


def between(column: str, low: Any = None, high: Any = None) -> List[Filter]:
    """Inclusive range; either bound may be omitted"""
    bounds: List[Filter] = []
    if low is not None:
        bounds.append(Gte(column, low))
    if high is not None:
        bounds.append(Lte(column, high))
    return bounds


def build_params(filters: Optional[Iterable[Filter]]) -> List[Tuple[str, str]]:
    """Serialize filters into ordered (key, value) query parameters"""
    if not filters:
        return []

    by_column: dict[str, List[Filter]] = {}
    groups: List[_Group] = []
    for item in filters:
        if isinstance(item, _Group):
            groups.append(item)
        elif isinstance(item, Filter):
            by_column.setdefault(item.column, []).append(item)
        else:
            raise TypeError(f"Unsupported filter: {item!r}")

    params: List[Tuple[str, str]] = []
    conjunction: List[str] = []

    for column, leaves in by_column.items():
        if len(leaves) == 1:
            params.append((column, leaves[0].render()))
        else:
            conjunction.extend(leaf.inline() for leaf in leaves)

    if len(groups) == 1 and not conjunction:
        group = groups[0]
        params.append((group.keyword, group.body()))
    else:
        conjunction.extend(group.inline() for group in groups)
        if conjunction:
            params.append(("and", "(" + ",".join(conjunction) + ")"))

    return params
