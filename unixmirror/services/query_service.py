"""Query rewriting: point filters and ordering at epoch mirrors."""

from __future__ import annotations

import logging
import operator
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from sqlalchemy import BigInteger, Select, and_, column, extract, func, or_

from unixmirror.exceptions import UnparseableTemporal
from unixmirror.services.datetime_service import (
    day_bounds,
    parse_datetime,
    to_epoch_seconds,
    year_bounds,
)
from unixmirror.services.policy_service import table_name

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy import ColumnElement

    from unixmirror.services.cache_service import ColumnExistenceCache
    from unixmirror.services.policy_service import PolicyResolver

logger = logging.getLogger(__name__)

OPERATORS: dict[str, Callable[[Any, Any], Any]] = {
    "=": operator.eq,
    "==": operator.eq,
    "!=": operator.ne,
    "<>": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}

# Filter kinds. "range" is half-open [low, high), "outside" its complement;
# both only appear as the result of rewriting a date-part filter.
WHERE = "where"
BETWEEN = "between"
IN = "in"
DATE = "date"
YEAR = "year"
RANGE = "range"
OUTSIDE = "outside"


@dataclass(frozen=True)
class FilterClause:
    kind: str
    column: Any
    operator: str | None = None
    value: Any = None


@dataclass(frozen=True)
class OrderClause:
    column: Any
    direction: str = "asc"


class QueryRewriter:
    """Substitute mirror columns (and epoch values) into filter/order clauses.

    Purely syntactic: only clauses whose column is a plain string naming an
    effective source column with an existing mirror are touched.
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        cache: ColumnExistenceCache,
        default_tz: str = "UTC",
    ) -> None:
        self.resolver = resolver
        self.cache = cache
        self.default_tz = default_tz

    def mirror_for(self, record_type: type, column_name: Any) -> str | None:
        """Name of the existing mirror for ``column_name``, else None."""
        if not isinstance(column_name, str):
            return None
        if column_name not in self.resolver.effective_columns(record_type):
            return None
        policy = self.resolver.policy_for(record_type)
        mirror = policy.mirror_name(column_name)
        if not self.cache.exists(policy.connection, table_name(record_type), mirror):
            return None
        return mirror

    def rewrite_order(self, record_type: type, clause: OrderClause) -> OrderClause:
        mirror = self.mirror_for(record_type, clause.column)
        if mirror is None:
            return clause
        return replace(clause, column=mirror)

    def rewrite_filter(self, record_type: type, clause: FilterClause) -> FilterClause:
        mirror = self.mirror_for(record_type, clause.column)
        if mirror is None:
            return clause
        try:
            if clause.kind == WHERE:
                return replace(clause, column=mirror, value=self._epoch(clause.value))
            if clause.kind == BETWEEN:
                low, high = clause.value
                return replace(clause, column=mirror, value=(self._epoch(low), self._epoch(high)))
            if clause.kind == IN:
                return replace(clause, column=mirror, value=tuple(self._epoch(v) for v in clause.value))
            if clause.kind == DATE:
                bounds = day_bounds(clause.value, self.default_tz)
                return self._bounded(mirror, clause.operator, bounds)
            if clause.kind == YEAR:
                bounds = year_bounds(clause.value, self.default_tz)
                return self._bounded(mirror, clause.operator, bounds)
        except UnparseableTemporal as exc:
            # Comparing epochs against a non-temporal literal would change
            # the meaning of the filter, so keep the source column.
            logger.debug("Not rewriting filter on %s: %s", clause.column, exc)
            return clause
        return clause

    def _epoch(self, value: Any) -> int | None:
        return to_epoch_seconds(value, self.default_tz)

    @staticmethod
    def _bounded(mirror: str, op: str | None, bounds: tuple[int, int]) -> FilterClause:
        """Translate a date-part comparison into a comparison on epoch bounds."""
        start, end = bounds
        if op in (None, "=", "=="):
            return FilterClause(RANGE, mirror, None, (start, end))
        if op in ("!=", "<>"):
            return FilterClause(OUTSIDE, mirror, None, (start, end))
        if op == "<":
            return FilterClause(WHERE, mirror, "<", start)
        if op == "<=":
            return FilterClause(WHERE, mirror, "<", end)
        if op == ">":
            return FilterClause(WHERE, mirror, ">=", end)
        if op == ">=":
            return FilterClause(WHERE, mirror, ">=", start)
        raise ValueError(f"Unsupported operator: {op!r}")


class MirrorSelect:
    """A ``Select`` wrapper that routes temporal filters/orders to mirrors.

    Only the ``where_*``, ``order_by*``, ``latest`` and ``oldest`` methods are
    intercepted. Any other attribute is looked up on the wrapped ``Select``;
    methods returning a new ``Select`` come back wrapped again.
    """

    def __init__(self, statement: Select[Any], record_type: type, rewriter: QueryRewriter) -> None:
        self._statement = statement
        self._record_type = record_type
        self._rewriter = rewriter

    @property
    def statement(self) -> Select[Any]:
        return self._statement

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        attr = getattr(self._statement, name)
        if not callable(attr):
            return attr

        def delegate(*args: Any, **kwargs: Any) -> Any:
            result = attr(*args, **kwargs)
            if isinstance(result, Select):
                return self._wrap(result)
            return result

        return delegate

    def __repr__(self) -> str:
        return f"MirrorSelect({self._record_type.__name__}, {self._statement!r})"

    def _wrap(self, statement: Select[Any]) -> MirrorSelect:
        return MirrorSelect(statement, self._record_type, self._rewriter)

    # Filters

    def where_column(self, column_name: Any, op: str, value: Any = None) -> MirrorSelect:
        clause = self._rewriter.rewrite_filter(self._record_type, FilterClause(WHERE, column_name, op, value))
        return self._wrap(self._statement.where(self._filter_expression(clause)))

    def where_between(self, column_name: Any, low: Any, high: Any) -> MirrorSelect:
        clause = self._rewriter.rewrite_filter(
            self._record_type, FilterClause(BETWEEN, column_name, None, (low, high))
        )
        return self._wrap(self._statement.where(self._filter_expression(clause)))

    def where_in(self, column_name: Any, values: Any) -> MirrorSelect:
        clause = self._rewriter.rewrite_filter(
            self._record_type, FilterClause(IN, column_name, None, tuple(values))
        )
        return self._wrap(self._statement.where(self._filter_expression(clause)))

    def where_date(self, column_name: Any, op: str, value: Any) -> MirrorSelect:
        clause = self._rewriter.rewrite_filter(self._record_type, FilterClause(DATE, column_name, op, value))
        return self._wrap(self._statement.where(self._filter_expression(clause)))

    def where_year(self, column_name: Any, op: str, year: int | str) -> MirrorSelect:
        clause = self._rewriter.rewrite_filter(self._record_type, FilterClause(YEAR, column_name, op, year))
        return self._wrap(self._statement.where(self._filter_expression(clause)))

    # Ordering

    def order_by(self, column_name: Any, direction: str = "asc") -> MirrorSelect:
        direction = direction.lower()
        if direction not in ("asc", "desc"):
            raise ValueError(f"Order direction must be 'asc' or 'desc', got {direction!r}")
        clause = self._rewriter.rewrite_order(self._record_type, OrderClause(column_name, direction))
        target = self._column(clause.column)
        ordered = target.desc() if clause.direction == "desc" else target.asc()
        return self._wrap(self._statement.order_by(ordered))

    def order_by_desc(self, column_name: Any) -> MirrorSelect:
        return self.order_by(column_name, "desc")

    def latest(self, column_name: Any = None) -> MirrorSelect:
        if column_name is None:
            column_name = self._rewriter.resolver.primary_marker(self._record_type)
        return self.order_by(column_name, "desc")

    def oldest(self, column_name: Any = None) -> MirrorSelect:
        if column_name is None:
            column_name = self._rewriter.resolver.primary_marker(self._record_type)
        return self.order_by(column_name, "asc")

    # Expression building

    def _column(self, column_name: Any) -> Any:
        if not isinstance(column_name, str):
            return column_name
        local = self._record_type.__table__
        if column_name in local.c:
            return local.c[column_name]
        # Mirrors are not mapped; bind an ad-hoc column to the real table so it
        # is qualified by it and adds no second FROM entry.
        return column(column_name, BigInteger, _selectable=local)

    def _filter_expression(self, clause: FilterClause) -> ColumnElement[bool]:
        target = self._column(clause.column)
        if clause.kind == WHERE:
            compare = _operator(clause.operator)
            if clause.value is None and compare in (operator.eq, operator.ne):
                return target.is_(None) if compare is operator.eq else target.is_not(None)
            return compare(target, clause.value)
        if clause.kind == BETWEEN:
            low, high = clause.value
            return target.between(low, high)
        if clause.kind == IN:
            return target.in_(clause.value)
        if clause.kind == RANGE:
            start, end = clause.value
            return and_(target >= start, target < end)
        if clause.kind == OUTSIDE:
            start, end = clause.value
            return or_(target < start, target >= end)
        if clause.kind == DATE:
            day = _day_literal(clause.value, self._rewriter.default_tz)
            return _operator(clause.operator)(func.date(target), day)
        if clause.kind == YEAR:
            return _operator(clause.operator)(extract("year", target), int(clause.value))
        raise ValueError(f"Unknown filter kind: {clause.kind!r}")


def _day_literal(value: Any, default_tz: str) -> Any:
    try:
        return parse_datetime(value, default_tz).date().isoformat()
    except UnparseableTemporal:
        return value


def _operator(op: str | None) -> Callable[[Any, Any], Any]:
    try:
        return OPERATORS[op or "="]
    except KeyError:
        raise ValueError(f"Unsupported operator: {op!r}") from None
