"""Composable email filters used by waits and subscriptions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from re import Pattern
from typing import Protocol

from .email import Email
from .types import EmailFilterMatcher


class _FilterOptions(Protocol):
    subject: EmailFilterMatcher | None
    from_address: EmailFilterMatcher | None
    predicate: Callable[[Email], bool] | None


def _matches(matcher: EmailFilterMatcher, value: str | None) -> bool:
    """A plain string must equal the value; a compiled pattern is searched."""
    value = value or ""
    if isinstance(matcher, Pattern):
        return matcher.search(value) is not None
    return matcher == value


class EmailFilter(ABC):
    """Base class for filters. Filters combine with ``&``."""

    @abstractmethod
    def matches(self, email: Email) -> bool:
        pass  # pragma: no cover

    def __call__(self, email: Email) -> bool:
        return self.matches(email)

    def __and__(self, other: EmailFilter) -> AllOf:
        return AllOf((self, other))


@dataclass(frozen=True)
class SubjectFilter(EmailFilter):
    matcher: EmailFilterMatcher

    def matches(self, email: Email) -> bool:
        return _matches(self.matcher, email.subject)


@dataclass(frozen=True)
class SenderFilter(EmailFilter):
    matcher: EmailFilterMatcher

    def matches(self, email: Email) -> bool:
        return _matches(self.matcher, email.from_address)


@dataclass(frozen=True)
class PredicateFilter(EmailFilter):
    predicate: Callable[[Email], bool]

    def matches(self, email: Email) -> bool:
        return bool(self.predicate(email))


@dataclass(frozen=True)
class AllOf(EmailFilter):
    """Logical AND, evaluated in order and stopping at the first failure.

    An empty ``AllOf`` matches every email.
    """

    filters: tuple[EmailFilter, ...] = ()

    def matches(self, email: Email) -> bool:
        return all(f.matches(email) for f in self.filters)

    def __and__(self, other: EmailFilter) -> AllOf:
        return AllOf((*self.filters, other))


MATCH_ALL = AllOf()


def build_filter(options: _FilterOptions | None = None) -> EmailFilter:
    """Build a filter from wait options: subject, then sender, then predicate."""
    if options is None:
        return MATCH_ALL
    filters: list[EmailFilter] = []
    if options.subject is not None:
        filters.append(SubjectFilter(options.subject))
    if options.from_address is not None:
        filters.append(SenderFilter(options.from_address))
    if options.predicate is not None:
        filters.append(PredicateFilter(options.predicate))
    return AllOf(tuple(filters))
