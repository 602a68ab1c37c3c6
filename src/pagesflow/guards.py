# guards.py
"""
Job guards.

A guard is a predicate over the triggering event (and the statuses of jobs that
already finished). Guards compose with ``&``, ``|`` and ``~`` and render as a
GitHub-style expression so plans and logs stay readable:

    repository_is("prefix-dev/pixi") & ref_is("refs/heads/main")
    -> github.repository == 'prefix-dev/pixi' && github.ref == 'refs/heads/main'
"""
from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from typing import Callable, Dict

from .model import Event


@dataclass(frozen=True)
class GuardContext:
    event: Event
    results: Dict[str, str] = field(default_factory=dict)


class Condition:
    def __init__(self, fn: Callable[[GuardContext], bool], expr: str):
        self._fn = fn
        self.expr = expr

    def __call__(self, ctx: GuardContext) -> bool:
        return bool(self._fn(ctx))

    def __and__(self, other: Condition) -> Condition:
        return Condition(lambda ctx: self(ctx) and other(ctx), f"{self.expr} && {other.expr}")

    def __or__(self, other: Condition) -> Condition:
        return Condition(lambda ctx: self(ctx) or other(ctx), f"({self.expr} || {other.expr})")

    def __invert__(self) -> Condition:
        return Condition(lambda ctx: not self(ctx), f"!({self.expr})")

    def __str__(self) -> str:
        return self.expr

    def __repr__(self) -> str:
        return f"Condition({self.expr!r})"


def evaluate(condition, ctx: GuardContext) -> bool:
    """None means no guard."""
    if condition is None:
        return True
    return bool(condition(ctx))


def describe(condition) -> str:
    if condition is None:
        return "always"
    return str(getattr(condition, "expr", condition))


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def always() -> Condition:
    return Condition(lambda ctx: True, "always()")


def repository_is(repository: str) -> Condition:
    return Condition(
        lambda ctx: ctx.event.repository == repository,
        f"github.repository == '{repository}'",
    )


def ref_is(ref: str) -> Condition:
    return Condition(lambda ctx: ctx.event.ref == ref, f"github.ref == '{ref}'")


def branch_is(pattern: str) -> Condition:
    def _check(ctx: GuardContext) -> bool:
        branch = ctx.event.branch
        return branch is not None and fnmatchcase(branch, pattern)

    return Condition(_check, f"github.ref_name == '{pattern}'")


def event_is(*names: str) -> Condition:
    rendered = " || ".join(f"github.event_name == '{n}'" for n in names)
    if len(names) > 1:
        rendered = f"({rendered})"
    return Condition(lambda ctx: ctx.event.name in names, rendered)
