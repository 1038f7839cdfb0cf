"""
derivation/errors.py - Resolution Error Kinds

Failures of a search are reported with the requested descriptor and the
ancestor path that led to it. Usage errors of deferred handles are kept
separate: they are raised by the code that dereferences a handle, not by
the engine.
"""
from __future__ import annotations

from .terms import Term


class ResolutionError(Exception):
    """Raised when no value could be built for a descriptor."""

    def __init__(self, message: str, descriptor: Term, path: list[Term] | None = None):
        self.descriptor = descriptor
        self.path = list(path or [descriptor])
        super().__init__(message)

    @property
    def depth(self) -> int:
        return len(self.path)

    def to_dict(self) -> dict:
        return {
            "kind": type(self).__name__,
            "message": str(self),
            "descriptor": str(self.descriptor),
            "path": [str(d) for d in self.path],
        }


class NoDerivationError(ResolutionError):
    """No rule could be found to build a value of the requested shape."""

    def __init__(
        self,
        descriptor: Term,
        path: list[Term] | None = None,
        causes: list[ResolutionError] | None = None,
        message: str | None = None,
    ):
        self.causes = list(causes or [])
        if message is None:
            message = f"No rule could be found to build a value of shape {descriptor}"
            if not self.causes:
                message += " (no rule has a matching consequent)"
        super().__init__(message, descriptor, path)

    @property
    def root_cause(self) -> ResolutionError:
        """Deepest failure recorded below this one."""
        deepest: ResolutionError = self
        for cause in self.causes:
            candidate = cause.root_cause if isinstance(cause, NoDerivationError) else cause
            if candidate.depth > deepest.depth:
                deepest = candidate
        return deepest

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["causes"] = [c.to_dict() for c in self.causes]
        return data


class CycleUnsupportedError(NoDerivationError):
    """A recursive need arose for a shape with no deferred-handle rule."""

    def __init__(self, descriptor: Term, path: list[Term] | None = None):
        super().__init__(
            descriptor,
            path,
            message=(
                f"Shape {descriptor} is needed while it is still being built "
                f"and no rule produces Deferred({descriptor})"
            ),
        )


class DepthExceededError(NoDerivationError):
    """Iterative deepening reached its depth bound without a derivation."""

    def __init__(
        self,
        descriptor: Term,
        path: list[Term] | None = None,
        max_depth: int | None = None,
        causes: list[ResolutionError] | None = None,
    ):
        self.max_depth = max_depth
        message = f"No rule could be found to build a value of shape {descriptor}"
        if max_depth is not None:
            message += f" within depth {max_depth}"
        super().__init__(descriptor, path, causes, message=message)


class RuleInvocationError(ResolutionError):
    """A rule raised while building a value from resolved antecedents."""

    def __init__(self, descriptor: Term, rule, path: list[Term] | None = None, reason: str | None = None):
        self.rule = rule
        message = f"Rule {rule.label} failed to build {descriptor}"
        if reason:
            message += f": {reason}"
        super().__init__(message, descriptor, path)


class DeferredError(Exception):
    """Misuse of a deferred handle."""


class PrematureDereferenceError(DeferredError):
    """A deferred handle was read before its value was set."""


class DeferredAlreadySetError(DeferredError):
    """A deferred handle was set twice."""
