import typing

if typing.TYPE_CHECKING:
    from infragraph import diagnostics


class InfragraphError(Exception):
    pass


class ConfigurationError(InfragraphError):
    """The plan is invalid. Raised before any provider call is made."""

    def __init__(
        self,
        message: str,
        *,
        identifiers: typing.Sequence[str] = (),
        diagnostics: typing.Optional["diagnostics.Diagnostics"] = None,
    ):
        self.message = message
        self.identifiers = list(identifiers)
        self.diagnostics = diagnostics
        super().__init__(message)

    def __str__(self):
        if not self.diagnostics:
            return self.message
        lines = [self.message]
        lines.extend(f"  {diagnostic}" for diagnostic in self.diagnostics)
        return "\n".join(lines)


class ProviderError(InfragraphError):
    def __init__(self, message: str, *, address: typing.Optional[str] = None):
        self.message = message
        self.address = address
        super().__init__(message)

    def __str__(self):
        if self.address is None:
            return self.message
        return f"{self.address}: {self.message}"


class ReadinessTimeoutError(InfragraphError, TimeoutError):
    def __init__(self, address: str, timeout: float):
        self.address = address
        self.timeout = timeout
        super().__init__(f"{address}: not ready after {timeout:g}s")


class DependencyError(InfragraphError):
    """A resource was abandoned because one of its dependencies failed."""

    def __init__(self, address: str, dependency: str):
        self.address = address
        self.dependency = dependency
        super().__init__(f"{address}: dependency {dependency} did not become ready")


class UnresolvedReferenceError(InfragraphError):
    def __init__(self, message: str, *, identifiers: typing.Sequence[str] = ()):
        self.identifiers = list(identifiers)
        super().__init__(message)


class InvalidTransitionError(InfragraphError, ValueError):
    pass


class StateError(InfragraphError):
    pass


class StateLockError(StateError):
    pass
