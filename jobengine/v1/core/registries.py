from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

if TYPE_CHECKING:
    from jobengine.v1.jobs.worker import JobContext

# Base registry implementation
T = TypeVar("T")


class Registry(Generic[T]):
    """Generic registry for pluggable implementations."""

    def __init__(self, name: str):
        self.name = name
        self._implementations: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str, implementation: T) -> None:
        """Register an implementation with a given name."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{name}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations[name] = implementation

    def get(self, name: str) -> T:
        """Get an implementation by name."""
        if name not in self._implementations:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {name}"
            )
        return self._implementations[name]

    def find(self, name: str) -> T | None:
        """Get an implementation by name, or None when nothing is registered."""
        return self._implementations.get(name)

    def list(self) -> list[str]:
        """List all registered implementation names."""
        return list(self._implementations.keys())

    def unregister(self, name: str) -> None:
        """Remove an implementation (no-op when absent)."""
        if self._frozen:
            raise RuntimeError(
                f"Cannot unregister '{name}' from {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._implementations.pop(name, None)

    def freeze(self) -> None:
        """Freeze the registry to prevent further modifications."""
        self._frozen = True

    def is_frozen(self) -> bool:
        """Check if the registry is frozen."""
        return self._frozen


# Job Handler Registry - executes the work described by a job payload
class JobHandler(Protocol):
    """Protocol for job handlers.

    Handlers must be safe to run more than once for the same job: a handler
    whose worker loses its lease may be re-executed by another worker.
    """

    async def handle(self, context: "JobContext", payload: dict[str, Any]) -> None:
        """
        Perform the job's work.

        Raise any exception to fail the attempt (it is retried while attempts
        remain), or NonRetryableJobError to fail the job immediately. Long
        running handlers may call ``context.renew_lease()`` and should stop
        early when ``context.lease_lost`` is set.
        """
        ...


class HandlerRegistry(Registry[JobHandler]):
    """Registry for job handlers keyed by job type (preview_generate, license_pdf, ...)."""

    def __init__(self):
        super().__init__("JobHandler")


# Global registry instances
job_registry = HandlerRegistry()
