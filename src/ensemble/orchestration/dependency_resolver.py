"""
ensemble.orchestration.dependency_resolver - Versioned Dependency Resolution
=============================================================================

A generic directed-graph dependency resolver with best-version selection and
cycle detection. It knows nothing about tasks; the hierarchy scheduling
strategy uses it to check that a declared task graph is acyclic and that
every dependency exists, and callers can use it directly for service or
package graphs.

Graph Model (arena + index):

    _versions:   name → {SemanticVersion, ...}      (version cache)
    _nodes:      "name@version" → DependencyNode    (the arena)
    _dependents: "name@version" → {"name@version"}  (back-references by key)

    Nodes never hold references to other nodes; edges are DependencySpecs
    (a name plus constraints) and back-references are key lookups.

Resolution (DFS with backtracking):

    resolve("X", "1.0.0")
      visited = {}
      walk(X@1.0.0):
        X@1.0.0 in visited? → CircularDependencyError
        visited += X@1.0.0
        for each dependency spec:
          best = find_best_version(spec.name, spec.constraints)
          none found:
            optional → unsatisfied resolution (VERSION_NOT_FOUND), continue
            required → unsatisfied resolution, MissingDependencyError
          found → record dependent, walk(best), satisfied resolution
        visited -= X@1.0.0           (backtrack: diamonds are fine)

Usage:
    >>> resolver = DependencyResolver()
    >>> resolver.register_version("api", "1.0.0", [DependencySpec(name="db", constraints=["^2.0.0"])])
    >>> resolver.register_version("db", "2.1.0")
    >>> [str(r.version) for r in await resolver.resolve_dependencies("api", "1.0.0")]
    ['2.1.0']
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Union

import structlog
from pydantic import BaseModel, Field, field_validator

from ensemble.core.enums import DependencyErrorType
from ensemble.core.exceptions import (
    CircularDependencyError,
    EnsembleError,
    MissingDependencyError,
    NotFoundError,
)
from ensemble.core.versioning import (
    SemanticVersion,
    VersionConstraint,
    parse_constraints,
    satisfies_all,
)

logger = structlog.get_logger()

VersionLike = Union[str, SemanticVersion]
ConstraintsLike = Union[str, VersionConstraint, Iterable[Union[str, VersionConstraint]], None]


def _node_key(name: str, version: VersionLike) -> str:
    return f"{name}@{SemanticVersion.parse(version)}"


# =============================================================================
# Models
# =============================================================================
class DependencySpec(BaseModel):
    """A dependency on ``name`` at any version satisfying ``constraints``.

    Constraints may be given as strings; ``">=1.0.0 <2.0.0"`` becomes two
    constraints. An empty list accepts any registered version.
    """

    model_config = {"frozen": True}

    name: str
    constraints: tuple[VersionConstraint, ...] = ()
    optional: bool = False

    @field_validator("constraints", mode="before")
    @classmethod
    def _parse_constraints(cls, value: Any) -> tuple[VersionConstraint, ...]:
        return tuple(parse_constraints(value))


class DependencyNode(BaseModel):
    """One registered ``(name, version)`` pair in the resolver's arena."""

    name: str
    version: SemanticVersion
    dependencies: list[DependencySpec] = Field(default_factory=list)
    dependents: list[str] = Field(
        default_factory=list,
        description="Keys (name@version) of nodes that depend on this one",
    )
    optional: bool = False
    resolved: bool = False

    @property
    def key(self) -> str:
        return f"{self.name}@{self.version}"


class DependencyResolution(BaseModel):
    """Outcome for one dependency edge visited during resolution.

    Attributes:
        name: The dependency's name.
        version: The selected version, or None when unsatisfied.
        satisfied: Whether a version satisfying the constraints was found.
        optional: Whether the dependency was declared optional.
        error: Why the dependency is unsatisfied, when it is.
        required_by: Key of the node that declared the dependency.
    """

    model_config = {"frozen": True}

    name: str
    version: Optional[SemanticVersion] = None
    satisfied: bool
    optional: bool = False
    error: Optional[DependencyErrorType] = None
    required_by: str


# =============================================================================
# Resolver
# =============================================================================
class DependencyResolver:
    """Registers versioned nodes and resolves their dependency trees.

    Each call to ``resolve_dependencies`` uses its own ``visited`` set, so
    concurrent resolutions don't interfere with each other's cycle checks.
    """

    def __init__(self) -> None:
        self._versions: dict[str, set[SemanticVersion]] = {}
        self._nodes: dict[str, DependencyNode] = {}
        self._dependents: dict[str, set[str]] = {}
        self._logger = logger.bind(component="dependency_resolver")

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------
    def register_version(
        self,
        name: str,
        version: VersionLike,
        dependencies: Iterable[DependencySpec] = (),
        optional: bool = False,
    ) -> DependencyNode:
        """Register ``name@version`` with its dependencies.

        Registering an existing pair replaces its dependency list.

        Returns:
            The stored DependencyNode.
        """
        parsed = SemanticVersion.parse(version)
        self._versions.setdefault(name, set()).add(parsed)
        node = DependencyNode(
            name=name,
            version=parsed,
            dependencies=list(dependencies),
            optional=optional,
        )
        self._nodes[node.key] = node
        self._logger.debug(
            "version_registered",
            name=name,
            version=str(parsed),
            dependency_count=len(node.dependencies),
        )
        return node

    def get_versions(self, name: str) -> list[SemanticVersion]:
        """Registered versions of ``name``, lowest first."""
        return sorted(self._versions.get(name, ()))

    def get_node(self, name: str, version: VersionLike) -> Optional[DependencyNode]:
        key = _node_key(name, version)
        node = self._nodes.get(key)
        if node is None:
            return None
        return node.model_copy(update={"dependents": sorted(self._dependents.get(key, ()))})

    # -------------------------------------------------------------------------
    # Version Selection
    # -------------------------------------------------------------------------
    def find_best_version(self, name: str, constraints: ConstraintsLike = None) -> Optional[SemanticVersion]:
        """Highest registered version of ``name`` satisfying every constraint.

        Returns:
            The best version, or None when nothing satisfies the constraints
            (or ``name`` is not registered at all).

        Example:
            >>> resolver.find_best_version("svc", ">=1.0.0 <2.0.0")
            SemanticVersion(major=1, minor=2, patch=0, ...)
        """
        parsed = parse_constraints(constraints)
        candidates = [v for v in self._versions.get(name, ()) if satisfies_all(v, parsed)]
        if not candidates:
            return None
        return max(candidates)

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------
    async def resolve_dependencies(self, name: str, version: VersionLike) -> list[DependencyResolution]:
        """Resolve the full dependency tree of ``name@version``.

        Returns:
            One DependencyResolution per visited edge, children before their
            parents.

        Raises:
            NotFoundError: ``name@version`` is not registered.
            CircularDependencyError: The walk revisits a node on its own path.
            MissingDependencyError: A required dependency has no satisfying version.
        """
        key = _node_key(name, version)
        if key not in self._nodes:
            raise NotFoundError(
                message=f"Dependency node not found: {key}",
                resource="dependency",
                resource_id=key,
                error_code=DependencyErrorType.VERSION_NOT_FOUND.value,
            )

        resolutions: list[DependencyResolution] = []
        await self._walk(key, visited=set(), path=[], resolutions=resolutions)
        self._logger.debug("dependencies_resolved", root=key, resolution_count=len(resolutions))
        return resolutions

    async def _walk(
        self,
        key: str,
        visited: set[str],
        path: list[str],
        resolutions: list[DependencyResolution],
    ) -> None:
        node = self._nodes[key]
        if key in visited:
            cycle = path[path.index(key):] + [key]
            raise CircularDependencyError(
                message=f"Circular dependency detected: {' -> '.join(cycle)}",
                dependency=node.name,
                details={"cycle": cycle},
            )

        visited.add(key)
        path.append(key)

        for spec in node.dependencies:
            best = self.find_best_version(spec.name, spec.constraints)
            if best is None:
                error = (
                    DependencyErrorType.VERSION_NOT_FOUND
                    if spec.optional
                    else DependencyErrorType.MISSING_DEPENDENCY
                )
                resolutions.append(
                    DependencyResolution(
                        name=spec.name,
                        satisfied=False,
                        optional=spec.optional,
                        error=error,
                        required_by=key,
                    )
                )
                if not spec.optional:
                    raise MissingDependencyError(
                        message=f"Missing required dependency {spec.name} for {key}",
                        dependency=spec.name,
                        details={
                            "required_by": key,
                            "constraints": [str(c) for c in spec.constraints],
                            "available": [str(v) for v in self.get_versions(spec.name)],
                        },
                    )
                self._logger.warning(
                    "optional_dependency_unsatisfied",
                    dependency=spec.name,
                    required_by=key,
                )
                continue

            dependency_key = _node_key(spec.name, best)
            self._dependents.setdefault(dependency_key, set()).add(key)
            await self._walk(dependency_key, visited, path, resolutions)
            resolutions.append(
                DependencyResolution(
                    name=spec.name,
                    version=best,
                    satisfied=True,
                    optional=spec.optional,
                    required_by=key,
                )
            )

        path.pop()
        visited.discard(key)
        self._nodes[key] = node.model_copy(update={"resolved": True})

    async def validate_dependencies(self, name: str, version: VersionLike) -> bool:
        """True when ``name@version`` resolves and every dependency is satisfied.

        An optional dependency with no matching version resolves without
        error but still makes this False.
        """
        try:
            resolutions = await self.resolve_dependencies(name, version)
        except EnsembleError as exc:
            self._logger.info(
                "dependency_validation_failed",
                name=name,
                version=str(version),
                error_code=exc.error_code,
            )
            return False
        unsatisfied = [resolution.name for resolution in resolutions if not resolution.satisfied]
        if unsatisfied:
            self._logger.info(
                "dependency_validation_unsatisfied",
                name=name,
                version=str(version),
                unsatisfied=unsatisfied,
            )
        return not unsatisfied

    def get_dependency_graph(self, name: str, version: VersionLike) -> dict[str, list[str]]:
        """Direct edges of ``name@version``.

        Returns:
            ``{"required": [...], "optional": [...], "dependents": [...]}``
            where dependents are keys recorded by earlier resolutions.

        Raises:
            NotFoundError: ``name@version`` is not registered.
        """
        key = _node_key(name, version)
        node = self._nodes.get(key)
        if node is None:
            raise NotFoundError(
                message=f"Dependency node not found: {key}",
                resource="dependency",
                resource_id=key,
            )
        return {
            "required": [spec.name for spec in node.dependencies if not spec.optional],
            "optional": [spec.name for spec in node.dependencies if spec.optional],
            "dependents": sorted(self._dependents.get(key, ())),
        }
