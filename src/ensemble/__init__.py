"""
Ensemble - Multi-Agent Task Orchestration
==========================================

Ensemble runs a team of agents over a set of tasks. Every status change of
every agent, task and workflow goes through one validated pipeline:

    TransitionContext → StatusValidator → status:pre-transition
                      → status:transition (commit) → status:post-transition

and a reactive scheduler decides what runs next from the committed task
list, either strictly in order (sequential) or by dependency readiness
(hierarchy).

Architecture Layers (top to bottom):
    1. Team            - Public workflow surface (start, pause, feedback, ...)
    2. Orchestration   - Rules, validator, event pipeline, store, scheduler
    3. Agents          - Executors that perform tasks and report status
    4. Core            - Config, enums, exceptions, models, versioning

Quick Start:
    >>> from ensemble import Team
    >>> from ensemble.agents import CallableAgent
    >>> from ensemble.core.models import Task
    >>> team = Team("demo", agents=[CallableAgent("a", lambda t, i, c: "ok")],
    ...             tasks=[Task(id="t1", description="Say ok", agent_id="a")])
    >>> result = await team.start()
"""

# =============================================================================
# Package Version
# =============================================================================
__version__ = "0.1.0"

# =============================================================================
# Package-Level Exports
# =============================================================================
# Team is the main entry point. For specific components, import from
# submodules directly:
#   from ensemble.core.config import EnsembleConfig
#   from ensemble.orchestration.dependency_resolver import DependencyResolver
# =============================================================================
from ensemble.team import Team

__all__ = ["Team", "__version__"]
