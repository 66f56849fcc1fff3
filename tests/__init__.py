"""
Ensemble Test Suite
===================

Test organization mirrors the source code structure:
    tests/
    ├── test_core/          → Tests for ensemble.core (config, models, versioning)
    ├── test_agents/        → Tests for ensemble.agents (base + callable agents)
    ├── test_orchestration/ → Tests for ensemble.orchestration (rules, pipeline, ...)
    ├── test_integration/   → End-to-end workflow runs
    ├── test_team.py        → Tests for the Team facade
    └── conftest.py         → Shared pytest fixtures

Running Tests:
    pytest                          # Run all tests
    pytest tests/test_core/         # Run only core tests
"""
