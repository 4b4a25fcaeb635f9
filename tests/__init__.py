"""
PillMind Test Suite
===================

Tests for the PillMind dose scheduling and adherence engine.

Test Structure:
- test_tools/: Timezone, recurrence, conflict, state and trigger rules
- test_services/: Service layer against an in-memory database
- test_actions/: Periodic jobs
- test_api/: API endpoint tests for FastAPI routes
- conftest.py: Shared pytest fixtures

Running Tests:
    # Run all tests
    pytest

    # Run specific test module
    pytest tests/test_api/

    # Run only marked tests
    pytest -m "unit"
    pytest -m "api"
"""
