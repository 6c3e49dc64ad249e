"""
Contract Mock Test Suite

Test Structure:
- unit/: Unit tests for the codec, behavior registry, dispatch hook, factory and provider
- integration/: Contract calls through a real AsyncWeb3 and the mocking provider

Usage:
    # Run all tests
    pytest

    # Run only the fast component tests
    pytest -m unit

    # Run specific test file
    pytest tests/unit/test_hook.py
"""
