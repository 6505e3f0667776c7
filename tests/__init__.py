"""
SMPtweaks Test Suite
====================

Test Organization
-----------------
- tests/unit/          : Fast unit tests with in-memory doubles (no external dependencies)
- tests/integration/   : Integration tests against SQLite files and testcontainers

Testing Philosophy
------------------
- Unit tests: Fast, isolated, test progression logic and degraded-mode handling
- Integration tests: Slower, test real database interactions
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
