"""
Tests for payments app.

This package contains test modules for:
- test_models.py / test_state_transitions.py: models and django-fsm transitions
- test_locks.py / test_optimistic_locking.py: cache locks and compare-and-swap
- test_views.py / test_admin.py: REST API and operations admin
- test_tasks.py: notification and retention tasks
- test_scenarios.py: end-to-end payment journeys

Service, adapter, webhook and entitlement tests live next to their packages.

Usage:
    pytest payments/tests/
    pytest payments/tests/test_scenarios.py
"""
