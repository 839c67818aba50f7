"""Test data factories and test doubles for deterministic notifier tests."""
