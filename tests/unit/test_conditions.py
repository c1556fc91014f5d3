"""Tests for condition utilities."""

from __future__ import annotations

from database_operator.utils.conditions import (
    find_condition,
    is_condition_true,
    set_backup_ready_condition,
    set_progressing_condition,
    set_ready_condition,
    set_restore_ready_condition,
    update_condition,
)


class TestUpdateCondition:
    """Test cases for update_condition function."""

    def test_add_new_condition(self):
        """Test adding a new condition."""
        conditions = update_condition([], "Ready", "True", "AllChecksPassed", "Database is ready", 2)

        assert len(conditions) == 1
        assert conditions[0]["type"] == "Ready"
        assert conditions[0]["status"] == "True"
        assert conditions[0]["reason"] == "AllChecksPassed"
        assert conditions[0]["message"] == "Database is ready"
        assert conditions[0]["observedGeneration"] == 2
        assert "lastTransitionTime" in conditions[0]

    def test_observed_generation_optional(self):
        """Test that observedGeneration is omitted when not given."""
        conditions = update_condition([], "Ready", "False", "Provisioning", "Starting")
        assert "observedGeneration" not in conditions[0]

    def test_one_condition_per_type(self):
        """Test that updating a type replaces it instead of appending."""
        conditions = update_condition([], "Ready", "False", "Provisioning", "Starting")
        conditions = update_condition(conditions, "Progressing", "True", "Deploying", "Rolling out")
        conditions = update_condition(conditions, "Ready", "True", "AllChecksPassed", "Done")

        assert [c["type"] for c in conditions] == ["Ready", "Progressing"]
        assert conditions[0]["status"] == "True"

    def test_transition_time_kept_when_status_unchanged(self):
        """Test that lastTransitionTime only moves when status flips."""
        conditions = [
            {
                "type": "Ready",
                "status": "False",
                "reason": "Provisioning",
                "message": "Starting",
                "lastTransitionTime": "2024-01-01T00:00:00+00:00",
            }
        ]

        conditions = update_condition(conditions, "Ready", "False", "Deploying", "Rolling out")
        assert conditions[0]["lastTransitionTime"] == "2024-01-01T00:00:00+00:00"
        assert conditions[0]["reason"] == "Deploying"

        conditions = update_condition(conditions, "Ready", "True", "AllChecksPassed", "Done")
        assert conditions[0]["lastTransitionTime"] != "2024-01-01T00:00:00+00:00"


class TestFindCondition:
    """Test cases for condition lookup helpers."""

    def test_find(self):
        conditions = update_condition([], "Ready", "True", "AllChecksPassed", "ok")
        assert find_condition(conditions, "Ready")["reason"] == "AllChecksPassed"
        assert find_condition(conditions, "Progressing") is None
        assert find_condition(None, "Ready") is None

    def test_is_condition_true(self):
        conditions = update_condition([], "Ready", "True", "AllChecksPassed", "ok")
        conditions = update_condition(conditions, "Progressing", "False", "ReconciliationComplete", "")
        assert is_condition_true(conditions, "Ready")
        assert not is_condition_true(conditions, "Progressing")
        assert not is_condition_true(conditions, "BackupReady")


class TestConditionSetters:
    """Test cases for the typed condition setters."""

    def test_bool_status_mapping(self):
        """Test that setters translate booleans to condition strings."""
        conditions = set_ready_condition([], True, "AllChecksPassed", "ok")
        conditions = set_progressing_condition(conditions, False, "ReconciliationComplete", "done")

        assert find_condition(conditions, "Ready")["status"] == "True"
        assert find_condition(conditions, "Progressing")["status"] == "False"

    def test_backup_and_restore(self):
        """Test the Backup and Restore condition types."""
        backup = set_backup_ready_condition([], False, "DatabaseNotReady", "waiting", 1)
        restore = set_restore_ready_condition([], True, "RestoreCompleted", "restored")

        assert backup[0]["type"] == "BackupReady"
        assert backup[0]["observedGeneration"] == 1
        assert restore[0]["type"] == "RestoreReady"
        assert restore[0]["status"] == "True"
