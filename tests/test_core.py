"""
Unit tests for core value objects, exceptions and settings.
"""

import pytest

from claw_queue.configs import Settings, get_settings
from claw_queue.core.exceptions import (
    ActuatorError,
    ClawQueueError,
    ParticipantNotFoundError,
    RepositoryError,
)
from claw_queue.core.value_objects import (
    ActionResult,
    Participant,
    ParticipantStatus,
    RejectionCode,
    SessionSnapshot,
    credits_for_amount,
)


# =============================================================================
# Credits
# =============================================================================


class TestCreditsForAmount:
    """Tests for the payment to credits conversion."""

    def test_fractional_amount_is_floored(self):
        assert credits_for_amount(3.7) == 3

    def test_amount_is_capped(self):
        assert credits_for_amount(9) == 5
        assert credits_for_amount(9, max_credits=8) == 8

    def test_non_positive_amount_buys_nothing(self):
        assert credits_for_amount(0) == 0
        assert credits_for_amount(-2) == 0
        assert credits_for_amount(0.99) == 0

    def test_non_finite_amount_buys_nothing(self):
        assert credits_for_amount(float("nan")) == 0
        assert credits_for_amount(float("inf")) == 0
        assert credits_for_amount(float("-inf")) == 0


# =============================================================================
# Participant
# =============================================================================


class TestParticipant:
    """Tests for the Participant value object."""

    def test_credits_remaining_never_negative(self):
        p = Participant(id=1, name="A", credits_total=2, credits_used=3)
        assert p.credits_remaining == 0

    def test_eligibility(self):
        waiting = Participant(id=1, name="A", credits_total=2, status=ParticipantStatus.WAITING)
        assert waiting.is_eligible is True
        assert waiting.evolve(credits_used=2).is_eligible is False
        assert waiting.evolve(status=ParticipantStatus.DONE).is_eligible is False

    def test_mapping_round_trip(self):
        p = Participant(
            id=7,
            name="Ann",
            credits_total=3,
            credits_used=1,
            credits_pulsed=True,
            status=ParticipantStatus.ACTIVE,
            queued_at=1700000000.5,
            intent_id="intent",
            amount_paid=3.7,
        )

        restored = Participant.from_mapping(p.to_mapping())

        assert restored == p

    def test_from_mapping_defaults(self):
        p = Participant.from_mapping({"id": "3", "name": "B", "amount_paid": ""})
        assert p.status is ParticipantStatus.CREATED
        assert p.credits_total == 0
        assert p.credits_pulsed is False
        assert p.amount_paid is None
        assert p.email is None

    def test_to_dict_hides_token(self):
        p = Participant(id=1, name="A", session_token="secret")
        assert "session_token" not in p.to_dict()
        assert p.to_dict()["status"] == "created"


# =============================================================================
# Results and Snapshots
# =============================================================================


class TestActionResult:
    """Tests for ActionResult."""

    def test_ok_to_dict(self):
        result = ActionResult.ok(participant_id=4)
        assert result.to_dict() == {"success": True, "data": {"participant_id": 4}}

    def test_rejected_to_dict(self):
        result = ActionResult.rejected(RejectionCode.GRAB_ALREADY_USED)
        assert result.to_dict() == {"success": False, "message": "grab_already_used"}


class TestSessionSnapshot:
    def test_idle_snapshot(self):
        assert SessionSnapshot.idle().to_dict() == {
            "active_id": None,
            "credit_ends_at": None,
            "first_move_deadline": None,
            "credits_remaining": None,
        }


# =============================================================================
# Exception Tests
# =============================================================================


class TestExceptions:
    """Tests for custom exceptions."""

    def test_claw_queue_error(self):
        error = ClawQueueError("Test error", code="TEST_001")
        assert error.message == "Test error"
        assert error.code == "TEST_001"

        d = error.to_dict()
        assert d["error"] == "TEST_001"
        assert d["message"] == "Test error"

    def test_default_code_is_class_name(self):
        assert ActuatorError("boom").code == "ActuatorError"

    def test_actuator_error_with_channel(self):
        error = ActuatorError("Write failed", channel="grab")
        assert error.channel == "grab"
        assert error.details["channel"] == "grab"

    def test_participant_not_found_is_repository_error(self):
        error = ParticipantNotFoundError(12)
        assert isinstance(error, RepositoryError)
        assert error.details["participant_id"] == 12
        assert "12" in error.message


# =============================================================================
# Settings Tests
# =============================================================================


class TestSettings:
    """Tests for settings."""

    def test_settings_defaults(self):
        settings = Settings()
        assert settings.scheduler.credit_window_s == 35.0
        assert settings.scheduler.first_move_window_s == 15.0
        assert settings.scheduler.grab_finish_window_s == 7.0
        assert settings.scheduler.heartbeat_interval_s == 4.0
        assert settings.payment.max_credits == 5

    def test_settings_response_channel(self):
        settings = Settings()
        assert settings.payment.response_channel == f"{settings.payment.command_channel}_response"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("CLAW_QUEUE_CREDIT_WINDOW_S", "20")
        assert Settings().scheduler.credit_window_s == 20.0

    def test_get_settings_singleton(self):
        assert get_settings() is get_settings()

    def test_sections_are_frozen(self):
        with pytest.raises(AttributeError):
            Settings().scheduler.credit_window_s = 1
