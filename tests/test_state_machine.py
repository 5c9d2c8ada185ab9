import pytest

from services.order_service.errors import InvalidTransition
from services.order_service.state_machine import (
    ORDER_STATUSES,
    assert_can_transition,
    can_transition,
    is_cancellable,
    is_valid_history,
    path_to,
)


class TestTransitions:
    @pytest.mark.parametrize("current,target", [
        ("pending", "confirmed"),
        ("confirmed", "processing"),
        ("processing", "shipped"),
        ("shipped", "delivered"),
        ("pending", "cancelled"),
        ("confirmed", "cancelled"),
        ("processing", "cancelled"),
        ("cancelled", "refunded"),
    ])
    def test_allowed_edges(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        ("delivered", "processing"),
        ("shipped", "cancelled"),
        ("pending", "shipped"),
        ("refunded", "pending"),
        ("delivered", "refunded"),
        ("confirmed", "pending"),
    ])
    def test_rejected_edges(self, current, target):
        assert not can_transition(current, target)

    def test_terminal_states_have_no_exits(self):
        for target in ORDER_STATUSES:
            assert not can_transition("delivered", target)
            assert not can_transition("refunded", target)

    def test_assert_raises_invalid_transition(self):
        with pytest.raises(InvalidTransition, match="'delivered' to 'processing'"):
            assert_can_transition("delivered", "processing")

    def test_unknown_status_is_never_a_valid_source(self):
        assert not can_transition("lost", "pending")


class TestCancellable:
    @pytest.mark.parametrize("status", ["pending", "confirmed", "processing"])
    def test_cancellable(self, status):
        assert is_cancellable(status)

    @pytest.mark.parametrize("status", ["shipped", "delivered", "cancelled", "refunded"])
    def test_not_cancellable(self, status):
        assert not is_cancellable(status)


class TestPathTo:
    def test_walks_intermediate_states(self):
        assert path_to("confirmed", "delivered") == ["processing", "shipped", "delivered"]

    def test_single_step(self):
        assert path_to("processing", "shipped") == ["shipped"]

    def test_backwards_or_same_is_empty(self):
        assert path_to("delivered", "processing") == []
        assert path_to("shipped", "shipped") == []

    def test_off_path_statuses_are_empty(self):
        assert path_to("cancelled", "delivered") == []
        assert path_to("confirmed", "failed") == []


class TestHistory:
    def test_full_fulfilment_history_is_valid(self):
        assert is_valid_history(["pending", "confirmed", "processing", "shipped", "delivered"])

    def test_cancel_then_refund_is_valid(self):
        assert is_valid_history(["pending", "confirmed", "cancelled", "refunded"])

    def test_must_start_pending(self):
        assert not is_valid_history(["confirmed", "processing"])
        assert not is_valid_history([])

    def test_skipping_a_state_is_invalid(self):
        assert not is_valid_history(["pending", "shipped"])
