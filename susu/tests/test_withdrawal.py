"""
Unit Tests for Withdrawal Processing

Tests cover:
1. Page-filling commission split (exact page, partial page, multiple pages)
2. Full-withdrawal settlement and its comparator policy
3. Insufficient balance rejection (nothing written)
4. Drifted cycle state normalization
5. Conservation of money across a sequence of withdrawals
"""

import threading
import pytest
from decimal import Decimal
from structlog.testing import capture_logs

from susu.errors import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidAmountError,
    InvalidRateError,
)
from susu.models import EntryKind, FullWithdrawalPolicy
from susu.pages import split_withdrawal
from susu.withdrawal import WithdrawalProcessor

from .conftest import ACCOUNT_ID, OTHER_ACCOUNT_ID, TODAY


class TestSplitWithdrawal:
    """Tests for the pure page-splitting function."""

    def test_exact_page_takes_one_box(self):
        split = split_withdrawal(Decimal("155.00"), Decimal("5.00"), Decimal("0.00"), Decimal("200.00"))

        assert split.commission == Decimal("5.00")
        assert split.client_gets == Decimal("150.00")
        assert split.cumulative_after == Decimal("0.00")
        assert split.pages_completed == 1
        assert split.full_withdrawal is False

    def test_partial_page_takes_nothing(self):
        split = split_withdrawal(Decimal("100.00"), Decimal("5.00"), Decimal("0.00"), Decimal("200.00"))

        assert split.commission == Decimal("0.00")
        assert split.client_gets == Decimal("100.00")
        assert split.cumulative_after == Decimal("100.00")
        assert split.pages_completed == 0

    def test_multiple_pages_in_one_withdrawal(self):
        split = split_withdrawal(Decimal("320.00"), Decimal("5.00"), Decimal("0.00"), Decimal("1000.00"))

        assert split.pages_completed == 2
        assert split.commission == Decimal("10.00")
        assert split.client_gets == Decimal("310.00")
        assert split.cumulative_after == Decimal("10.00")
        assert split.total_deduction == Decimal("320.00")

    def test_completed_page_pays_out_open_page_progress(self):
        """The open page's progress is included in the payout of the page it completes."""
        split = split_withdrawal(Decimal("55.00"), Decimal("5.00"), Decimal("100.00"), Decimal("900.00"))

        assert split.pages_completed == 1
        assert split.commission == Decimal("5.00")
        assert split.client_gets == Decimal("150.00")
        assert split.cumulative_after == Decimal("0.00")

    def test_full_withdrawal_settles_open_page(self):
        split = split_withdrawal(Decimal("100.00"), Decimal("5.00"), Decimal("0.00"), Decimal("105.00"))

        assert split.full_withdrawal is True
        assert split.forced_settlement is True
        assert split.commission == Decimal("5.00")
        assert split.client_gets == Decimal("100.00")
        assert split.cumulative_after == Decimal("0.00")

    def test_strict_policy_excludes_exactly_one_box_left(self):
        split = split_withdrawal(
            Decimal("100.00"), Decimal("5.00"), Decimal("0.00"), Decimal("105.00"),
            policy=FullWithdrawalPolicy.STRICT,
        )

        assert split.full_withdrawal is False
        assert split.commission == Decimal("0.00")
        assert split.cumulative_after == Decimal("100.00")

    def test_full_withdrawal_after_completed_page_leaves_no_progress(self):
        # 160 from 163: one page completes, then the remaining 5 is force-settled
        split = split_withdrawal(Decimal("160.00"), Decimal("5.00"), Decimal("0.00"), Decimal("163.00"))

        assert split.full_withdrawal is True
        assert split.pages_completed == 1
        assert split.commission == Decimal("10.00")
        assert split.client_gets == Decimal("155.00")
        assert split.cumulative_after == Decimal("0.00")

    def test_many_pages_are_counted_without_walking_each_one(self):
        split = split_withdrawal(
            Decimal("1000000000000.00"), Decimal("5.00"), Decimal("0.00"), Decimal("2000000000000.00")
        )

        assert split.pages_completed == 6451612903
        assert split.commission == Decimal("32258064515.00")
        assert split.client_gets == Decimal("967741935485.00")
        assert split.cumulative_after == Decimal("35.00")
        assert split.total_deduction == Decimal("1000000000000.00")

    def test_open_page_then_several_pages(self):
        split = split_withdrawal(Decimal("400.00"), Decimal("5.00"), Decimal("100.00"), Decimal("1000.00"))

        assert split.pages_completed == 3
        assert split.commission == Decimal("15.00")
        assert split.client_gets == Decimal("485.00")
        assert split.cumulative_after == Decimal("35.00")


class TestProcessWithdrawal:
    """Tests for withdrawals applied to stored accounts."""

    def test_exact_page_scenario(self, service):
        service.open_account(rate=5, opening_balance=200, account_id=ACCOUNT_ID)

        result = service.process_withdrawal(ACCOUNT_ID, Decimal("155.00"), TODAY)

        # Verify split
        assert result.totals.commission == Decimal("5.00")
        assert result.totals.client_gets == Decimal("150.00")
        assert result.totals.balance_after == Decimal("45.00")

        # Verify entries
        assert result.withdrawal_entry.kind == EntryKind.WITHDRAWAL
        assert result.withdrawal_entry.amount == Decimal("-150.00")
        assert result.commission_entry is not None
        assert result.commission_entry.kind == EntryKind.COMMISSION
        assert result.commission_entry.amount == Decimal("-5.00")
        assert result.commission_entry.related_entry_id == result.withdrawal_entry.id

        # Verify stored state
        assert service.get_account(ACCOUNT_ID).balance == Decimal("45.00")
        assert service.get_cycle_state(ACCOUNT_ID).cumulative == Decimal("0.00")

    def test_partial_page_scenario(self, service):
        service.open_account(rate=5, opening_balance=200, account_id=ACCOUNT_ID)

        result = service.process_withdrawal(ACCOUNT_ID, Decimal("100.00"), TODAY)

        assert result.commission_entry is None
        assert result.totals.client_gets == Decimal("100.00")
        assert service.get_account(ACCOUNT_ID).balance == Decimal("100.00")
        assert service.get_cycle_state(ACCOUNT_ID).cumulative == Decimal("100.00")

    def test_full_withdrawal_scenario(self, service):
        service.open_account(rate=5, opening_balance=105, account_id=ACCOUNT_ID)

        result = service.process_withdrawal(ACCOUNT_ID, Decimal("100.00"), TODAY)

        assert result.totals.full_withdrawal is True
        assert result.totals.commission == Decimal("5.00")
        assert result.totals.client_gets == Decimal("100.00")
        assert service.get_account(ACCOUNT_ID).balance == Decimal("0.00")
        assert service.get_cycle_state(ACCOUNT_ID).cumulative == Decimal("0.00")

    def test_withdrawal_metadata_records_cycle_progress(self, service):
        service.open_account(rate=5, opening_balance=1000, account_id=ACCOUNT_ID)

        result = service.process_withdrawal(ACCOUNT_ID, Decimal("320.00"), TODAY, notes="School fees")

        metadata = result.withdrawal_entry.metadata
        assert metadata["requested_amount"] == "320.00"
        assert metadata["cumulative_before"] == "0.00"
        assert metadata["cumulative_after"] == "10.00"
        assert metadata["pages_completed"] == 2
        assert result.withdrawal_entry.notes == "School fees"
        assert "2 full pages" in result.commission_entry.notes

    def test_float_amount_is_converted_exactly(self, service):
        service.open_account(rate=5, opening_balance=200, account_id=ACCOUNT_ID)

        result = service.process_withdrawal(ACCOUNT_ID, 0.1 + 0.2, TODAY)

        assert result.totals.requested == Decimal("0.30")

    def test_invalid_amount_rejected(self, service):
        service.open_account(rate=5, opening_balance=200, account_id=ACCOUNT_ID)

        with pytest.raises(InvalidAmountError):
            service.process_withdrawal(ACCOUNT_ID, Decimal("0"), TODAY)

        with pytest.raises(InvalidAmountError):
            service.process_withdrawal(ACCOUNT_ID, Decimal("-10"), TODAY)

    def test_unknown_account_rejected(self, service):
        with pytest.raises(AccountNotFoundError):
            service.process_withdrawal(OTHER_ACCOUNT_ID, Decimal("10.00"), TODAY)

    @pytest.mark.parametrize("amount", [Decimal("1e27"), Decimal("1e16"), "not-a-number"])
    def test_unrepresentable_amount_rejected(self, service, amount):
        service.open_account(rate=5, opening_balance=200, account_id=ACCOUNT_ID)

        with pytest.raises(InvalidAmountError):
            service.process_withdrawal(ACCOUNT_ID, amount, TODAY)

        assert service.get_account(ACCOUNT_ID).balance == Decimal("200.00")

    def test_non_positive_stored_rate_rejected(self, service, storage):
        service.open_account(rate=5, opening_balance=200, account_id=ACCOUNT_ID)
        storage.accounts[ACCOUNT_ID]["rate"] = Decimal("0.00")

        with pytest.raises(InvalidRateError):
            service.process_withdrawal(ACCOUNT_ID, Decimal("50.00"), TODAY)

        # Nothing written
        assert service.get_account(ACCOUNT_ID).balance == Decimal("200.00")
        assert service.get_ledger_history(ACCOUNT_ID).total_count == 1
        assert storage.get_cycle(ACCOUNT_ID).cumulative == Decimal("0.00")


class TestInsufficientBalance:
    """Tests for rejected withdrawals."""

    def test_rejection_carries_shortfall_and_writes_nothing(self, service):
        service.open_account(rate=5, opening_balance=100, account_id=ACCOUNT_ID)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            service.process_withdrawal(ACCOUNT_ID, Decimal("150.00"), TODAY)

        error = exc_info.value
        assert error.required == Decimal("150.00")
        assert error.available == Decimal("100.00")
        assert error.shortfall == Decimal("50.00")

        # Nothing changed
        assert service.get_account(ACCOUNT_ID).balance == Decimal("100.00")
        assert service.get_cycle_state(ACCOUNT_ID).cumulative == Decimal("0.00")
        history = service.get_ledger_history(ACCOUNT_ID)
        assert history.total_count == 1  # opening deposit only

    def test_withdrawing_entire_balance_needs_room_for_commission(self, service):
        service.open_account(rate=5, opening_balance=150, account_id=ACCOUNT_ID)

        with pytest.raises(InsufficientBalanceError) as exc_info:
            service.process_withdrawal(ACCOUNT_ID, Decimal("150.00"), TODAY)

        assert exc_info.value.shortfall == Decimal("5.00")

        # Leaving one box behind succeeds
        result = service.process_withdrawal(ACCOUNT_ID, Decimal("145.00"), TODAY)
        assert result.totals.client_gets == Decimal("145.00")
        assert service.get_account(ACCOUNT_ID).balance == Decimal("0.00")

    def test_request_far_above_balance_is_rejected_promptly(self, service):
        service.open_account(rate=5, opening_balance=100, account_id=ACCOUNT_ID)
        outcome = {}

        def withdraw():
            try:
                service.process_withdrawal(ACCOUNT_ID, Decimal("1000000000000"), TODAY)
            except InsufficientBalanceError as e:
                outcome["error"] = e

        worker = threading.Thread(target=withdraw)
        worker.start()
        worker.join(5)

        assert not worker.is_alive()
        assert outcome["error"].shortfall == Decimal("999999999900.00")

        # The account is usable straight away
        result = service.process_withdrawal(ACCOUNT_ID, Decimal("10.00"), TODAY)
        assert result.totals.balance_after == Decimal("90.00")


class TestCycleNormalization:
    """Tests for drifted cumulative values."""

    def test_cumulative_above_threshold_is_folded_back(self, service, storage):
        service.open_account(rate=5, opening_balance=200, account_id=ACCOUNT_ID)
        storage.cycles[ACCOUNT_ID] = {
            "account_id": ACCOUNT_ID,
            "cumulative": Decimal("160.00"),
            "updated_at": None,
        }

        with capture_logs() as logs:
            result = service.process_withdrawal(ACCOUNT_ID, Decimal("10.00"), TODAY)

        assert result.totals.cumulative_before == Decimal("5.00")
        assert result.totals.cumulative_after == Decimal("15.00")
        assert result.totals.commission == Decimal("0.00")

        warnings = [log for log in logs if log["event"] == "cycle_state_normalized"]
        assert len(warnings) == 1
        assert warnings[0]["log_level"] == "warning"

    def test_commission_computation_is_logged(self, service):
        service.open_account(rate=5, opening_balance=200, account_id=ACCOUNT_ID)

        with capture_logs() as logs:
            service.process_withdrawal(ACCOUNT_ID, Decimal("155.00"), TODAY)

        computed = [log for log in logs if log["event"] == "commission_computed"]
        assert len(computed) == 1
        assert computed[0]["commission"] == "5.00"
        assert computed[0]["pages_completed"] == 1


class TestConservation:
    """Invariants over sequences of withdrawals."""

    def test_deductions_match_balance_change(self, service):
        service.open_account(rate=5, opening_balance=2000, account_id=ACCOUNT_ID)
        balance_before = service.get_account(ACCOUNT_ID).balance

        deducted = Decimal("0.00")
        for amount in ["37.50", "120.00", "155.00", "3.25", "400.00", "61.10", "89.90"]:
            result = service.process_withdrawal(ACCOUNT_ID, Decimal(amount), TODAY)
            deducted += abs(result.withdrawal_entry.amount)
            if result.commission_entry:
                deducted += abs(result.commission_entry.amount)

            # Invariants after each non-full withdrawal
            cycle = service.get_cycle_state(ACCOUNT_ID)
            assert Decimal("0.00") <= cycle.cumulative < cycle.threshold
            assert service.get_account(ACCOUNT_ID).balance >= 0

        balance_after = service.get_account(ACCOUNT_ID).balance
        assert deducted == balance_before - balance_after
        assert service.reconcile(ACCOUNT_ID).balanced

    def test_custom_policy_processor(self, storage, service):
        service.open_account(rate=5, opening_balance=105, account_id=ACCOUNT_ID)
        processor = WithdrawalProcessor(storage, FullWithdrawalPolicy.STRICT)

        result = processor.process_withdrawal(ACCOUNT_ID, Decimal("100.00"), TODAY)

        assert result.commission_entry is None
        assert storage.get_account(ACCOUNT_ID).balance == Decimal("5.00")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
