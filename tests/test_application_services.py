import unittest

from application.blackjack import BlackjackSessionManager, HandStatus
from application.services import EconomyService
from domain.errors import FailureReason, LedgerConflict
from support import NOW, InMemoryLedgerRepository, ScriptedRandom, cards, stacked_shoe


class RacingLedger(InMemoryLedgerRepository):
    """Simulates a settlement landing between a payment's read and write."""

    def __init__(self, races=1):
        super().__init__()
        self.races = races
        self.payment_calls = 0

    def record_payment(self, loan_id, *args, **kwargs):
        self.payment_calls += 1
        if self.races:
            self.races -= 1
            self.loans[loan_id].balance += 0.5
            raise LedgerConflict("changed")
        return super().record_payment(loan_id, *args, **kwargs)


class ServiceTestCase(unittest.TestCase):
    ledger_cls = InMemoryLedgerRepository

    def setUp(self) -> None:
        self.ledger = self.ledger_cls()
        self.rng = ScriptedRandom()
        self.service = EconomyService(self.ledger, rng=self.rng, clock=lambda: NOW)

    def assertFailure(self, result, reason):
        self.assertFalse(result.success)
        self.assertEqual(result.failure.reason, reason)


class WalletTests(ServiceTestCase):
    def test_first_balance_check_creates_account(self):
        result = self.service.check_balance("u1")
        self.assertTrue(result.success)
        self.assertEqual(result.balance, 1000)
        self.assertEqual(self.ledger.get_account("u1").balance, 1000)

    def test_existing_account_is_not_reset(self):
        self.ledger.create_account("u1", 42)
        self.assertEqual(self.service.check_balance("u1").balance, 42)

    def test_custom_starting_balance(self):
        service = EconomyService(self.ledger, starting_balance=250)
        self.assertEqual(service.check_balance("u2").balance, 250)


class DiceTests(ServiceTestCase):
    def test_win_credits_the_bet(self):
        self.rng = ScriptedRandom([80, 20])
        self.service = EconomyService(self.ledger, rng=self.rng)
        result = self.service.place_dice_wager("u1", 100)

        self.assertTrue(result.success)
        self.assertTrue(result.outcome.won)
        self.assertEqual(result.balance, 1100)

    def test_tie_loses_the_bet(self):
        self.service = EconomyService(self.ledger, rng=ScriptedRandom([50, 50]))
        result = self.service.place_dice_wager("u1", 100)
        self.assertEqual(result.balance, 900)

    def test_refusals(self):
        self.assertFailure(self.service.place_dice_wager("u1", 0), FailureReason.INVALID_BET)
        result = self.service.place_dice_wager("u1", 5000)
        self.assertFailure(result, FailureReason.INSUFFICIENT_FUNDS)
        self.assertEqual(result.failure.details, {"required": 5000, "available": 1000})
        self.assertEqual(self.ledger.get_account("u1").balance, 1000)


class BlackjackCommandTests(ServiceTestCase):
    def setUp(self) -> None:
        super().setUp()
        manager = BlackjackSessionManager(self.ledger, rng=self.rng, clock=lambda: 1000.0)
        self.service = EconomyService(self.ledger, blackjack=manager, rng=self.rng, clock=lambda: NOW)

    def stack(self, *ranks):
        self.service.blackjack.registry.set_shoe("u1", stacked_shoe(cards(*ranks), refreshed_at=1000.0))

    def test_full_hand(self):
        self.stack("10", "6", "10", "7", "5")
        started = self.service.start_blackjack("u1", 100)
        self.assertTrue(started.success)
        self.assertEqual(started.outcome.status, HandStatus.IN_PROGRESS)

        hit = self.service.hit("u1")
        self.assertEqual(hit.outcome.player_total, 21)

        stood = self.service.stand("u1")
        self.assertEqual(stood.outcome.status, HandStatus.WIN)
        self.assertEqual(self.ledger.get_account("u1").balance, 1100)

    def test_refusals(self):
        self.assertFailure(self.service.hit("u1"), FailureReason.NO_ACTIVE_GAME)
        self.assertFailure(self.service.stand("u1"), FailureReason.NO_ACTIVE_GAME)
        self.assertFailure(self.service.peek_count("u1"), FailureReason.NO_ACTIVE_GAME)
        self.assertFailure(self.service.start_blackjack("u1", 0), FailureReason.INVALID_BET)
        self.assertFailure(self.service.start_blackjack("u1", 1001), FailureReason.INSUFFICIENT_FUNDS)

        self.stack("10", "6", "10", "7")
        self.service.start_blackjack("u1", 100)
        self.assertFailure(self.service.start_blackjack("u1", 100), FailureReason.GAME_ALREADY_ACTIVE)

    def test_wager_on_the_table_cannot_be_rolled_away(self):
        self.stack("10", "6", "10", "8", "10")
        self.service.start_blackjack("u1", 1000)

        roll = self.service.place_dice_wager("u1", 1000)
        self.assertFailure(roll, FailureReason.INSUFFICIENT_FUNDS)
        self.assertEqual(roll.failure.details, {"required": 1000, "available": 0})

        bust = self.service.hit("u1")
        self.assertEqual(bust.outcome.status, HandStatus.BUST)
        self.assertGreaterEqual(self.ledger.get_account("u1").balance, 0)
        self.assertEqual(self.ledger.get_account("u1").balance, 0)

    def test_count_is_sold_once(self):
        self.stack("10", "6", "10", "7")
        self.service.start_blackjack("u1", 100)

        peek = self.service.peek_count("u1")
        self.assertTrue(peek.success)
        self.assertEqual(peek.peek.cost, 10)
        self.assertFailure(self.service.peek_count("u1"), FailureReason.ALREADY_PEEKED)


class LoanTests(ServiceTestCase):
    def test_loan_credits_principal_and_schedules_first_payment(self):
        result = self.service.request_loan("u1", 5000)

        self.assertTrue(result.success)
        self.assertEqual(result.balance, 6000)
        self.assertEqual(result.loan.principal, 5000)
        self.assertEqual(result.loan.balance, 5000)
        self.assertEqual(result.loan.next_payment_due.isoformat(), "2024-03-11T04:00:00+00:00")

    def test_second_loan_reports_existing_debt(self):
        self.service.request_loan("u1", 5000)
        result = self.service.request_loan("u1", 100)

        self.assertFailure(result, FailureReason.EXISTING_DEBT)
        self.assertEqual(result.failure.details, {"loan_count": 1, "total_debt": 5000.0})
        self.assertEqual(self.ledger.get_account("u1").balance, 6000)

    def test_collateral_and_amount_checks(self):
        self.assertFailure(self.service.request_loan("u1", 10_001), FailureReason.INSUFFICIENT_COLLATERAL)
        self.assertFailure(self.service.request_loan("u1", 0), FailureReason.INVALID_AMOUNT)
        self.assertEqual(self.ledger.loans, {})

    def test_status_lists_loans_with_minimum_payment(self):
        empty = self.service.list_loan_status("u1")
        self.assertTrue(empty.success)
        self.assertEqual(empty.loans, [])

        self.service.request_loan("u1", 5000)
        status = self.service.list_loan_status("u1")
        self.assertEqual(len(status.loans), 1)
        self.assertEqual(status.loans[0].minimum_payment, 150)
        self.assertEqual(status.total_debt, 5000)

    def test_partial_payment(self):
        loan = self.service.request_loan("u1", 5000).loan
        result = self.service.make_loan_payment("u1", 200)

        self.assertTrue(result.success)
        self.assertEqual(result.loan_id, loan.id)
        self.assertFalse(result.paid_off)
        self.assertEqual(result.balance, 5800)
        stored = self.ledger.get_loan(loan.id)
        self.assertEqual(stored.balance, 4800)
        self.assertEqual(stored.last_payment_at, NOW)
        # Manual payments do not move the schedule.
        self.assertEqual(stored.next_payment_due, loan.next_payment_due)

    def test_payment_resets_missed_counter(self):
        self.ledger.create_account("u1", 1000)
        loan = self.ledger.add_loan("u1", 300.0, next_payment_due=NOW, missed_payments=2)
        self.service.make_loan_payment("u1", 10)
        self.assertEqual(self.ledger.get_loan(loan.id).missed_payments, 0)

    def test_payment_pays_off_loan_and_frees_borrower(self):
        self.service.request_loan("u1", 500)
        result = self.service.make_loan_payment("u1", 500)

        self.assertTrue(result.paid_off)
        self.assertEqual(result.balance, 1000)
        self.assertEqual(self.service.list_loan_status("u1").loans, [])
        self.assertTrue(self.service.request_loan("u1", 100).success)

    def test_payment_goes_to_oldest_loan(self):
        self.ledger.create_account("u1", 1000)
        older = self.ledger.add_loan("u1", 300.0, next_payment_due=NOW)
        newer = self.ledger.add_loan("u1", 900.0, next_payment_due=NOW)

        self.service.make_loan_payment("u1", 100)

        self.assertEqual(self.ledger.get_loan(older.id).balance, 200)
        self.assertEqual(self.ledger.get_loan(newer.id).balance, 900)

    def test_payment_refusals(self):
        self.assertFailure(self.service.make_loan_payment("u1", 0), FailureReason.INVALID_AMOUNT)
        self.assertFailure(self.service.make_loan_payment("u1", 2000), FailureReason.INSUFFICIENT_FUNDS)
        self.assertFailure(self.service.make_loan_payment("u1", 10), FailureReason.NO_DEBT)


class PaymentConflictTests(ServiceTestCase):
    ledger_cls = RacingLedger

    def test_payment_is_recomputed_after_conflict(self):
        self.ledger.create_account("u1", 1000)
        loan = self.ledger.add_loan("u1", 300.0, next_payment_due=NOW)

        result = self.service.make_loan_payment("u1", 100)

        self.assertTrue(result.success)
        self.assertEqual(self.ledger.payment_calls, 2)
        self.assertEqual(result.payment.previous_balance, 300.5)
        self.assertEqual(self.ledger.get_loan(loan.id).balance, 200.5)
        self.assertEqual(self.ledger.get_account("u1").balance, 900)

    def test_gives_up_after_repeated_conflicts(self):
        self.ledger.races = 3
        self.ledger.create_account("u1", 1000)
        self.ledger.add_loan("u1", 300.0, next_payment_due=NOW)

        result = self.service.make_loan_payment("u1", 100)

        self.assertFailure(result, FailureReason.PERSISTENCE_FAILURE)
        self.assertEqual(self.ledger.get_account("u1").balance, 1000)


class AdminTests(ServiceTestCase):
    def test_credit(self):
        result = self.service.admin_credit("u1", 500)
        self.assertEqual((result.previous_balance, result.balance), (1000, 1500))
        self.assertFailure(self.service.admin_credit("u1", -5), FailureReason.INVALID_AMOUNT)

    def test_set_balance(self):
        result = self.service.admin_set_balance("u1", 0)
        self.assertTrue(result.success)
        self.assertEqual(result.previous_balance, 1000)
        self.assertEqual(self.ledger.get_account("u1").balance, 0)
        self.assertFailure(self.service.admin_set_balance("u1", -1), FailureReason.INVALID_AMOUNT)

    def test_forgive(self):
        self.assertFailure(self.service.admin_forgive_loan("u1"), FailureReason.NO_DEBT)

        self.service.request_loan("u1", 2000)
        result = self.service.admin_forgive_loan("u1")

        self.assertTrue(result.success)
        self.assertEqual(result.loans_forgiven, 1)
        self.assertEqual(result.total_forgiven, 2000)
        self.assertEqual(self.service.list_loan_status("u1").loans, [])
        # The borrowed coins stay with the borrower.
        self.assertEqual(self.ledger.get_account("u1").balance, 3000)

    def test_list_all_loans_largest_first(self):
        self.ledger.create_account("a", 10)
        self.ledger.create_account("b", 20)
        self.ledger.add_loan("a", 100.0, next_payment_due=NOW)
        self.ledger.add_loan("b", 700.0, next_payment_due=NOW)
        self.ledger.add_loan("a", 0.0, next_payment_due=NOW)

        result = self.service.admin_list_all_loans()

        self.assertEqual([line.loan.account_id for line in result.loans], ["b", "a"])
        self.assertEqual(result.loans[0].borrower_balance, 20)
        self.assertEqual(result.total_debt, 800)


if __name__ == "__main__":
    unittest.main()
