from __future__ import annotations

import unittest
from decimal import Decimal

from jobflow.utils.earnings import (
    EARNING_ASSIGNMENT_FEE,
    EARNING_COMPLETION_PAYOUT,
    EARNING_SUBMISSION_FEE,
    OrderTerms,
    ROLE_MANAGER,
    ROLE_WRITER,
    manager_fee_reserve,
    manager_submission_fee,
    money_major_to_minor,
    money_minor_to_major,
    on_assignment,
    on_completion,
    on_submission,
    platform_profit,
    split_within_amount,
)
from jobflow.utils.pricing import PricingConfig, default_writer_earnings, minimum_price


def _terms(**overrides) -> OrderTerms:
    base = dict(
        order_id=1,
        writer_id=20,
        manager_id=50,
        unit_count=5,
        amount=Decimal("1250.00"),
        writer_earnings=Decimal("1000.00"),
        manager_earnings=Decimal("0.00"),
    )
    base.update(overrides)
    return OrderTerms(**base)


class EarningsCalculatorTestCase(unittest.TestCase):
    def setUp(self):
        self.config = PricingConfig()

    def test_minimum_price_uses_page_and_slide_floors(self):
        self.assertEqual(minimum_price(5, 0, self.config), Decimal("1250"))
        self.assertEqual(minimum_price(2, 3, self.config), Decimal("950"))
        self.assertLess(Decimal("1000"), minimum_price(5, 0, self.config))

    def test_default_writer_earnings(self):
        self.assertEqual(default_writer_earnings(5, 0, self.config), Decimal("1000"))
        self.assertEqual(default_writer_earnings(0, 4, self.config), Decimal("400"))

    def test_assignment_fee_goes_to_manager(self):
        credits = on_assignment(_terms(), self.config)
        self.assertEqual(len(credits), 1)
        self.assertEqual(credits[0].beneficiary_id, 50)
        self.assertEqual(credits[0].role, ROLE_MANAGER)
        self.assertEqual(credits[0].amount, Decimal("10.00"))
        self.assertEqual(credits[0].earning_type, EARNING_ASSIGNMENT_FEE)

    def test_no_manager_means_no_manager_fees(self):
        self.assertEqual(on_assignment(_terms(manager_id=None), self.config), [])
        self.assertEqual(on_submission(_terms(manager_id=None), self.config), [])

    def test_submission_fee_scales_with_extra_units(self):
        self.assertEqual(manager_submission_fee(1, self.config), Decimal("10"))
        self.assertEqual(manager_submission_fee(5, self.config), Decimal("30"))
        credits = on_submission(_terms(), self.config)
        self.assertEqual(credits[0].amount, Decimal("30.00"))
        self.assertEqual(credits[0].earning_type, EARNING_SUBMISSION_FEE)

    def test_fee_reserve_drops_fees_already_credited(self):
        self.assertEqual(manager_fee_reserve(5, self.config), Decimal("40.00"))
        self.assertEqual(manager_fee_reserve(5, self.config, assignment_credited=True), Decimal("30.00"))
        self.assertEqual(
            manager_fee_reserve(5, self.config, assignment_credited=True, submission_credited=True), Decimal("0.00")
        )

    def test_fees_follow_configuration(self):
        config = PricingConfig(manager_assign_fee=Decimal("12.5"), manager_submit_per_extra_unit=Decimal("0"))
        self.assertEqual(on_assignment(_terms(), config)[0].amount, Decimal("12.50"))
        self.assertEqual(on_submission(_terms(), config)[0].amount, Decimal("10.00"))

    def test_completion_pays_writer_earnings(self):
        credits = on_completion(_terms())
        self.assertEqual(len(credits), 1)
        self.assertEqual(credits[0].beneficiary_id, 20)
        self.assertEqual(credits[0].role, ROLE_WRITER)
        self.assertEqual(credits[0].amount, Decimal("1000.00"))
        self.assertEqual(credits[0].earning_type, EARNING_COMPLETION_PAYOUT)
        self.assertEqual(credits[0].amount_minor, 100000)

    def test_completion_without_writer_credits_nothing(self):
        self.assertEqual(on_completion(_terms(writer_id=None)), [])
        self.assertEqual(on_completion(_terms(writer_earnings=Decimal("0"))), [])

    def test_platform_profit_is_the_residual(self):
        terms = _terms(manager_earnings=Decimal("40.00"))
        profit = platform_profit(terms)
        self.assertEqual(profit, Decimal("210.00"))
        self.assertTrue(split_within_amount(terms.amount, terms.writer_earnings, terms.manager_earnings, profit))

    def test_platform_profit_never_negative(self):
        terms = _terms(writer_earnings=Decimal("1300.00"))
        self.assertEqual(platform_profit(terms), Decimal("0.00"))
        self.assertFalse(split_within_amount(terms.amount, terms.writer_earnings, terms.manager_earnings, Decimal("0")))

    def test_minor_unit_conversion_rounds_half_up(self):
        self.assertEqual(money_major_to_minor("10.005"), 1001)
        self.assertEqual(money_major_to_minor(Decimal("1250")), 125000)
        self.assertEqual(money_minor_to_major(125050), Decimal("1250.50"))


if __name__ == "__main__":
    unittest.main()
