"""
Tests for switchode.tables: Adams and BDF coefficients in Nordsieck form.

Known closed forms: trapezoidal rule (Adams q=2) and BDF2.
"""
import pytest

from switchode.options import Method
from switchode.tables import MAX_ORDER, SM1, coefficients


class TestShapes:

    @pytest.mark.parametrize("method", [Method.ADAMS, Method.BDF])
    def test_one_entry_per_order(self, method):
        tab = coefficients(method)
        assert tab.max_order == MAX_ORDER[method]
        assert len(tab.el) == tab.max_order + 1
        for q in range(1, tab.max_order + 1):
            assert len(tab.corrector(q)) == q + 1
            assert len(tab.test_constants(q)) == 3

    def test_tables_are_shared(self):
        assert coefficients(Method.ADAMS) is coefficients(Method.ADAMS)
        assert coefficients(Method.BDF) is coefficients(Method.BDF)

    def test_stability_bounds_cover_adams_orders(self):
        assert len(SM1) == MAX_ORDER[Method.ADAMS] + 1


class TestIdentities:

    @pytest.mark.parametrize("method", [Method.ADAMS, Method.BDF])
    def test_el1_is_one(self, method):
        tab = coefficients(method)
        for q in range(1, tab.max_order + 1):
            assert tab.el[q][1] == 1.0

    @pytest.mark.parametrize("method", [Method.ADAMS, Method.BDF])
    def test_cm_definition(self, method):
        tab = coefficients(method)
        for q in range(1, tab.max_order + 1):
            assert tab.cm[q] == pytest.approx(tab.tesco[q][1] * tab.el[q][q])

    def test_bdf_error_constants(self):
        tab = coefficients(Method.BDF)
        for q in range(1, 6):
            el0 = tab.el[q][0]
            assert tab.tesco[q][1] == pytest.approx((q + 1) / el0)
            assert tab.tesco[q][2] == pytest.approx((q + 2) / el0)

    def test_positive_test_constants(self):
        for method in (Method.ADAMS, Method.BDF):
            tab = coefficients(method)
            for q in range(1, tab.max_order + 1):
                assert tab.tesco[q][1] > 0.0


class TestKnownValues:

    def test_order_one_is_euler_pair(self):
        assert coefficients(Method.ADAMS).el[1] == (1.0, 1.0)
        assert coefficients(Method.BDF).el[1] == (1.0, 1.0)

    def test_adams_order_two_is_trapezoidal(self):
        tab = coefficients(Method.ADAMS)
        assert tab.el[2] == pytest.approx((0.5, 1.0, 0.5))
        # local error constant 1/12
        assert tab.tesco[2][1] == pytest.approx(12.0)

    def test_adams_order_one_constants(self):
        tab = coefficients(Method.ADAMS)
        assert tab.tesco[1][:2] == pytest.approx((0.0, 2.0))

    def test_bdf2(self):
        tab = coefficients(Method.BDF)
        assert tab.el[2] == pytest.approx((2.0 / 3.0, 1.0, 1.0 / 3.0))
