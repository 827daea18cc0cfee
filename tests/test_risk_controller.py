"""
Tests for the Risk Controller
"""

import threading
from dataclasses import replace

import pytest
from decimal import Decimal

from core.models import RiskLevel, TradeLog, TradeStatus
from core.risk_controller import RiskController, RiskPolicy, next_utc_midnight
from utils.exceptions import DataValidationError


DAY = 86400


@pytest.fixture
def controller(risk_limits, clock):
    return RiskController(risk_limits, clock=clock)


def open_trade(controller, trade_id):
    controller.record_trade(TradeLog(id=trade_id, timestamp=controller._clock(), strategy='triangular'))


def close_trade(controller, trade_id, status=TradeStatus.SUCCESS, profit=None, cost=None, timestamp=None):
    controller.record_trade(TradeLog(
        id=trade_id,
        timestamp=controller._clock() if timestamp is None else timestamp,
        strategy='triangular',
        status=status,
        profit=None if profit is None else Decimal(str(profit)),
        cost=None if cost is None else Decimal(str(cost)),
    ))


class TestEvaluate:
    """Test the ordered approval checks"""

    def test_concurrency_limit_rejects(self, controller, make_opportunity):
        """Full concurrency rejects regardless of profit"""
        for i in range(3):
            open_trade(controller, f't{i}')

        evaluation = controller.evaluate(make_opportunity(profit_ratio='0.9', confidence=0.99))

        assert evaluation.approved is False
        assert evaluation.reason == "Maximum concurrent trades reached"

    def test_daily_loss_rejects(self, controller, make_opportunity):
        close_trade(controller, 'loss', TradeStatus.FAILED, profit='-101')

        evaluation = controller.evaluate(make_opportunity())

        assert evaluation.approved is False
        assert evaluation.reason == "Daily loss limit exceeded"

    def test_kelly_reduces_size(self, controller, make_opportunity):
        """50 * clamp(0.9 * 0.05 * 0.5) = 1.125"""
        evaluation = controller.evaluate(make_opportunity(trade_amount='10'))

        assert evaluation.approved is True
        assert evaluation.reason is None
        assert evaluation.adjusted_amount == Decimal('1.125')

    def test_clamp_then_kelly(self, controller, make_opportunity):
        evaluation = controller.evaluate(make_opportunity(trade_amount='80'))
        assert evaluation.adjusted_amount == Decimal('1.125')

    def test_kelly_upper_bound(self, controller, make_opportunity):
        evaluation = controller.evaluate(make_opportunity(trade_amount='80', profit_ratio='1', confidence=1.0))
        assert evaluation.adjusted_amount == Decimal('12.5')

    def test_kelly_lower_bound(self, controller, make_opportunity):
        evaluation = controller.evaluate(make_opportunity(profit_ratio='0.04', confidence=0.1))
        assert evaluation.adjusted_amount == Decimal('0.5')

    def test_small_trade_unchanged(self, controller, make_opportunity):
        evaluation = controller.evaluate(make_opportunity(trade_amount='1'))
        assert evaluation.approved is True
        assert evaluation.adjusted_amount is None

    def test_profit_ratio_boundary(self, controller, make_opportunity):
        """Ratio must reach max slippage (0.03) plus the 0.002 buffer"""
        assert controller.evaluate(make_opportunity(profit_ratio='0.032')).approved is True

        evaluation = controller.evaluate(make_opportunity(profit_ratio='0.0319'))
        assert evaluation.approved is False
        assert evaluation.reason == "Profit ratio below slippage tolerance plus gas buffer"

    def test_exposure_headroom(self, risk_limits, clock, make_opportunity):
        limits = replace(risk_limits, max_concurrent_trades=10)
        controller = RiskController(limits, policy=RiskPolicy(exposure_unit_per_trade=Decimal('49')), clock=clock)
        for i in range(3):
            open_trade(controller, f't{i}')
        assert controller.current_exposure == Decimal('147')

        opportunity = make_opportunity(trade_amount='10', profit_ratio='1', confidence=1.0)
        assert controller.evaluate(opportunity).adjusted_amount == Decimal('3')

        open_trade(controller, 't3')
        evaluation = controller.evaluate(opportunity)
        assert evaluation.approved is False
        assert evaluation.reason == "Total exposure limit reached"

    def test_nan_confidence_uses_fallback(self, controller, make_opportunity):
        evaluation = controller.evaluate(make_opportunity(confidence=float('nan')))
        assert evaluation.approved is True
        assert evaluation.adjusted_amount == Decimal('5')

    def test_nan_profit_ratio_uses_fallback(self, controller, make_opportunity):
        evaluation = controller.evaluate(make_opportunity(profit_ratio=Decimal('NaN')))
        assert evaluation.approved is True
        assert evaluation.adjusted_amount == Decimal('5')

    def test_sizing_fault_uses_smaller_fallback(self, controller, make_opportunity):
        """Overflow while sizing falls back to 5% of max position"""
        opportunity = make_opportunity(profit_ratio=Decimal('1e999999'), confidence=1e308, expected_profit='1')
        evaluation = controller.evaluate(opportunity)
        assert evaluation.adjusted_amount == Decimal('2.5')

    def test_non_finite_amount_rejected(self, controller, make_opportunity):
        evaluation = controller.evaluate(make_opportunity(trade_amount=Decimal('NaN')))
        assert evaluation.approved is False
        assert evaluation.reason == "Risk evaluation error"

    @pytest.mark.parametrize('amount,ratio,confidence', [
        ('500', '0.5', 1.0),
        ('50', '0.05', 0.9),
        ('49.9', '0.9', 0.95),
        ('0.2', '0.04', 0.2),
    ])
    def test_approved_size_within_max_position(self, controller, make_opportunity, amount, ratio, confidence):
        opportunity = make_opportunity(trade_amount=amount, profit_ratio=ratio, confidence=confidence)
        evaluation = controller.evaluate(opportunity)

        assert evaluation.approved is True
        final = evaluation.adjusted_amount if evaluation.adjusted_amount is not None else opportunity.trade_amount
        assert Decimal('0') < final <= Decimal('50')

    def test_evaluate_does_not_mutate_state(self, controller, make_opportunity):
        controller.evaluate(make_opportunity())
        assert controller.active_trades == 0
        assert controller.current_exposure == Decimal('0')


class TestApproveAndOpen:
    """Test atomic approve-and-book"""

    def test_books_pending_trade(self, controller, make_opportunity, clock):
        opportunity = make_opportunity()

        evaluation, trade = controller.approve_and_open(opportunity)

        assert evaluation.approved is True
        assert trade.status is TradeStatus.PENDING
        assert trade.strategy == 'triangular'
        assert trade.opportunity_id == opportunity.id
        assert trade.timestamp == clock.now
        assert trade.id.startswith('trade-')
        assert controller.active_trades == 1
        assert controller.current_exposure == Decimal('0.1')

    def test_rejection_books_nothing(self, controller, make_opportunity):
        evaluation, trade = controller.approve_and_open(make_opportunity(profit_ratio='0.01'))

        assert evaluation.approved is False
        assert trade is None
        assert controller.active_trades == 0
        assert controller.get_trade_log() == []

    def test_concurrent_callers_respect_limit(self, controller, make_opportunity):
        opportunities = [make_opportunity(trade_amount='1') for _ in range(10)]
        results = []
        barrier = threading.Barrier(len(opportunities))

        def worker(opportunity):
            barrier.wait()
            results.append(controller.approve_and_open(opportunity))

        threads = [threading.Thread(target=worker, args=(o,)) for o in opportunities]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        approved = [trade for evaluation, trade in results if evaluation.approved]
        assert len(approved) == 3
        assert controller.active_trades == 3


class TestRecordTrade:
    """Test trade lifecycle bookkeeping"""

    def test_pending_then_success(self, controller):
        open_trade(controller, 'a')
        close_trade(controller, 'a', profit='2', cost='0.5')

        assert controller.active_trades == 0
        assert controller.current_exposure == Decimal('0')
        assert controller.daily_pnl == Decimal('1.5')
        assert controller.get_returns() == [Decimal('1.5')]

    def test_counters_floor_at_zero(self, controller):
        close_trade(controller, 'orphan', TradeStatus.FAILED)
        assert controller.active_trades == 0
        assert controller.current_exposure == Decimal('0')

    def test_failed_without_profit_leaves_pnl(self, controller):
        open_trade(controller, 'a')
        close_trade(controller, 'a', TradeStatus.FAILED)
        assert controller.daily_pnl == Decimal('0')
        assert controller.get_returns() == []

    def test_terminal_replaces_pending_in_place(self, controller):
        open_trade(controller, 'a')
        open_trade(controller, 'b')
        close_trade(controller, 'a', profit='1')

        log = controller.get_trade_log()
        assert [t.id for t in log] == ['a', 'b']
        assert log[0].status is TradeStatus.SUCCESS
        assert log[1].status is TradeStatus.PENDING

    def test_duplicate_transitions_ignored(self, controller):
        open_trade(controller, 'a')
        open_trade(controller, 'a')
        assert controller.active_trades == 1

        close_trade(controller, 'a', profit='1')
        close_trade(controller, 'a', TradeStatus.FAILED, profit='-5')
        assert controller.daily_pnl == Decimal('1')
        assert controller.get_trade_log()[0].status is TradeStatus.SUCCESS

    def test_returns_history_trimmed(self, controller):
        for i in range(1001):
            close_trade(controller, f't{i}', profit='0.01')
        assert len(controller.get_returns()) == 500


class TestMetrics:
    """Test derived risk metrics"""

    def test_win_rate_counts_all_entries(self, controller):
        close_trade(controller, 'a', profit='1')
        close_trade(controller, 'b', profit='1')
        close_trade(controller, 'c', TradeStatus.FAILED)
        open_trade(controller, 'd')

        assert controller.get_risk_metrics().win_rate == pytest.approx(0.5)

    def test_max_drawdown(self, controller):
        for i, profit in enumerate(['5', '-3', '-4', '2']):
            close_trade(controller, f't{i}', profit=profit)
        assert controller.get_risk_metrics().max_drawdown == Decimal('7')

    def test_sharpe_ratio(self, controller):
        close_trade(controller, 'a', profit='1')
        close_trade(controller, 'b', profit='3')
        assert controller.get_risk_metrics().sharpe_ratio == pytest.approx(2.0)

    def test_metrics_are_read_only(self, controller):
        close_trade(controller, 'a', profit='1')
        assert controller.get_risk_metrics() == controller.get_risk_metrics()

    def test_empty_metrics(self, controller):
        metrics = controller.get_risk_metrics()
        assert metrics.win_rate == 0.0
        assert metrics.sharpe_ratio == 0.0
        assert metrics.max_drawdown == Decimal('0')
        assert metrics.current_risk is RiskLevel.LOW

    @pytest.mark.parametrize('loss,level', [
        ('-40', RiskLevel.LOW),
        ('-60', RiskLevel.MEDIUM),
        ('-81', RiskLevel.HIGH),
    ])
    def test_risk_level_from_daily_loss(self, controller, loss, level):
        close_trade(controller, 'a', TradeStatus.FAILED, profit=loss)
        assert controller.get_risk_metrics().current_risk is level

    def test_risk_level_from_exposure(self, risk_limits, clock):
        controller = RiskController(risk_limits, policy=RiskPolicy(exposure_unit_per_trade=Decimal('30')), clock=clock)
        open_trade(controller, 'a')
        assert controller.get_risk_metrics().current_risk is RiskLevel.MEDIUM
        open_trade(controller, 'b')
        assert controller.get_risk_metrics().current_risk is RiskLevel.HIGH


class TestEmergencyShutdown:
    """Test global halt triggers"""

    def test_no_trigger_when_idle(self, controller):
        assert controller.should_emergency_shutdown() is False
        assert controller.last_shutdown_reason is None

    def test_daily_loss_beyond_limit(self, controller):
        """daily P&L = -max_daily_loss - 1"""
        close_trade(controller, 'a', TradeStatus.FAILED, profit='-101')
        assert controller.should_emergency_shutdown() is True
        assert controller.last_shutdown_reason.startswith("Daily loss")

    def test_high_risk_with_negative_pnl(self, controller):
        close_trade(controller, 'a', TradeStatus.FAILED, profit='-85')
        assert controller.should_emergency_shutdown() is True
        assert controller.last_shutdown_reason.startswith("High risk")

    def test_low_win_rate_with_losses(self, controller):
        close_trade(controller, 'a', TradeStatus.FAILED, profit='-1')
        close_trade(controller, 'b', TradeStatus.FAILED, profit='-1')
        assert controller.should_emergency_shutdown() is True
        assert controller.last_shutdown_reason.startswith("Win rate")

    def test_drawdown_beyond_half_daily_limit(self, controller):
        close_trade(controller, 'a', profit='60')
        close_trade(controller, 'b', TradeStatus.FAILED, profit='-55')
        assert controller.daily_pnl == Decimal('5')
        assert controller.should_emergency_shutdown() is True
        assert controller.last_shutdown_reason.startswith("Max drawdown")

    def test_small_loss_with_wins_is_fine(self, controller):
        close_trade(controller, 'a', profit='1')
        close_trade(controller, 'b', TradeStatus.FAILED, profit='-2')
        assert controller.should_emergency_shutdown() is False


class TestDailyReset:
    """Test UTC midnight rollover"""

    def test_next_utc_midnight(self):
        assert next_utc_midnight(1767268800.0) == 1767312000.0
        assert next_utc_midnight(1767312000.0) == 1767312000.0 + DAY

    def test_rollover_resets_pnl(self, controller, clock, make_opportunity):
        close_trade(controller, 'a', TradeStatus.FAILED, profit='-101')
        assert controller.evaluate(make_opportunity()).reason == "Daily loss limit exceeded"

        clock.advance(12 * 3600 + 1)

        assert controller.evaluate(make_opportunity()).approved is True
        assert controller.daily_pnl == Decimal('0')

    def test_reset_prunes_old_logs(self, controller, clock):
        close_trade(controller, 'old', profit='1', timestamp=clock.now - 8 * DAY)
        close_trade(controller, 'recent', profit='1', timestamp=clock.now - DAY)
        close_trade(controller, 'a', TradeStatus.FAILED, profit='-101')
        assert controller.should_emergency_shutdown() is True

        controller.reset_daily()

        assert [t.id for t in controller.get_trade_log()] == ['recent', 'a']
        assert controller.last_shutdown_reason is None
        assert controller.daily_pnl == Decimal('0')


class TestOperatorControls:
    """Test limit updates, summary and history"""

    def test_update_risk_limits(self, controller):
        limits = controller.update_risk_limits(max_position_size='80', max_concurrent_trades=5)
        assert limits.max_position_size == Decimal('80')
        assert limits.max_concurrent_trades == 5
        assert controller.limits.max_daily_loss == Decimal('100')

    @pytest.mark.parametrize('changes', [
        {'max_leverage': 2},
        {'max_daily_loss': '-5'},
        {'max_slippage': 0},
        {'max_concurrent_trades': 0},
        {'max_concurrent_trades': 2.5},
    ])
    def test_update_risk_limits_rejects_invalid(self, controller, changes):
        with pytest.raises(DataValidationError):
            controller.update_risk_limits(**changes)
        assert controller.limits.max_position_size == Decimal('50')

    def test_summary_recommends_pausing(self, controller):
        close_trade(controller, 'a', TradeStatus.FAILED, profit='-75')

        summary = controller.get_risk_summary()

        assert summary['current_risk'] == 'medium'
        assert summary['daily_loss_utilization'] == pytest.approx(0.75)
        assert "Approaching daily loss limit - consider pausing trading" in summary['recommendations']

    def test_performance_history(self, controller, clock):
        close_trade(controller, 'a', profit='5', cost='1', timestamp=clock.now - DAY)
        close_trade(controller, 'b', profit='2')
        close_trade(controller, 'c', profit='9', timestamp=clock.now - 10 * DAY)

        history = controller.get_performance_history(days=7)

        assert history['daily_pnl'] == [
            {'date': '2025-12-31', 'pnl': Decimal('4')},
            {'date': '2026-01-01', 'pnl': Decimal('2')},
        ]
        assert history['cumulative_return'] == Decimal('6')
        assert history['volatility'] == Decimal('1')
        assert history['max_drawdown'] == Decimal('0')
