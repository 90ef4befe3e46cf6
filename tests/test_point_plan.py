import pytest

from config import EngineConfig
from models import BundlePrice, GuaranteeRule, PerPullPrice, PtSetting
from point_plan import (
    calculate_draw_plan,
    calculate_points_for_pulls,
    format_points,
    normalize_pt_setting,
)

PER_PULL_ONLY = {'perPull': {'price': 10, 'pulls': 1}}
WITH_BUNDLE = {
    'perPull': {'price': 10, 'pulls': 1},
    'bundles': [{'id': 'eleven', 'price': 100, 'pulls': 11}],
}


def test_per_pull_with_leftover():
    plan = calculate_draw_plan(105, PER_PULL_ONLY, 3)
    assert plan.errors == ()
    assert plan.total_pulls == 10
    assert plan.points_spent == 100
    assert plan.points_remainder == 5
    assert '剩余5pt无法使用' in plan.warnings
    assert plan.per_pull_purchase.times == 10


def test_bundles_are_bought_first():
    plan = calculate_draw_plan(250, WITH_BUNDLE, 3)
    assert plan.total_pulls == 27
    assert plan.points_spent == 250
    assert plan.points_remainder == 0
    assert len(plan.bundle_applications) == 1
    bundle = plan.bundle_applications[0]
    assert (bundle.bundle_id, bundle.times, bundle.total_pulls) == ('eleven', 2, 22)
    assert plan.per_pull_purchase.total_pulls == 5


def test_dataclass_settings():
    settings = PtSetting(per_pull=PerPullPrice(10), bundles=(BundlePrice('eleven', 100, 11),))
    plan = calculate_draw_plan(250, settings, 3)
    assert plan.total_pulls == 27


def test_plan_is_monotone_and_conserves_points():
    previous = 0
    for points in range(0, 400, 7):
        plan = calculate_draw_plan(points, WITH_BUNDLE, 3)
        assert plan.points_spent <= points
        assert plan.points_spent + plan.points_remainder == pytest.approx(points)
        assert plan.total_pulls >= previous
        previous = plan.total_pulls


def test_no_items():
    plan = calculate_draw_plan(100, PER_PULL_ONLY, 0)
    assert plan.total_pulls == 0
    assert '卡池中没有奖品，无法抽取' in plan.errors


@pytest.mark.parametrize('points', [-1, float('nan'), 'abc', None])
def test_invalid_points(points):
    plan = calculate_draw_plan(points, PER_PULL_ONLY, 3)
    assert plan.errors == ('pt的输入值无效',)
    assert plan.total_pulls == 0


def test_budget_below_cheapest_unit():
    plan = calculate_draw_plan(5, PER_PULL_ONLY, 3)
    assert plan.total_pulls == 0
    assert plan.errors == ('pt不足，最便宜的购买方式需要10pt',)


def test_default_per_pull_when_nothing_configured():
    plan = calculate_draw_plan(3, {}, 3)
    assert plan.total_pulls == 3
    assert plan.normalized_settings.default_applied
    assert any('1pt = 1抽' in warning for warning in plan.warnings)


def test_default_per_pull_can_be_disabled():
    plan = calculate_draw_plan(3, {}, 3, EngineConfig(default_per_pull=None))
    assert plan.total_pulls == 0
    assert plan.errors == ('购买设置不足，无法消费pt',)


def test_complete_price_is_advisory():
    settings = dict(PER_PULL_ONLY, complete={'price': 100})
    plan = calculate_draw_plan(100, settings, 3)
    assert plan.complete_available
    assert plan.total_pulls == 10
    assert any('全套' in warning for warning in plan.warnings)

    assert not calculate_draw_plan(99, settings, 3).complete_available


def test_legacy_complete_key():
    normalized, _ = normalize_pt_setting(dict(PER_PULL_ONLY, complate={'price': 500}))
    assert normalized.complete.price == 500


def test_invalid_bundle_is_dropped():
    normalized, warnings = normalize_pt_setting({
        'perPull': {'price': 10},
        'bundles': [
            {'id': 'broken', 'price': 0, 'pulls': 10},
            {'id': 'cheap', 'price': 80, 'pulls': 10},
            {'id': 'big', 'price': 160, 'pulls': 20},
        ],
    })
    assert [bundle.id for bundle in normalized.bundles] == ['big', 'cheap']
    assert any('broken' in warning for warning in warnings)
    assert normalized.per_pull.pulls == 1


def test_guarantee_normalization():
    normalized, warnings = normalize_pt_setting({
        'perPull': {'price': 10},
        'guarantees': [
            {'id': 'late', 'rarityId': 'sr', 'threshold': 50},
            {'id': 'early', 'rarityId': 'r', 'threshold': 10, 'quantity': 20},
            {'id': 'broken', 'threshold': 10},
            {'id': 'item', 'rarityId': 'ur', 'threshold': 100, 'target': {'type': 'item', 'itemId': 'figure'}},
        ],
    })
    guarantees = normalized.guarantees
    assert [g.id for g in guarantees] == ['early', 'late', 'item']
    assert guarantees[0].quantity == 10
    assert guarantees[2].target_type == 'item'
    assert guarantees[2].item_id == 'figure'
    assert any('broken' in warning for warning in warnings)


def test_guarantee_rule_dataclass():
    settings = PtSetting(per_pull=PerPullPrice(10), guarantees=(GuaranteeRule('g', 'sr', 10),))
    normalized, warnings = normalize_pt_setting(settings)
    assert warnings == []
    assert normalized.guarantees[0].target_type == 'rarity'
    assert normalized.guarantees[0].quantity == 1


def test_points_for_pulls():
    result = calculate_points_for_pulls(27, WITH_BUNDLE, 3)
    assert result.errors == ()
    assert result.points == 250
    assert result.plan.total_pulls >= 27
    assert calculate_draw_plan(result.points - 10, WITH_BUNDLE, 3).total_pulls < 27

    simple = calculate_points_for_pulls(10, PER_PULL_ONLY, 3)
    assert simple.points == 100
    assert simple.iterations == 1


def test_points_for_pulls_iteration_cap():
    settings = {
        'perPull': {'price': 10, 'pulls': 1},
        'bundles': [{'id': 'hundred', 'price': 100, 'pulls': 100}],
    }
    found = calculate_points_for_pulls(150, settings, 3)
    assert found.points == 200
    assert found.iterations == 6

    capped = calculate_points_for_pulls(150, settings, 3, EngineConfig(plan_inversion_max_iterations=3))
    assert capped.points is None
    assert capped.iterations == 3
    assert capped.errors


def test_points_for_zero_pulls():
    result = calculate_points_for_pulls(0, PER_PULL_ONLY, 3)
    assert result.points == 0


def test_format_points():
    assert format_points(5) == '5'
    assert format_points(5.0) == '5'
    assert format_points(2.5) == '2.5'


def test_points_for_pulls_uses_spent_amount():
    settings = {
        'perPull': {'price': 10, 'pulls': 1},
        'bundles': [{'id': 'pair', 'price': 15, 'pulls': 2}],
    }
    result = calculate_points_for_pulls(2, settings, 3)
    assert result.points == 15
    assert result.plan.total_pulls == 2
    assert result.plan.points_remainder == 0
