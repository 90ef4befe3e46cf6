import math

import pytest

from conftest import make_states
from models import CatalogState, GachaCatalog, ItemDefinition, RarityState, RarityTier
from pool_builder import (
    build_gacha_pools,
    build_item_inventory_count_map,
    format_item_rate_with_precision,
    infer_rarity_fraction_digits,
    resolve_remaining_stock,
    split_item_rates,
)


def test_basic_pool(basic_pool):
    rates = {item.item_id: item.item_rate for item in basic_pool.items}
    assert rates['common1'] == pytest.approx(0.4)
    assert rates['common2'] == pytest.approx(0.4)
    assert rates['rare'] == pytest.approx(0.2)
    assert math.fsum(rates.values()) == pytest.approx(1.0)

    assert list(basic_pool.rarity_groups) == ['common', 'rare']
    common = basic_pool.rarity_groups['common']
    assert common.item_count == 2
    assert common.total_weight == pytest.approx(0.8)
    assert common.emit_rate == pytest.approx(0.8)
    assert [item.item_rate_display for item in basic_pool.items] == ['40%', '40%', '20%']


@pytest.mark.parametrize('rate, digits, expected', [
    (0.002, None, '0.2'),
    (0.00002, None, '0.002'),
    (0.0001 / 3, 6, '0.0033...'),
    (0.000000125, None, '0.0000125'),
    (0.04949, 2, '4.949'),
    (0.74235 / 13, None, '5.7103846154'),
    (0.002, 3, '0.200'),
    (0.05, 2, '5.00'),
])
def test_format_item_rate_with_precision(rate, digits, expected):
    assert format_item_rate_with_precision(rate, digits) == expected


def test_item_display_uses_rarity_precision():
    tiers = [
        RarityTier('common', 'Common', sort_order=0),
        RarityTier('rare', 'Rare', emit_rate=0.025, sort_order=1),
    ]
    items = [
        ItemDefinition('c1', 'C1', 'common'),
        ItemDefinition('r1', 'R1', 'rare'),
        ItemDefinition('r2', 'R2', 'rare'),
        ItemDefinition('r3', 'R3', 'rare'),
        ItemDefinition('r4', 'R4', 'rare'),
        ItemDefinition('r5', 'R5', 'rare'),
    ]
    catalog_state, rarity_state = make_states(tiers, items)
    digits = infer_rarity_fraction_digits(rarity_state)
    assert digits == {'common': 1, 'rare': 1}

    pool = build_gacha_pools(catalog_state, rarity_state, rarity_fraction_digits=digits).pools_by_gacha_id['g1']
    displays = {item.item_id: item.item_rate_display for item in pool.items}
    assert displays['c1'] == '97.5%'
    assert displays['r1'] == '0.5%'


def test_item_rate_override():
    tiers = [
        RarityTier('common', 'Common', sort_order=0),
        RarityTier('rare', 'Rare', emit_rate=0.2, sort_order=1),
    ]
    items = [
        ItemDefinition('c1', 'C1', 'common'),
        ItemDefinition('r1', 'R1', 'rare', item_rate=0.15),
        ItemDefinition('r2', 'R2', 'rare'),
        ItemDefinition('r3', 'R3', 'rare'),
    ]
    pool = build_gacha_pools(*make_states(tiers, items)).pools_by_gacha_id['g1']
    by_id = {item.item_id: item for item in pool.items}

    assert by_id['r1'].item_rate == pytest.approx(0.15)
    assert by_id['r1'].rate_override
    assert by_id['r2'].item_rate == pytest.approx(0.025)
    assert by_id['r3'].item_rate == pytest.approx(0.025)
    assert not by_id['r2'].rate_override
    assert by_id['r2'].item_rate_display == '2.5%'
    assert pool.rarity_groups['rare'].total_weight == pytest.approx(0.2)


def test_override_exceeding_tier_rate_warns():
    rates, warning = split_item_rates(0.1, [
        ItemDefinition('a', 'A', 'r', item_rate=0.08),
        ItemDefinition('b', 'B', 'r', item_rate=0.05),
        ItemDefinition('c', 'C', 'r'),
    ], 1e-9)
    assert warning is not None
    assert rates['c'] == 0.0
    assert rates['a'] == pytest.approx(0.08)


def test_split_without_tier_rate():
    rates, warning = split_item_rates(None, [ItemDefinition('a', 'A', 'r')], 1e-9)
    assert rates == {'a': 0.0}
    assert warning is None


def test_missing_rarity_rate_moves_to_auto_adjust():
    tiers = [
        RarityTier('common', 'Common', sort_order=0),
        RarityTier('rare', 'Rare', emit_rate=0.2, sort_order=1),
        RarityTier('ssr', 'SSR', emit_rate=0.05, sort_order=2),
    ]
    items = [
        ItemDefinition('c1', 'C1', 'common'),
        ItemDefinition('r1', 'R1', 'rare'),
    ]
    result = build_gacha_pools(*make_states(tiers, items))
    redistribution = result.rate_redistributions_by_gacha_id['g1']

    assert redistribution.target_rarity_id == 'common'
    assert redistribution.source_rarity_ids == ('ssr',)
    assert redistribution.total_missing_rate == pytest.approx(0.05)
    assert redistribution.target_strategy == 'auto-adjust'

    pool = result.pools_by_gacha_id['g1']
    assert pool.rarity_groups['common'].emit_rate == pytest.approx(0.8)
    assert 'ssr' not in pool.rarity_groups
    assert math.fsum(item.item_rate for item in pool.items) == pytest.approx(1.0)


def test_missing_rarity_rate_moves_to_highest_when_auto_is_empty():
    tiers = [
        RarityTier('miss', 'Miss', sort_order=0),
        RarityTier('n', 'N', emit_rate=0.3, sort_order=1),
        RarityTier('r', 'R', emit_rate=0.1, sort_order=2),
    ]
    items = [
        ItemDefinition('n1', 'N1', 'n'),
        ItemDefinition('r1', 'R1', 'r'),
    ]
    result = build_gacha_pools(*make_states(tiers, items))
    redistribution = result.rate_redistributions_by_gacha_id['g1']

    assert redistribution.target_rarity_id == 'n'
    assert redistribution.target_strategy == 'next-highest'
    assert redistribution.total_missing_rate == pytest.approx(0.6)
    pool = result.pools_by_gacha_id['g1']
    assert {item.item_id: item.item_rate for item in pool.items} == pytest.approx({'n1': 0.9, 'r1': 0.1})


def test_empty_gacha_gives_empty_pool():
    catalog_state = CatalogState(by_gacha={'empty': GachaCatalog()})
    result = build_gacha_pools(catalog_state, RarityState())
    pool = result.pools_by_gacha_id['empty']
    assert pool.items == ()
    assert pool.rarity_groups == {}
    assert result.warnings == ()


def test_no_catalog():
    result = build_gacha_pools(None, None)
    assert result.pools_by_gacha_id == {}


def test_unknown_rarity_warns():
    tiers = [RarityTier('common', 'Common', emit_rate=1.0, sort_order=0)]
    items = [
        ItemDefinition('c1', 'C1', 'common'),
        ItemDefinition('x1', 'X1', 'ghost'),
    ]
    result = build_gacha_pools(*make_states(tiers, items))
    assert any('ghost' in warning for warning in result.warnings)
    by_id = {item.item_id: item for item in result.pools_by_gacha_id['g1'].items}
    assert by_id['x1'].item_rate == 0.0
    assert by_id['c1'].item_rate == pytest.approx(1.0)


def test_inventory_count_map():
    counts = build_item_inventory_count_map({
        'a': [{'count': 2}, {'count': 1}],
        'b': [],
        'c': [{'count': -3}],
    })
    assert counts == {'a': 3}
    assert build_item_inventory_count_map(None) == {}


def test_resolve_remaining_stock():
    assert resolve_remaining_stock('a', None, {'a': 5}) is None
    assert resolve_remaining_stock('a', 3, {'a': 1}) == 2
    assert resolve_remaining_stock('a', 3, {'a': 7}) == 0
    assert resolve_remaining_stock('a', 3) == 3


def test_out_of_stock_items_are_excluded():
    tiers = [
        RarityTier('common', 'Common', sort_order=0),
        RarityTier('rare', 'Rare', emit_rate=0.2, sort_order=1),
    ]
    items = [
        ItemDefinition('c1', 'C1', 'common'),
        ItemDefinition('r1', 'R1', 'rare', stock_count=2),
        ItemDefinition('r2', 'R2', 'rare', stock_count=5),
    ]
    states = make_states(tiers, items)
    inventory = {'r1': 2, 'r2': 1}

    pool = build_gacha_pools(*states, inventory_counts=inventory).pools_by_gacha_id['g1']
    by_id = {item.item_id: item for item in pool.items}
    assert 'r1' not in by_id
    assert by_id['r2'].remaining_stock == 4
    assert by_id['r2'].item_rate == pytest.approx(0.2)
    assert by_id['c1'].remaining_stock is None

    pool = build_gacha_pools(*states, inventory_counts=inventory,
                             include_out_of_stock_items=True).pools_by_gacha_id['g1']
    by_id = {item.item_id: item for item in pool.items}
    assert by_id['r1'].remaining_stock == 0
