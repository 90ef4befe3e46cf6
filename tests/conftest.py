import os

# 测试中不弹出窗口
os.environ.setdefault('MPLBACKEND', 'Agg')

import pytest

from models import CatalogState, GachaCatalog, ItemDefinition, RarityState, RarityTier
from pool_builder import build_gacha_pools


def make_states(tiers, items, gacha_id='g1'):
    """由稀有度列表和奖品列表组装单个卡池的快照"""
    catalog = GachaCatalog(order=tuple(item.item_id for item in items), items={item.item_id: item for item in items})
    catalog_state = CatalogState(by_gacha={gacha_id: catalog})
    rarity_state = RarityState(by_gacha={gacha_id: tuple(tier.id for tier in tiers)},
                               entities={tier.id: tier for tier in tiers})
    return catalog_state, rarity_state


@pytest.fixture
def basic_pool():
    """common 80%（自动补足） / rare 20%，common 两件、rare 一件"""
    tiers = [
        RarityTier('common', 'Common', '#2CA02C', None, sort_order=0),
        RarityTier('rare', 'Rare', '#D62728', 0.2, sort_order=1),
    ]
    items = [
        ItemDefinition('common1', 'Common 1', 'common'),
        ItemDefinition('common2', 'Common 2', 'common'),
        ItemDefinition('rare', 'Rare 1', 'rare'),
    ]
    catalog_state, rarity_state = make_states(tiers, items)
    return build_gacha_pools(catalog_state, rarity_state).pools_by_gacha_id['g1']


@pytest.fixture
def scripted_rng():
    """按顺序返回给定数值的随机源"""
    def factory(values):
        iterator = iter(values)

        def next_uniform():
            return next(iterator)

        return next_uniform

    return factory
