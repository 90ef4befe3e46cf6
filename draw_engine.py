"""
核心抽卡执行器

按计划的抽数逐抽加权随机抽取，之后以后处理的方式套用保底规则：
把抽取序列按保底间隔切成窗口，窗口内不满足保底时，用保底对象替换其中稀有度最低的结果。
替换不会改变总抽数。

随机数由调用方注入（返回 [0, 1) 浮点数的函数），引擎不使用全局随机源。
"""
import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from config import DEFAULT_CONFIG, EngineConfig
from models import (
    DrawInstance,
    ExecutedPullItem,
    ExecutionResult,
    GachaItemDefinition,
    GachaPoolDefinition,
    NormalizedGuarantee,
    RarityTally,
)
from point_plan import calculate_draw_plan
from rarity_rate import is_finite_number

logger = logging.getLogger(__name__)

RandomSource = Callable[[], float]

ROLL_CEILING = 0.9999999999


def create_rng(seed: Optional[int] = None) -> RandomSource:
    """基于 numpy Generator 的可复现随机源"""
    generator = np.random.default_rng(seed)

    def next_uniform() -> float:
        return float(generator.random())

    return next_uniform


@dataclass(frozen=True)
class WeightedDistribution:
    items: Tuple[GachaItemDefinition, ...]
    cumulative: np.ndarray
    total: float


def _weight_of(item: GachaItemDefinition) -> float:
    rate = item.item_rate
    if is_finite_number(rate) and rate > 0:
        return float(rate)
    return 0.0


def build_weighted_distribution(items: Sequence[GachaItemDefinition],
                                stock: Optional[Dict[str, int]] = None) -> WeightedDistribution:
    """只保留权重为正且仍有库存的奖品"""
    drawable = tuple(
        item for item in items
        if _weight_of(item) > 0 and (stock is None or stock.get(item.item_id, 1) > 0)
    )
    weights = np.array([_weight_of(item) for item in drawable], dtype=float)
    cumulative = np.cumsum(weights)
    total = float(cumulative[-1]) if len(cumulative) else 0.0
    return WeightedDistribution(drawable, cumulative, total)


def pick_weighted(distribution: WeightedDistribution, rng: RandomSource) -> Optional[GachaItemDefinition]:
    """累积分布抽样"""
    if not distribution.items or distribution.total <= 0:
        return None
    roll = min(max(rng(), 0.0), ROLL_CEILING) * distribution.total
    index = int(np.searchsorted(distribution.cumulative, roll, side='right'))
    return distribution.items[min(index, len(distribution.items) - 1)]


def build_stock_map(pool: GachaPoolDefinition) -> Dict[str, int]:
    return {
        item.item_id: max(0, int(item.remaining_stock))
        for item in pool.items
        if item.remaining_stock is not None
    }


def rarity_ranks(pool: GachaPoolDefinition) -> Dict[str, int]:
    """
    稀有度排名：0 为最稀有（排出率最低），未设置排出率的排在最后
    排出率相同时 sort_order 大的更稀有
    """
    def rank_key(group):
        rate = group.emit_rate if is_finite_number(group.emit_rate) else math.inf
        return (rate, -group.sort_order, group.rarity_id)

    ordered = sorted(pool.rarity_groups.values(), key=rank_key)
    return {group.rarity_id: index for index, group in enumerate(ordered)}


def perform_random_draws(pool: GachaPoolDefinition, count: int, rng: RandomSource,
                         stock: Dict[str, int]) -> Tuple[List[DrawInstance], List[str]]:
    """
    逐抽加权随机抽取
    stock 会被就地扣减（调用方传入自己的副本）
    """
    draws: List[DrawInstance] = []
    warnings: List[str] = []
    distribution = build_weighted_distribution(pool.items, stock)

    for _ in range(count):
        item = pick_weighted(distribution, rng)
        if item is None:
            warnings.append('库存不足，部分抽取未能执行')
            break
        draws.append(DrawInstance(item.item_id, item.rarity_id))
        if item.item_id in stock:
            stock[item.item_id] -= 1
            if stock[item.item_id] <= 0:
                distribution = build_weighted_distribution(pool.items, stock)

    return draws, warnings


def _release_stock(stock: Dict[str, int], item_id: str) -> None:
    if item_id in stock:
        stock[item_id] += 1


def _take_stock(stock: Dict[str, int], item_id: str) -> None:
    if item_id in stock:
        stock[item_id] = max(0, stock[item_id] - 1)


def apply_guarantees(draws: Sequence[DrawInstance],
                     pool: GachaPoolDefinition,
                     guarantees: Sequence[NormalizedGuarantee],
                     rng: RandomSource,
                     stock: Dict[str, int]) -> Tuple[List[DrawInstance], List[str]]:
    """
    保底后处理
    返回: (替换后的抽取序列, 警告)

    每个保底按间隔切窗口（只处理完整窗口）。窗口内满足条件的结果不足 quantity 时，
    按稀有度从低到高、同稀有度从后往前替换；已由之前的保底放入的结果不会被替换。
    稀有度保底：结果的稀有度不低于指定稀有度即视为满足。
    """
    result = list(draws)
    warnings: List[str] = []
    if not guarantees or not result:
        return result, warnings

    items_by_id = {item.item_id: item for item in pool.items}
    ranks = rarity_ranks(pool)
    lowest_rank = len(ranks)

    def rank_of(draw: DrawInstance) -> int:
        return ranks.get(draw.rarity_id, lowest_rank)

    for guarantee in guarantees:
        label = guarantee.id or guarantee.rarity_id

        if guarantee.target_type == 'item':
            target_item = items_by_id.get(guarantee.item_id)
            if target_item is None:
                warnings.append(f'保底设置「{label}」的对象奖品不在卡池中')
                continue
            if target_item.rarity_id != guarantee.rarity_id:
                warnings.append(f'保底设置「{label}」的对象奖品与指定稀有度不一致')
                continue
            if _weight_of(target_item) <= 0:
                warnings.append(f'保底设置「{label}」的对象奖品排出率为0，无法保底')
                continue

            def satisfies(draw: DrawInstance, item_id=target_item.item_id) -> bool:
                return draw.item_id == item_id

            def pick(item=target_item) -> Optional[GachaItemDefinition]:
                return item if stock.get(item.item_id, 1) > 0 else None
        else:
            group = pool.rarity_groups.get(guarantee.rarity_id)
            if group is None or build_weighted_distribution(group.items).total <= 0:
                warnings.append(f'保底设置「{label}」的稀有度在卡池中没有可抽取的奖品，无法保底')
                continue
            target_rank = ranks[guarantee.rarity_id]

            def satisfies(draw: DrawInstance, target_rank=target_rank) -> bool:
                return rank_of(draw) <= target_rank

            def pick(group=group) -> Optional[GachaItemDefinition]:
                return pick_weighted(build_weighted_distribution(group.items, stock), rng)

        threshold = guarantee.threshold
        short_windows = 0
        for start in range(0, len(result) - threshold + 1, threshold):
            window = range(start, start + threshold)
            satisfied = sum(1 for index in window if satisfies(result[index]))
            missing = guarantee.quantity - satisfied
            if missing <= 0:
                continue

            candidates = [
                index for index in window
                if not satisfies(result[index]) and not result[index].was_guaranteed
            ]
            candidates.sort(key=lambda index: (-rank_of(result[index]), -index))

            for index in candidates[:missing]:
                replacement = pick()
                if replacement is None:
                    break
                _release_stock(stock, result[index].item_id)
                _take_stock(stock, replacement.item_id)
                logger.debug('guarantee %s: pull %s %s -> %s', label, index + 1,
                             result[index].item_id, replacement.item_id)
                result[index] = DrawInstance(replacement.item_id, replacement.rarity_id, was_guaranteed=True)
                missing -= 1

            if missing > 0:
                short_windows += 1

        if short_windows:
            warnings.append(f'保底设置「{label}」有{short_windows}个区间未能完全保底')

    return result, warnings


def aggregate_draws(draws: Sequence[DrawInstance], pool: GachaPoolDefinition) -> Tuple[ExecutedPullItem, ...]:
    """按奖品汇总，次数多的在前，同次数按名称"""
    items_by_id = {item.item_id: item for item in pool.items}
    counts: Dict[str, List[int]] = {}
    for draw in draws:
        entry = counts.setdefault(draw.item_id, [0, 0])
        entry[0] += 1
        if draw.was_guaranteed:
            entry[1] += 1

    aggregated = []
    for item_id, (count, guaranteed_count) in counts.items():
        item = items_by_id.get(item_id)
        if item is None:
            continue
        aggregated.append(ExecutedPullItem(
            item_id=item.item_id,
            rarity_id=item.rarity_id,
            name=item.name,
            rarity_label=item.rarity_label,
            rarity_color=item.rarity_color,
            count=count,
            guaranteed_count=guaranteed_count,
        ))
    aggregated.sort(key=lambda entry: (-entry.count, entry.name))
    return tuple(aggregated)


def execute_gacha(pool: GachaPoolDefinition, settings, points,
                  rng: Optional[RandomSource] = None,
                  config: EngineConfig = DEFAULT_CONFIG) -> ExecutionResult:
    """
    执行抽卡
    计划失败时原样返回计划的错误，不产生部分结果。
    """
    if rng is None:
        rng = create_rng(config.seed)

    plan = calculate_draw_plan(points, settings, len(pool.items), config)
    warnings = list(plan.warnings)
    errors = list(plan.errors)

    def failed() -> ExecutionResult:
        return ExecutionResult(
            items=(),
            points_spent=0,
            points_remainder=plan.points_remainder,
            total_pulls=0,
            warnings=tuple(warnings),
            errors=tuple(errors),
            plan=plan,
        )

    if errors or plan.total_pulls <= 0:
        return failed()

    if build_weighted_distribution(pool.items).total <= 0:
        errors.append('卡池中所有奖品的排出率均为0，无法抽取')
        return failed()

    stock = build_stock_map(pool)
    draws, draw_warnings = perform_random_draws(pool, plan.total_pulls, rng, stock)
    warnings.extend(draw_warnings)

    draws, guarantee_warnings = apply_guarantees(draws, pool, plan.normalized_settings.guarantees, rng, stock)
    warnings.extend(guarantee_warnings)

    guaranteed = sum(1 for draw in draws if draw.was_guaranteed)
    logger.debug('%s: executed %s pulls (%s guaranteed)', pool.gacha_id, len(draws), guaranteed)

    return ExecutionResult(
        items=aggregate_draws(draws, pool),
        points_spent=plan.points_spent,
        points_remainder=plan.points_remainder,
        total_pulls=len(draws),
        warnings=tuple(warnings),
        errors=tuple(errors),
        plan=plan,
        draws=tuple(draws),
    )


def summarize_by_rarity(result: ExecutionResult, pool: GachaPoolDefinition) -> List[RarityTally]:
    """按稀有度汇总抽取结果（顺序与卡池的稀有度顺序一致）"""
    tallies: Dict[str, RarityTally] = {
        rarity_id: RarityTally(rarity_id=rarity_id, label=group.label)
        for rarity_id, group in pool.rarity_groups.items()
    }
    for entry in result.items:
        tally = tallies.setdefault(entry.rarity_id, RarityTally(rarity_id=entry.rarity_id, label=entry.rarity_label))
        tally.count += entry.count
        tally.guaranteed_count += entry.guaranteed_count
        tally.item_ids.append(entry.item_id)
    return list(tallies.values())
