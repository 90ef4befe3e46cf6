"""
卡池构建

把目录快照和稀有度快照合并成扁平的加权卡池：每个可抽取的奖品一条，附带稀有度汇总。
"""
import logging
import math
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from config import DEFAULT_CONFIG, EngineConfig
from models import (
    BuildGachaPoolsResult,
    CatalogState,
    GachaItemDefinition,
    GachaPoolDefinition,
    GachaRarityGroup,
    ItemDefinition,
    RarityRateRedistribution,
    RarityState,
    RarityTier,
)
from rarity_rate import (
    ELLIPSIS,
    clamp_rate,
    count_fraction_digits,
    format_rarity_rate,
    get_auto_adjust_rarity_id,
    is_finite_number,
    resolve_emit_rates,
)

logger = logging.getLogger(__name__)


def _to_non_negative_int(value) -> Optional[int]:
    if value is None or not is_finite_number(value):
        return None
    return max(0, math.floor(value))


def build_item_inventory_count_map(by_item_id: Optional[Mapping[str, Iterable]]) -> Dict[str, int]:
    """
    汇总已发放数量
    by_item_id: {item_id: [{'count': n}, ...]}（每个用户一条记录）
    """
    counts: Dict[str, int] = {}
    if not by_item_id:
        return counts

    for item_id, entries in by_item_id.items():
        if not item_id or entries is None:
            continue
        total = 0
        for entry in entries:
            raw = entry.get('count') if isinstance(entry, Mapping) else getattr(entry, 'count', None)
            normalized = _to_non_negative_int(raw)
            if normalized:
                total += normalized
        if total > 0:
            counts[item_id] = total
    return counts


def resolve_remaining_stock(item_id: str, stock_count, inventory_counts: Optional[Mapping[str, int]] = None) -> Optional[int]:
    """剩余库存；未设置库存时返回 None（不限量）"""
    stock = _to_non_negative_int(stock_count)
    if stock is None:
        return None
    used = _to_non_negative_int((inventory_counts or {}).get(item_id)) or 0
    return max(0, stock - used)


def _clamp_fraction_digits(value, upper: int) -> Optional[int]:
    if value is None or not is_finite_number(value):
        return None
    return min(max(int(value), 0), upper)


def format_item_rate_with_precision(rate, fraction_digits=None, config: EngineConfig = DEFAULT_CONFIG) -> str:
    """按稀有度的小数位数补0，不做舍入；循环小数原样返回"""
    formatted = format_rarity_rate(rate, config)
    digits = _clamp_fraction_digits(fraction_digits, config.max_rate_fraction_digits)
    if digits is None or not formatted or formatted.endswith(ELLIPSIS):
        return formatted

    current = count_fraction_digits(formatted)
    if current >= digits:
        return formatted
    if current == 0:
        return f"{formatted}.{'0' * digits}"
    return formatted + '0' * (digits - current)


def _tiers_for_gacha(gacha_id: str, rarity_state: RarityState) -> List[RarityTier]:
    entities = rarity_state.entities
    ids = rarity_state.by_gacha.get(gacha_id)
    if ids:
        return [entities[rarity_id] for rarity_id in ids if rarity_id in entities]
    return [tier for tier in entities.values() if tier.gacha_id == gacha_id]


def infer_rarity_fraction_digits(rarity_state: Optional[RarityState],
                                 config: EngineConfig = DEFAULT_CONFIG) -> Dict[str, int]:
    """每个稀有度排出率显示时的小数位数，用于统一奖品排出率的显示精度"""
    result: Dict[str, int] = {}
    if rarity_state is None:
        return result

    resolved: Dict[str, Optional[float]] = {}
    for gacha_id in rarity_state.by_gacha:
        resolved.update(resolve_emit_rates(_tiers_for_gacha(gacha_id, rarity_state)))

    for rarity_id, tier in rarity_state.entities.items():
        rate = resolved.get(rarity_id, tier.emit_rate)
        formatted = format_rarity_rate(rate, config)
        if formatted:
            result[rarity_id] = count_fraction_digits(formatted)
    return result


def _plan_redistribution(tiers: List[RarityTier],
                         rates: Dict[str, Optional[float]],
                         grouped: Dict[str, List[ItemDefinition]]) -> Optional[RarityRateRedistribution]:
    missing = [tier for tier in tiers if (rates.get(tier.id) or 0) > 0 and not grouped.get(tier.id)]
    if not missing:
        return None

    candidates = [tier for tier in tiers if grouped.get(tier.id)]
    if not candidates:
        return None

    auto_id = get_auto_adjust_rarity_id(tiers)
    if auto_id is not None and grouped.get(auto_id):
        target_id, strategy = auto_id, 'auto-adjust'
    else:
        target = max(candidates, key=lambda tier: ((rates.get(tier.id) or 0), -tier.sort_order))
        target_id, strategy = target.id, 'next-highest'

    return RarityRateRedistribution(
        target_rarity_id=target_id,
        source_rarity_ids=tuple(tier.id for tier in missing),
        total_missing_rate=math.fsum(rates[tier.id] for tier in missing),
        target_strategy=strategy,
    )


def split_item_rates(tier_rate: Optional[float],
                     items: List[ItemDefinition],
                     tolerance: float) -> Tuple[Dict[str, float], Optional[str]]:
    """
    计算同一稀有度内各奖品的排出率
    有单品覆盖的奖品保留覆盖值，剩余的稀有度排出率由其余奖品平分。
    返回: (item_id -> 排出率, 警告)
    """
    overrides = {item.item_id: clamp_rate(item.item_rate) for item in items if item.item_rate is not None}
    shared_items = [item for item in items if item.item_id not in overrides]
    warning = None

    if tier_rate is None:
        rates = {item.item_id: 0.0 for item in shared_items}
        rates.update(overrides)
        return rates, warning

    override_sum = math.fsum(overrides.values())
    if override_sum - tier_rate > tolerance:
        warning = f'单品排出率合计({format_rarity_rate(override_sum)}%)超过稀有度排出率({format_rarity_rate(tier_rate)}%)'
    remaining = max(0.0, tier_rate - override_sum)
    share = remaining / len(shared_items) if shared_items else 0.0

    rates = {item.item_id: share for item in shared_items}
    rates.update(overrides)
    return rates, warning


def build_gacha_pools(catalog_state: Optional[CatalogState],
                      rarity_state: Optional[RarityState],
                      rarity_fraction_digits: Optional[Mapping[str, int]] = None,
                      inventory_counts: Optional[Mapping[str, int]] = None,
                      include_out_of_stock_items: bool = False,
                      config: EngineConfig = DEFAULT_CONFIG) -> BuildGachaPoolsResult:
    """
    为每个卡池构建加权卡池

    没有奖品的卡池返回空卡池；没有奖品的稀有度，其排出率转移给自动补足稀有度
    （它也没有奖品时转给排出率最高的稀有度）。
    """
    pools: Dict[str, GachaPoolDefinition] = {}
    items_by_id: Dict[str, GachaItemDefinition] = {}
    redistributions: Dict[str, RarityRateRedistribution] = {}
    warnings: List[str] = []

    if catalog_state is None:
        return BuildGachaPoolsResult(pools, items_by_id, redistributions)

    rarity_state = rarity_state or RarityState()
    digits_by_rarity = rarity_fraction_digits or {}

    for gacha_id, catalog in catalog_state.by_gacha.items():
        tiers = _tiers_for_gacha(gacha_id, rarity_state)
        known_ids = {tier.id for tier in tiers}

        snapshots: List[ItemDefinition] = []
        remaining_stock: Dict[str, Optional[int]] = {}
        for item_id in catalog.order:
            snapshot = catalog.items.get(item_id)
            if snapshot is None:
                continue
            remaining = resolve_remaining_stock(snapshot.item_id, snapshot.stock_count, inventory_counts)
            if remaining == 0 and not include_out_of_stock_items:
                logger.debug('%s: %s is out of stock', gacha_id, snapshot.item_id)
                continue
            remaining_stock[snapshot.item_id] = remaining
            snapshots.append(snapshot)
            if snapshot.rarity_id not in known_ids and snapshot.rarity_id in rarity_state.entities:
                tiers.append(rarity_state.entities[snapshot.rarity_id])
                known_ids.add(snapshot.rarity_id)

        grouped: Dict[str, List[ItemDefinition]] = {}
        for snapshot in snapshots:
            grouped.setdefault(snapshot.rarity_id, []).append(snapshot)

        rates = resolve_emit_rates(tiers)
        effective_rates = dict(rates)
        redistribution = _plan_redistribution(tiers, rates, grouped)
        if redistribution is not None:
            redistributions[gacha_id] = redistribution
            target = redistribution.target_rarity_id
            effective_rates[target] = clamp_rate((effective_rates.get(target) or 0) + redistribution.total_missing_rate)
            logger.debug('%s: moved %s from %s to %s', gacha_id, redistribution.total_missing_rate,
                         redistribution.source_rarity_ids, target)

        item_rates: Dict[str, float] = {}
        for rarity_id, members in grouped.items():
            if rarity_id not in rarity_state.entities:
                warnings.append(f'卡池「{gacha_id}」的奖品引用了不存在的稀有度「{rarity_id}」')
            elif effective_rates.get(rarity_id) is None:
                warnings.append(f'卡池「{gacha_id}」的稀有度「{rarity_id}」未设置排出率')
            split, warning = split_item_rates(effective_rates.get(rarity_id), members, config.rate_tolerance)
            if warning:
                warnings.append(f'卡池「{gacha_id}」：{warning}')
            item_rates.update(split)

        items: List[GachaItemDefinition] = []
        for snapshot in snapshots:
            tier = rarity_state.entities.get(snapshot.rarity_id)
            item_rate = item_rates.get(snapshot.item_id, 0.0)
            formatted = format_item_rate_with_precision(item_rate, digits_by_rarity.get(snapshot.rarity_id), config)
            item = GachaItemDefinition(
                item_id=snapshot.item_id,
                name=snapshot.name,
                rarity_id=snapshot.rarity_id,
                rarity_label=tier.label if tier else snapshot.rarity_id,
                rarity_color=tier.color if tier else None,
                rarity_emit_rate=effective_rates.get(snapshot.rarity_id),
                item_rate=item_rate,
                item_rate_display=f'{formatted}%' if formatted else '',
                pickup_target=snapshot.pickup_target,
                complete_target=snapshot.complete_target,
                rate_override=snapshot.item_rate is not None,
                stock_count=_to_non_negative_int(snapshot.stock_count),
                remaining_stock=remaining_stock.get(snapshot.item_id),
            )
            items.append(item)
            items_by_id[item.item_id] = item

        tier_order = {tier.id: (tier.sort_order, index) for index, tier in enumerate(tiers)}
        rarity_groups: Dict[str, GachaRarityGroup] = {}
        for rarity_id in sorted(grouped, key=lambda key: tier_order.get(key, (math.inf, 0))):
            tier = rarity_state.entities.get(rarity_id)
            members = tuple(item for item in items if item.rarity_id == rarity_id)
            rarity_groups[rarity_id] = GachaRarityGroup(
                rarity_id=rarity_id,
                label=tier.label if tier else rarity_id,
                color=tier.color if tier else None,
                emit_rate=effective_rates.get(rarity_id),
                sort_order=tier.sort_order if tier else 0,
                item_count=len(members),
                total_weight=math.fsum(item.item_rate for item in members),
                items=members,
            )

        pools[gacha_id] = GachaPoolDefinition(gacha_id=gacha_id, items=tuple(items), rarity_groups=rarity_groups)

    return BuildGachaPoolsResult(pools, items_by_id, redistributions, tuple(warnings))
