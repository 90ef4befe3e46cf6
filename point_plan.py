"""
pt -> 抽数 计算

给定pt预算和价格设置，计算能抽多少次、实际消耗多少pt。
按单价从低到高贪心购买（礼包与单抽一视同仁），剩余pt记为警告。
"""
import logging
import math
from typing import List, Mapping, Optional, Tuple

from config import DEFAULT_CONFIG, EngineConfig
from models import (
    BundleApplication,
    DrawPlan,
    NormalizedBundle,
    NormalizedComplete,
    NormalizedGuarantee,
    NormalizedPerPull,
    NormalizedPtSetting,
    PerPullPurchase,
    PointsForPullsResult,
)
from rarity_rate import is_finite_number

logger = logging.getLogger(__name__)

PER_PULL_UNIT_ID = 'per-pull'


def _read(source, *names, default=None):
    """同时支持 dict（camelCase / snake_case）和 dataclass"""
    if source is None:
        return default
    for name in names:
        if isinstance(source, Mapping):
            if name in source:
                return source[name]
        elif hasattr(source, name):
            return getattr(source, name)
    return default


def to_positive_number(value) -> Optional[float]:
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return None
    if not is_finite_number(value) or value <= 0:
        return None
    return value


def format_points(value) -> str:
    if is_finite_number(value) and float(value).is_integer():
        return str(int(value))
    return f'{value:g}'


def _normalize_guarantee(raw, index: int, warnings: List[str]) -> Optional[NormalizedGuarantee]:
    guarantee_id = _read(raw, 'id') or f'guarantee-{index + 1}'
    rarity_id = _read(raw, 'rarity_id', 'rarityId')
    rarity_id = rarity_id.strip() if isinstance(rarity_id, str) else ''
    threshold = to_positive_number(_read(raw, 'threshold'))
    if not rarity_id or threshold is None or threshold < 1:
        warnings.append(f'保底设置「{guarantee_id}」不完整，已忽略')
        return None
    threshold = math.floor(threshold)

    raw_quantity = _read(raw, 'quantity', default=1)
    quantity = to_positive_number(raw_quantity)
    if quantity is None or quantity < 1:
        warnings.append(f'保底设置「{guarantee_id}」的数量无效，按1处理')
        quantity = 1
    quantity = math.floor(quantity)
    if quantity > threshold:
        warnings.append(f'保底设置「{guarantee_id}」的数量超过间隔抽数，已改为{threshold}')
        quantity = threshold

    target = _read(raw, 'target')
    target_type = _read(target, 'type') if target is not None else _read(raw, 'target_type', 'targetType', default='rarity')
    item_id = _read(target, 'item_id', 'itemId') if target is not None else _read(raw, 'item_id', 'itemId')
    if target_type == 'item' and not item_id:
        warnings.append(f'保底设置「{guarantee_id}」未指定奖品，按稀有度保底处理')
        target_type, item_id = 'rarity', None
    elif target_type not in ('rarity', 'item'):
        warnings.append(f'保底设置「{guarantee_id}」的对象类型无效，按稀有度保底处理')
        target_type, item_id = 'rarity', None
    elif target_type == 'rarity':
        item_id = None

    return NormalizedGuarantee(
        id=guarantee_id,
        rarity_id=rarity_id,
        threshold=threshold,
        quantity=quantity,
        target_type=target_type,
        item_id=item_id,
    )


def normalize_pt_setting(settings, config: EngineConfig = DEFAULT_CONFIG) -> Tuple[NormalizedPtSetting, List[str]]:
    """
    规范化价格设置
    返回: (规范化后的设置, 警告列表)

    - 价格/抽数不为正的项目被丢弃
    - 既没有单抽价格也没有礼包时，使用默认的 1pt = 1抽
    - 礼包按单价升序排列，保底按间隔升序排列
    """
    warnings: List[str] = []

    per_pull = None
    raw_per_pull = _read(settings, 'per_pull', 'perPull')
    if raw_per_pull is not None:
        price = to_positive_number(_read(raw_per_pull, 'price'))
        pulls = to_positive_number(_read(raw_per_pull, 'pulls', default=1))
        if price is None or pulls is None or pulls < 1:
            warnings.append('单抽的价格或抽数无效，已忽略该设置')
        else:
            pulls = math.floor(pulls)
            per_pull = NormalizedPerPull(price=price, pulls=pulls, unit_price=price / pulls)

    complete = None
    # 兼容旧数据里的拼写 complate
    raw_complete = _read(settings, 'complete', 'complate')
    if raw_complete is not None:
        price = to_positive_number(_read(raw_complete, 'price'))
        if price is None:
            warnings.append('全套价格无效，已忽略该设置')
        else:
            complete = NormalizedComplete(price=price)

    bundles: List[NormalizedBundle] = []
    for index, raw in enumerate(_read(settings, 'bundles', default=()) or ()):
        bundle_id = _read(raw, 'id') or f'bundle-{index + 1}'
        price = to_positive_number(_read(raw, 'price'))
        pulls = to_positive_number(_read(raw, 'pulls'))
        if price is None or pulls is None or pulls < 1:
            warnings.append(f'礼包「{bundle_id}」的价格或抽数无效，已排除')
            continue
        pulls = math.floor(pulls)
        bundles.append(NormalizedBundle(id=bundle_id, price=price, pulls=pulls, unit_price=price / pulls))
    bundles.sort(key=lambda bundle: (bundle.unit_price, -bundle.pulls, bundle.price, bundle.id))

    guarantees: List[NormalizedGuarantee] = []
    for index, raw in enumerate(_read(settings, 'guarantees', default=()) or ()):
        guarantee = _normalize_guarantee(raw, index, warnings)
        if guarantee is not None:
            guarantees.append(guarantee)
    guarantees.sort(key=lambda guarantee: (guarantee.threshold, guarantee.id))

    default_applied = False
    if per_pull is None and not bundles and config.default_per_pull is not None:
        price, pulls = config.default_per_pull
        per_pull = NormalizedPerPull(price=price, pulls=pulls, unit_price=price / pulls)
        default_applied = True
        warnings.append(f'未设置购买价格，按 {format_points(price)}pt = {pulls}抽 计算')

    normalized = NormalizedPtSetting(
        per_pull=per_pull,
        complete=complete,
        bundles=tuple(bundles),
        guarantees=tuple(guarantees),
        default_applied=default_applied,
    )
    return normalized, warnings


def purchase_units(normalized: NormalizedPtSetting) -> List[Tuple[str, float, int]]:
    """所有可购买单位 (id, 价格, 抽数)，按单价升序；同单价时抽数多的优先"""
    units = [(bundle.id, bundle.price, bundle.pulls) for bundle in normalized.bundles]
    if normalized.per_pull is not None:
        units.append((PER_PULL_UNIT_ID, normalized.per_pull.price, normalized.per_pull.pulls))
    units.sort(key=lambda unit: (unit[1] / unit[2], -unit[2], unit[1]))
    return units


def _empty_plan(normalized: NormalizedPtSetting, warnings: List[str], errors: List[str], remainder: float = 0) -> DrawPlan:
    return DrawPlan(
        total_pulls=0,
        points_spent=0,
        points_remainder=remainder,
        bundle_applications=(),
        per_pull_purchase=None,
        complete_available=False,
        warnings=tuple(warnings),
        errors=tuple(errors),
        normalized_settings=normalized,
    )


def calculate_draw_plan(points, settings, total_item_types: int,
                        config: EngineConfig = DEFAULT_CONFIG) -> DrawPlan:
    """
    计算pt预算能买到的抽数

    返回的 DrawPlan 满足 points_spent <= points，且 total_pulls 随 points 单调不减。
    全套价格只作为提示（全套购买是独立操作，不算作抽数）。
    """
    normalized, warnings = normalize_pt_setting(settings, config)
    errors: List[str] = []

    if not is_finite_number(points) or points < 0:
        errors.append('pt的输入值无效')
        return _empty_plan(normalized, warnings, errors)

    if not is_finite_number(total_item_types) or total_item_types <= 0:
        errors.append('卡池中没有奖品，无法抽取')
        return _empty_plan(normalized, warnings, errors, remainder=points)

    complete_available = normalized.complete is not None and points >= normalized.complete.price
    if complete_available:
        warnings.append(
            f'当前pt已达到全套价格（{format_points(normalized.complete.price)}pt，共{total_item_types}种奖品），可直接购买全套'
        )

    units = purchase_units(normalized)
    remaining = points
    total_pulls = 0
    applications: List[BundleApplication] = []
    per_pull_purchase = None

    for unit_id, price, pulls in units:
        times = int(remaining // price)
        if times <= 0:
            continue
        used = price * times
        gained = pulls * times
        remaining -= used
        total_pulls += gained
        if unit_id == PER_PULL_UNIT_ID:
            per_pull_purchase = PerPullPurchase(price=price, pulls=pulls, times=times, total_price=used, total_pulls=gained)
        else:
            applications.append(BundleApplication(
                bundle_id=unit_id,
                bundle_price=price,
                bundle_pulls=pulls,
                times=times,
                total_price=used,
                total_pulls=gained,
            ))

    remaining = max(0, remaining)
    points_spent = points - remaining

    if total_pulls <= 0:
        if not units:
            errors.append('购买设置不足，无法消费pt')
        else:
            cheapest = min(price for _, price, _ in units)
            errors.append(f'pt不足，最便宜的购买方式需要{format_points(cheapest)}pt')
    elif remaining > 0:
        warnings.append(f'剩余{format_points(remaining)}pt无法使用')

    logger.debug('plan: points=%s pulls=%s spent=%s remainder=%s', points, total_pulls, points_spent, remaining)

    return DrawPlan(
        total_pulls=total_pulls,
        points_spent=points_spent,
        points_remainder=remaining,
        bundle_applications=tuple(applications),
        per_pull_purchase=per_pull_purchase,
        complete_available=complete_available,
        warnings=tuple(warnings),
        errors=tuple(errors),
        normalized_settings=normalized,
    )


def calculate_points_for_pulls(target_pulls: int, settings, total_item_types: int,
                               config: EngineConfig = DEFAULT_CONFIG) -> PointsForPullsResult:
    """
    反推：至少需要多少pt才能抽 target_pulls 次

    以最便宜的单位价格为步长逐步增加预算并重新计算，迭代次数有上限。
    起点取 target_pulls * 最低单价 以下最近的步长倍数（低于该值不可能达到目标）。
    命中后返回该预算实际消费的pt；礼包价格不是步长整数倍时，结果是步长网格附近的最小值，
    不保证是所有预算中的全局最小值。
    """
    if not is_finite_number(target_pulls) or target_pulls <= 0:
        return PointsForPullsResult(points=0, plan=None, iterations=0)

    normalized, _ = normalize_pt_setting(settings, config)
    units = purchase_units(normalized)
    if not units:
        return PointsForPullsResult(points=None, plan=None, iterations=0, errors=('购买设置不足，无法计算所需pt',))

    step = min(price for _, price, _ in units)
    best_unit_price = min(price / pulls for _, price, pulls in units)
    candidate = max(step, math.floor(target_pulls * best_unit_price / step) * step)

    plan = None
    for iteration in range(1, config.plan_inversion_max_iterations + 1):
        plan = calculate_draw_plan(candidate, settings, total_item_types, config)
        if plan.total_pulls >= target_pulls:
            # 步长网格上的预算可能有用不完的余数，收紧到实际消费额（购买内容不变）
            if plan.points_spent < candidate:
                tightened = calculate_draw_plan(plan.points_spent, settings, total_item_types, config)
                if tightened.total_pulls >= target_pulls:
                    return PointsForPullsResult(points=plan.points_spent, plan=tightened, iterations=iteration)
            return PointsForPullsResult(points=candidate, plan=plan, iterations=iteration)
        if plan.errors and plan.total_pulls <= 0 and (not is_finite_number(total_item_types) or total_item_types <= 0):
            return PointsForPullsResult(points=None, plan=plan, iterations=iteration, errors=plan.errors)
        candidate += step

    logger.warning('points-for-pulls gave up after %s iterations (target %s)',
                   config.plan_inversion_max_iterations, target_pulls)
    return PointsForPullsResult(
        points=None,
        plan=plan,
        iterations=config.plan_inversion_max_iterations,
        errors=(f'超过最大迭代次数（{config.plan_inversion_max_iterations}次），无法计算所需pt',),
    )
