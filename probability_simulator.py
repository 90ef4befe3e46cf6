"""
理论概率计算（不使用随机数）

用于显示「N抽内至少获得K个」之类的概率，与抽卡执行器的随机数无关。
"""
import math
from typing import Iterable, List, Optional

import numpy as np

from models import GachaPoolDefinition, RarityTier, SimulatedProbability
from rarity_rate import is_finite_number


def clamp_probability(value) -> float:
    if not is_finite_number(value):
        return 0.0
    return min(max(float(value), 0.0), 1.0)


def _normalize_count(value) -> int:
    if not is_finite_number(value):
        return 0
    return max(0, math.floor(value))


def calculate_at_least_one_rate(rate: float, draw_count: int) -> float:
    """1 - (1 - rate)^n，用 expm1/log1p 保证小概率、大抽数时的精度"""
    if draw_count <= 0 or rate <= 0:
        return 0.0
    if rate >= 1:
        return 1.0
    return clamp_probability(-math.expm1(draw_count * math.log1p(-rate)))


def calculate_exact_count_rate(rate: float, draw_count: int, target_count: int) -> float:
    """
    二项分布 C(n,k) * p^k * (1-p)^(n-k)
    从 k=0 的 (1-p)^n 开始逐项相乘，避免阶乘溢出
    """
    if target_count < 0 or target_count > draw_count:
        return 0.0
    if draw_count == 0:
        return 1.0 if target_count == 0 else 0.0
    if rate <= 0:
        return 1.0 if target_count == 0 else 0.0
    if rate >= 1:
        return 1.0 if target_count == draw_count else 0.0

    odds = rate / (1 - rate)
    probability = math.exp(draw_count * math.log1p(-rate))
    for count in range(1, target_count + 1):
        probability *= (draw_count - count + 1) / count * odds

    return clamp_probability(probability)


def calculate_at_least_count_rate(rate: float, draw_count: int, target_count: int) -> float:
    """N抽内至少获得K个的概率"""
    if target_count <= 0:
        return 1.0
    if target_count > draw_count:
        return 0.0
    if target_count == 1:
        return calculate_at_least_one_rate(rate, draw_count)
    if rate <= 0:
        return 0.0
    if rate >= 1:
        return 1.0

    odds = rate / (1 - rate)
    term = math.exp(draw_count * math.log1p(-rate))
    below = term
    for count in range(1, target_count):
        term *= (draw_count - count + 1) / count * odds
        below += term
    return clamp_probability(1 - below)


def _simulate(row_id: str, label: str, color: Optional[str], rate, draw_count: int, target_count: int,
              rarity_id: Optional[str] = None) -> SimulatedProbability:
    normalized_rate = clamp_probability(rate if rate is not None else 0)
    return SimulatedProbability(
        id=row_id,
        label=label,
        color=color,
        emit_rate=normalized_rate,
        at_least_one_rate=calculate_at_least_one_rate(normalized_rate, draw_count),
        exact_count_rate=calculate_exact_count_rate(normalized_rate, draw_count, target_count),
        at_least_count_rate=calculate_at_least_count_rate(normalized_rate, draw_count, target_count),
        rarity_id=rarity_id,
    )


def simulate_rarity_probabilities(rarities: Iterable[RarityTier], draw_count, target_count) -> List[SimulatedProbability]:
    """每个稀有度在 draw_count 抽内的概率；超出 [0,1] 的排出率先被限制"""
    draws = _normalize_count(draw_count)
    target = _normalize_count(target_count)
    return [
        _simulate(rarity.id, rarity.label, rarity.color, rarity.emit_rate, draws, target, rarity_id=rarity.id)
        for rarity in rarities
    ]


def simulate_item_probabilities(pool: GachaPoolDefinition, draw_count, target_count) -> List[SimulatedProbability]:
    """每个奖品在 draw_count 抽内的概率"""
    draws = _normalize_count(draw_count)
    target = _normalize_count(target_count)
    return [
        _simulate(item.item_id, item.name, item.rarity_color, item.item_rate, draws, target, rarity_id=item.rarity_id)
        for item in pool.items
    ]


def build_odds_curve(rate: float, max_draws: int, target_count: int = 1) -> np.ndarray:
    """0..max_draws 抽时「至少K个」的概率曲线"""
    rate = clamp_probability(rate)
    return np.array([
        calculate_at_least_count_rate(rate, draws, target_count)
        for draws in range(_normalize_count(max_draws) + 1)
    ])
