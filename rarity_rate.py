"""
稀有度排出率模型

排出率一律以 0~1 的小数保存，显示时换算为百分比。
所有函数都不抛异常：非法输入通过 None / error 字段返回，方便调用方回滚输入。
"""
import dataclasses
import logging
import math
import re
from decimal import Context, Decimal, ROUND_HALF_UP
from fractions import Fraction
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from config import DEFAULT_CONFIG, EngineConfig
from models import (
    AutoAdjustComputation,
    EmitRateChangeError,
    EmitRateChangeResult,
    RarityTier,
    RateUpdate,
)

logger = logging.getLogger(__name__)

TOTAL_EXCEEDS_LIMIT = 'total-exceeds-limit'
ELLIPSIS = '...'

# 足够容纳任意 float 的十进制展开
_DECIMAL_CONTEXT = Context(prec=400)
_NUMBER_PATTERN = re.compile(r'^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$')


def is_finite_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def clamp_rate(value) -> float:
    """限制在 [0, 1]，非有限值视为 0"""
    if not is_finite_number(value):
        return 0.0
    return min(1.0, max(0.0, float(value)))


def rate_or_zero(value) -> float:
    return clamp_rate(value) if value is not None else 0.0


def _quantize(value: float, digits: int) -> Decimal:
    return Decimal(value).quantize(Decimal(1).scaleb(-digits), rounding=ROUND_HALF_UP, context=_DECIMAL_CONTEXT)


def _trim_fraction(text: str) -> str:
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return text or '0'


def detect_repeating_cycle(digits: str, min_span: int) -> Optional[Tuple[int, str]]:
    """
    在小数部分中寻找循环节
    返回: (循环开始位置, 循环节)，找不到时返回 None

    从左到右尝试每个起点，循环节长度从1到剩余位数的一半；全0的循环节不算。
    """
    for start in range(len(digits)):
        tail = digits[start:]
        if len(tail) < min_span:
            break
        for length in range(1, len(tail) // 2 + 1):
            cycle = tail[:length]
            if not cycle.strip('0'):
                continue
            repeated = (cycle * (len(tail) // length + 1))[:len(tail)]
            if repeated == tail:
                return start, cycle
    return None


def _format_tiny_percent(percent: float, max_digits: int) -> str:
    # 舍入后会变成0的极小值：保留前导0，再给出最多 max_digits 位有效数字
    value = Decimal(percent)
    exponent = value.adjusted() - (max_digits - 1)
    rounded = value.quantize(Decimal(1).scaleb(exponent), rounding=ROUND_HALF_UP, context=_DECIMAL_CONTEXT)
    return _trim_fraction(format(rounded, 'f'))


def format_rarity_rate(rate, config: EngineConfig = DEFAULT_CONFIG) -> str:
    """
    把 0~1 的排出率格式化为百分比字符串（不带%）

    - 0 -> "0"
    - 循环小数 -> 前缀 + 循环节 + "..."（单个数字的循环节写两遍，如 "0.0033..."）
    - 其余 -> 最多10位小数，去掉末尾的0
    """
    if rate is None or not is_finite_number(rate):
        return ''

    percent = rate * 100
    if not math.isfinite(percent):
        return ''
    if percent == 0:
        return '0'

    sign = '-' if percent < 0 else ''
    percent = abs(percent)

    fixed = format(_quantize(percent, config.rate_headroom_digits), 'f')
    integer_part, _, fraction = fixed.partition('.')
    # 最后一位是保护位，只用前面的位判定循环
    found = detect_repeating_cycle(fraction[:-1], config.min_cycle_span)
    if found:
        start, cycle = found
        shown_cycle = cycle * 2 if len(cycle) == 1 else cycle
        return f'{sign}{integer_part}.{fraction[:start]}{shown_cycle}{ELLIPSIS}'

    rounded = _quantize(percent, config.max_rate_fraction_digits)
    if rounded == 0:
        return sign + _format_tiny_percent(percent, config.max_rate_fraction_digits)
    return sign + _trim_fraction(format(rounded, 'f'))


def count_fraction_digits(formatted: str) -> int:
    """格式化结果的小数位数（不含省略号）"""
    if not formatted:
        return 0
    body = formatted[:-len(ELLIPSIS)] if formatted.endswith(ELLIPSIS) else formatted
    _, dot, fraction = body.partition('.')
    return len(fraction) if dot else 0


def parse_rarity_rate_input(text, config: EngineConfig = DEFAULT_CONFIG) -> Optional[float]:
    """
    解析百分比输入，返回 0~1 的小数；无法解析时返回 None

    接受末尾的 "%"，以及 format_rarity_rate 输出的循环小数 "..."。
    """
    if text is None:
        return None
    if is_finite_number(text):
        return min(max(float(text), 0.0), 100.0) / 100

    raw = str(text).strip()
    if raw.endswith('%'):
        raw = raw[:-1].strip()
    repeating = raw.endswith(ELLIPSIS)
    if repeating:
        raw = raw[:-len(ELLIPSIS)]

    if not _NUMBER_PATTERN.match(raw):
        return None
    parsed = _parse_repeating(raw, config) if repeating else None
    if parsed is None:
        parsed = float(raw)
    if not math.isfinite(parsed):
        return None

    clamped = min(max(parsed, 0.0), 100.0)
    return clamped / 100


def _parse_repeating(body: str, config: EngineConfig) -> Optional[float]:
    """
    还原循环小数表示的百分比
    末尾 L 位作为循环节逐一尝试，只保留重新格式化后与输入一致的解释；
    同一文字对应多个值时（如 "14.285714..."）取约分后分母最小的有理数。
    没有一致的解释时返回 None（按字面值处理）
    """
    sign = -1 if body.startswith('-') else 1
    integer_part, dot, fraction = body.lstrip('+-').partition('.')
    if not dot or not fraction.isdigit():
        return None

    text = body + ELLIPSIS
    best: Optional[Fraction] = None
    for length in range(1, len(fraction) + 1):
        prefix, cycle = fraction[:-length], fraction[-length:]
        repeating_part = Fraction(int(prefix + cycle) - int(prefix or '0'), 10 ** len(prefix) * (10 ** length - 1))
        value = sign * (int(integer_part or '0') + repeating_part)
        if format_rarity_rate(float(value) / 100, config) != text:
            continue
        if best is None or value.denominator < best.denominator:
            best = value
    return float(best) if best is not None else None


def sort_rarity_rows(rows: Iterable[RarityTier]) -> List[RarityTier]:
    """稀有的在前（排出率升序，未设置的放最后），再按 sort_order / label / id"""
    def sort_key(row: RarityTier):
        rate = row.emit_rate if is_finite_number(row.emit_rate) else math.inf
        return (rate, row.sort_order, row.label or '', row.id)

    return sorted(rows, key=sort_key)


def sum_emit_rates(rows: Iterable[RarityTier], exclude_id: Optional[str] = None) -> float:
    return math.fsum(rate_or_zero(row.emit_rate) for row in rows if row.id != exclude_id)


def get_auto_adjust_rarity_id(tiers: Sequence[RarityTier]) -> Optional[str]:
    """
    自动补足的稀有度
    优先使用显式标记 auto_adjust 的稀有度；没有标记时，2个以上稀有度中 sort_order 最小者
    """
    rows = list(tiers)
    tagged = [row for row in rows if row.auto_adjust]
    if tagged:
        if len(tagged) > 1:
            logger.warning('multiple auto-adjust tiers tagged: %s', [row.id for row in tagged])
        return min(tagged, key=lambda row: (row.sort_order, row.id)).id

    if len(rows) < 2:
        return None
    return min(rows, key=lambda row: (row.sort_order, row.id)).id


def compute_auto_adjust_rate(tiers: Sequence[RarityTier],
                             auto_adjust_rarity_id: Optional[str]) -> Optional[AutoAdjustComputation]:
    """desired_rate = clamp(1 - 其余稀有度排出率之和)"""
    rows = list(tiers)
    if auto_adjust_rarity_id is None or not any(row.id == auto_adjust_rarity_id for row in rows):
        return None

    sum_of_others = sum_emit_rates(rows, exclude_id=auto_adjust_rarity_id)
    return AutoAdjustComputation(
        desired_rate=clamp_rate(1 - sum_of_others),
        sum_of_others=sum_of_others,
    )


def resolve_emit_rates(tiers: Sequence[RarityTier]) -> Dict[str, Optional[float]]:
    """返回每个稀有度的实际排出率（自动补足的稀有度用计算值替换）"""
    rows = list(tiers)
    resolved = {row.id: (clamp_rate(row.emit_rate) if row.emit_rate is not None else None) for row in rows}
    auto_id = get_auto_adjust_rarity_id(rows)
    computation = compute_auto_adjust_rate(rows, auto_id)
    if computation is not None:
        resolved[auto_id] = computation.desired_rate
    return resolved


def build_emit_rate_updates(rarity_id: str,
                            next_rate: Optional[float],
                            auto_adjust_rarity_id: Optional[str],
                            rows: Sequence[RarityTier],
                            config: EngineConfig = DEFAULT_CONFIG) -> EmitRateChangeResult:
    """
    校验一次排出率编辑

    合计超过 1 时返回 total-exceeds-limit 错误且不返回任何更新，调用方需撤回输入。
    成功时返回该行的更新；存在自动补足稀有度时一并返回它的新排出率。
    """
    rows = list(rows)
    tolerance = config.rate_tolerance
    rate = clamp_rate(next_rate) if next_rate is not None else None
    auto_enabled = (
        auto_adjust_rarity_id is not None
        and len(rows) > 1
        and any(row.id == auto_adjust_rarity_id for row in rows)
    )

    def total_with_edit(exclude_id: Optional[str]) -> float:
        return math.fsum(
            (rate or 0.0) if row.id == rarity_id else rate_or_zero(row.emit_rate)
            for row in rows
            if row.id != exclude_id
        )

    if not auto_enabled:
        total = total_with_edit(None)
        if total - 1 > tolerance:
            logger.debug('rate edit rejected: %s -> %s (total %s)', rarity_id, rate, total)
            return EmitRateChangeResult(error=EmitRateChangeError(TOTAL_EXCEEDS_LIMIT, total))
        return EmitRateChangeResult(updates=(RateUpdate(rarity_id, rate),))

    # 自动补足的稀有度不接受直接输入，始终使用计算值
    if rarity_id == auto_adjust_rarity_id:
        computation = compute_auto_adjust_rate(rows, auto_adjust_rarity_id)
        return EmitRateChangeResult(
            updates=(RateUpdate(rarity_id, computation.desired_rate),),
            auto_adjust_rate=computation.desired_rate,
        )

    sum_of_others = total_with_edit(auto_adjust_rarity_id)
    if sum_of_others - 1 > tolerance:
        logger.debug('rate edit rejected: %s -> %s (total %s)', rarity_id, rate, sum_of_others)
        return EmitRateChangeResult(error=EmitRateChangeError(TOTAL_EXCEEDS_LIMIT, sum_of_others))

    desired_rate = clamp_rate(1 - sum_of_others)
    updates = [RateUpdate(rarity_id, rate)]
    auto_row = next(row for row in rows if row.id == auto_adjust_rarity_id)
    if auto_row.emit_rate is None or abs(rate_or_zero(auto_row.emit_rate) - desired_rate) > tolerance:
        updates.append(RateUpdate(auto_adjust_rarity_id, desired_rate))

    return EmitRateChangeResult(updates=tuple(updates), auto_adjust_rate=desired_rate)


def apply_emit_rate_updates(rows: Sequence[RarityTier], updates: Iterable[RateUpdate]) -> Tuple[RarityTier, ...]:
    """返回应用更新后的新稀有度列表（不修改输入）"""
    by_id = {update.rarity_id: update.emit_rate for update in updates}
    return tuple(
        dataclasses.replace(row, emit_rate=by_id[row.id]) if row.id in by_id else row
        for row in rows
    )
