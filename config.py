"""
抽卡引擎配置类
"""
from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class EngineConfig:
    """引擎配置"""
    # 排出率精度
    rate_tolerance: float = 1e-9  # 合计排出率允许的误差
    max_rate_fraction_digits: int = 10  # 百分比最多显示10位小数
    rate_headroom_digits: int = 13  # 定点换算保留13位小数（最后一位为保护位）
    min_cycle_span: int = 6  # 循环小数判定时，循环部分至少覆盖6位

    # 价格设置
    default_per_pull: Optional[Tuple[float, int]] = (1, 1)  # 未设置任何价格时：1pt = 1抽
    plan_inversion_max_iterations: int = 1000  # 反推所需pt时的最大迭代次数

    # 蒙特卡洛
    monte_carlo_iterations: int = 2000
    seed: Optional[int] = None


DEFAULT_CONFIG = EngineConfig()
