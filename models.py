"""
数据模型

引擎只读取外部store交来的快照，所有输出都是新建的值对象。
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple


# ---------- 目录 / 稀有度快照 ----------

@dataclass(frozen=True)
class RarityTier:
    """稀有度"""
    id: str
    label: str
    color: Optional[str] = None
    emit_rate: Optional[float] = None  # 0~1 的小数，None 表示未设置
    sort_order: int = 0
    gacha_id: Optional[str] = None
    auto_adjust: bool = False  # 显式标记的自动补足稀有度


@dataclass(frozen=True)
class ItemDefinition:
    """奖品定义"""
    item_id: str
    name: str
    rarity_id: str
    pickup_target: bool = False
    complete_target: bool = True
    item_rate: Optional[float] = None  # 单品排出率覆盖
    stock_count: Optional[int] = None  # 库存上限，None 表示不限


@dataclass(frozen=True)
class GachaCatalog:
    order: Tuple[str, ...] = ()
    items: Dict[str, ItemDefinition] = field(default_factory=dict)


@dataclass(frozen=True)
class CatalogState:
    by_gacha: Dict[str, GachaCatalog] = field(default_factory=dict)


@dataclass(frozen=True)
class RarityState:
    by_gacha: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    entities: Dict[str, RarityTier] = field(default_factory=dict)


# ---------- 排出率编辑 ----------

@dataclass(frozen=True)
class RateUpdate:
    rarity_id: str
    emit_rate: Optional[float]


@dataclass(frozen=True)
class EmitRateChangeError:
    type: str
    total: float


@dataclass(frozen=True)
class EmitRateChangeResult:
    updates: Tuple[RateUpdate, ...] = ()
    auto_adjust_rate: Optional[float] = None
    error: Optional[EmitRateChangeError] = None


@dataclass(frozen=True)
class AutoAdjustComputation:
    desired_rate: float
    sum_of_others: float


# ---------- 卡池 ----------

@dataclass(frozen=True)
class GachaItemDefinition:
    """卡池内可抽取的一个条目"""
    item_id: str
    name: str
    rarity_id: str
    rarity_label: str
    rarity_color: Optional[str]
    rarity_emit_rate: Optional[float]
    item_rate: float
    item_rate_display: str
    pickup_target: bool = False
    complete_target: bool = True
    rate_override: bool = False
    stock_count: Optional[int] = None
    remaining_stock: Optional[int] = None


@dataclass(frozen=True)
class GachaRarityGroup:
    rarity_id: str
    label: str
    color: Optional[str]
    emit_rate: Optional[float]
    sort_order: int
    item_count: int
    total_weight: float
    items: Tuple[GachaItemDefinition, ...]


@dataclass(frozen=True)
class GachaPoolDefinition:
    gacha_id: str
    items: Tuple[GachaItemDefinition, ...]
    rarity_groups: Dict[str, GachaRarityGroup]


@dataclass(frozen=True)
class RarityRateRedistribution:
    """没有奖品的稀有度，其排出率被转移到的去向"""
    target_rarity_id: str
    source_rarity_ids: Tuple[str, ...]
    total_missing_rate: float
    target_strategy: str  # 'auto-adjust' | 'next-highest'


@dataclass(frozen=True)
class BuildGachaPoolsResult:
    pools_by_gacha_id: Dict[str, GachaPoolDefinition]
    items_by_id: Dict[str, GachaItemDefinition]
    rate_redistributions_by_gacha_id: Dict[str, RarityRateRedistribution]
    warnings: Tuple[str, ...] = ()


# ---------- 价格设置（输入） ----------

@dataclass(frozen=True)
class PerPullPrice:
    price: float
    pulls: int = 1


@dataclass(frozen=True)
class CompletePrice:
    price: float


@dataclass(frozen=True)
class BundlePrice:
    id: str
    price: float
    pulls: int


@dataclass(frozen=True)
class GuaranteeRule:
    id: str
    rarity_id: str
    threshold: int
    quantity: int = 1
    target_type: str = 'rarity'  # 'rarity' | 'item'
    item_id: Optional[str] = None


@dataclass(frozen=True)
class PtSetting:
    per_pull: Optional[PerPullPrice] = None
    complete: Optional[CompletePrice] = None
    bundles: Tuple[BundlePrice, ...] = ()
    guarantees: Tuple[GuaranteeRule, ...] = ()


# ---------- 价格设置（规范化后） ----------

@dataclass(frozen=True)
class NormalizedPerPull:
    price: float
    pulls: int
    unit_price: float


@dataclass(frozen=True)
class NormalizedComplete:
    price: float


@dataclass(frozen=True)
class NormalizedBundle:
    id: str
    price: float
    pulls: int
    unit_price: float


@dataclass(frozen=True)
class NormalizedGuarantee:
    id: str
    rarity_id: str
    threshold: int
    quantity: int
    target_type: str
    item_id: Optional[str] = None


@dataclass(frozen=True)
class NormalizedPtSetting:
    per_pull: Optional[NormalizedPerPull] = None
    complete: Optional[NormalizedComplete] = None
    bundles: Tuple[NormalizedBundle, ...] = ()
    guarantees: Tuple[NormalizedGuarantee, ...] = ()
    default_applied: bool = False


# ---------- 计划 / 结果 ----------

@dataclass(frozen=True)
class BundleApplication:
    bundle_id: str
    bundle_price: float
    bundle_pulls: int
    times: int
    total_price: float
    total_pulls: int


@dataclass(frozen=True)
class PerPullPurchase:
    price: float
    pulls: int
    times: int
    total_price: float
    total_pulls: int


@dataclass(frozen=True)
class DrawPlan:
    total_pulls: int
    points_spent: float
    points_remainder: float
    bundle_applications: Tuple[BundleApplication, ...]
    per_pull_purchase: Optional[PerPullPurchase]
    complete_available: bool
    warnings: Tuple[str, ...]
    errors: Tuple[str, ...]
    normalized_settings: NormalizedPtSetting


@dataclass(frozen=True)
class PointsForPullsResult:
    points: Optional[float]
    plan: Optional[DrawPlan]
    iterations: int
    errors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DrawInstance:
    item_id: str
    rarity_id: str
    was_guaranteed: bool = False


@dataclass(frozen=True)
class ExecutedPullItem:
    item_id: str
    rarity_id: str
    name: str
    rarity_label: str
    rarity_color: Optional[str]
    count: int
    guaranteed_count: int


@dataclass(frozen=True)
class ExecutionResult:
    items: Tuple[ExecutedPullItem, ...]
    points_spent: float
    points_remainder: float
    total_pulls: int
    warnings: Tuple[str, ...]
    errors: Tuple[str, ...]
    plan: Optional[DrawPlan] = None
    draws: Tuple[DrawInstance, ...] = ()


@dataclass(frozen=True)
class SimulatedProbability:
    """某稀有度/奖品在N抽内的理论概率"""
    id: str
    label: str
    color: Optional[str]
    emit_rate: float
    at_least_one_rate: float
    exact_count_rate: float
    at_least_count_rate: float
    rarity_id: Optional[str] = None  # 奖品行所属的稀有度


@dataclass
class RarityTally:
    """稀有度汇总（调用方按需生成）"""
    rarity_id: str
    label: str
    count: int = 0
    guaranteed_count: int = 0
    item_ids: List[str] = field(default_factory=list)
