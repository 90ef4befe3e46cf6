"""
抽卡经济引擎 - 主程序入口

读取JSON格式的卡池定义，计算pt能抽多少次、执行一次抽卡，
并输出理论概率与蒙特卡洛模拟的对比。

定义文件格式:
{
  "gacha_id": "demo",
  "rarities": [{"id": "ssr", "label": "SSR", "emit_rate": 0.03, "sort_order": 2}, ...],
  "items": [{"id": "a", "name": "...", "rarity": "ssr", "item_rate": null, "stock": null}, ...],
  "pt_setting": {"perPull": {"price": 10, "pulls": 1}, "bundles": [...], "guarantees": [...]}
}
排出率也可以写成百分比字符串，例如 "emit_rate": "3%"。
"""
import argparse
import dataclasses
import json
import logging
import os
import sys
from typing import Any, Dict, Tuple

from config import DEFAULT_CONFIG, EngineConfig
from draw_engine import create_rng, execute_gacha, summarize_by_rarity
from models import CatalogState, GachaCatalog, ItemDefinition, RarityState, RarityTier
from monte_carlo_analyzer import MonteCarloAnalyzer
from point_plan import calculate_draw_plan, format_points
from pool_builder import build_gacha_pools, infer_rarity_fraction_digits
from probability_simulator import simulate_rarity_probabilities
from rarity_rate import format_rarity_rate, parse_rarity_rate_input, resolve_emit_rates

logger = logging.getLogger(__name__)


class DefinitionError(ValueError):
    """定义文件内容不合法"""


def _parse_rate(value, config: EngineConfig):
    if value is None:
        return None
    if isinstance(value, str):
        parsed = parse_rarity_rate_input(value, config)
        if parsed is None:
            raise DefinitionError(f'无法解析的排出率: {value!r}')
        return parsed
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DefinitionError(f'无法解析的排出率: {value!r}')
    return float(value)


def parse_definition(data: Dict[str, Any], config: EngineConfig = DEFAULT_CONFIG) -> Tuple[CatalogState, RarityState, Any]:
    """
    把JSON定义转换为目录快照、稀有度快照和价格设置
    价格设置原样返回（point_plan 直接读取 dict）
    """
    if not isinstance(data, dict):
        raise DefinitionError('定义文件的顶层必须是对象')

    gacha_id = str(data.get('gacha_id', 'default'))

    tiers = {}
    for index, raw in enumerate(data.get('rarities') or []):
        try:
            rarity_id = str(raw['id'])
        except (KeyError, TypeError) as e:
            raise DefinitionError(f'第{index + 1}个稀有度缺少 id') from e
        tiers[rarity_id] = RarityTier(
            id=rarity_id,
            label=str(raw.get('label', rarity_id)),
            color=raw.get('color'),
            emit_rate=_parse_rate(raw.get('emit_rate'), config),
            sort_order=int(raw.get('sort_order', index)),
            gacha_id=gacha_id,
            auto_adjust=bool(raw.get('auto_adjust', False)),
        )

    items = {}
    for index, raw in enumerate(data.get('items') or []):
        try:
            item_id = str(raw['id'])
            rarity_id = str(raw['rarity'])
        except (KeyError, TypeError) as e:
            raise DefinitionError(f'第{index + 1}个奖品缺少 id 或 rarity') from e
        items[item_id] = ItemDefinition(
            item_id=item_id,
            name=str(raw.get('name', item_id)),
            rarity_id=rarity_id,
            pickup_target=bool(raw.get('pickup', False)),
            complete_target=bool(raw.get('complete_target', True)),
            item_rate=_parse_rate(raw.get('item_rate'), config),
            stock_count=raw.get('stock'),
        )

    catalog_state = CatalogState(by_gacha={gacha_id: GachaCatalog(order=tuple(items), items=items)})
    rarity_state = RarityState(by_gacha={gacha_id: tuple(tiers)}, entities=tiers)
    return catalog_state, rarity_state, data.get('pt_setting') or {}


def load_definition(path: str, config: EngineConfig = DEFAULT_CONFIG):
    with open(path, encoding='utf-8') as f:
        data = json.load(f)
    return parse_definition(data, config)


def print_messages(title: str, messages):
    if not messages:
        return
    print(f"\n{title}:")
    for message in messages:
        print(f"  • {message}")


def run(args) -> int:
    config = EngineConfig(seed=args.seed, monte_carlo_iterations=args.iterations)

    try:
        catalog_state, rarity_state, settings = load_definition(args.definition, config)
    except OSError as e:
        print(f"无法读取定义文件: {e}", file=sys.stderr)
        return 1
    except json.JSONDecodeError as e:
        print(f"定义文件不是合法的JSON: {e}", file=sys.stderr)
        return 1
    except DefinitionError as e:
        print(f"定义文件内容有误: {e}", file=sys.stderr)
        return 1

    digits = infer_rarity_fraction_digits(rarity_state, config)
    built = build_gacha_pools(catalog_state, rarity_state, rarity_fraction_digits=digits, config=config)
    gacha_id, pool = next(iter(built.pools_by_gacha_id.items()))
    tiers = [rarity_state.entities[rarity_id] for rarity_id in rarity_state.by_gacha[gacha_id]]
    resolved = resolve_emit_rates(tiers)
    # 自动补足的稀有度使用计算后的排出率
    effective_tiers = [dataclasses.replace(tier, emit_rate=resolved.get(tier.id)) for tier in tiers]

    print("=" * 60)
    print(f"卡池「{gacha_id}」")
    print("=" * 60)
    print("\n稀有度排出率:")
    for tier in tiers:
        formatted = format_rarity_rate(resolved.get(tier.id), config)
        print(f"  • {tier.label}: {formatted + '%' if formatted else '未设置'}")
    print("\n奖品:")
    for item in pool.items:
        stock = '' if item.remaining_stock is None else f"（剩余{item.remaining_stock}）"
        print(f"  • [{item.rarity_label}] {item.name}: {item.item_rate_display}{stock}")
    print_messages("卡池警告", built.warnings)

    plan = calculate_draw_plan(args.points, settings, len(pool.items), config)
    print("\n" + "=" * 60)
    print("【购买计划】")
    print("=" * 60)
    print(f"\n预算: {format_points(args.points)}pt → {plan.total_pulls} 抽，"
          f"消耗 {format_points(plan.points_spent)}pt，剩余 {format_points(plan.points_remainder)}pt")
    for application in plan.bundle_applications:
        print(f"  • 礼包「{application.bundle_id}」× {application.times}: "
              f"{format_points(application.total_price)}pt / {application.total_pulls}抽")
    if plan.per_pull_purchase is not None:
        purchase = plan.per_pull_purchase
        print(f"  • 单抽 × {purchase.times}: {format_points(purchase.total_price)}pt / {purchase.total_pulls}抽")
    print_messages("警告", plan.warnings)
    print_messages("错误", plan.errors)
    if plan.errors:
        return 2

    result = execute_gacha(pool, settings, args.points, rng=create_rng(config.seed), config=config)
    print("\n" + "=" * 60)
    print("【抽卡结果】")
    print("=" * 60)
    for entry in result.items:
        guaranteed = f"（保底{entry.guaranteed_count}）" if entry.guaranteed_count else ''
        print(f"  [{entry.rarity_label}] {entry.name} × {entry.count}{guaranteed}")
    print_messages("警告", result.warnings[len(plan.warnings):])
    print_messages("错误", result.errors)

    draw_count = args.draws if args.draws is not None else plan.total_pulls
    print("\n" + "=" * 60)
    print(f"【理论概率】{draw_count}抽内")
    print("=" * 60)
    for row in simulate_rarity_probabilities(effective_tiers, draw_count, args.target):
        print(f"  {row.label}: 至少1个 {row.at_least_one_rate * 100:.2f}%, "
              f"恰好{args.target}个 {row.exact_count_rate * 100:.2f}%, "
              f"至少{args.target}个 {row.at_least_count_rate * 100:.2f}%")

    if config.monte_carlo_iterations > 0:
        analyzer = MonteCarloAnalyzer(config)
        mc_results = analyzer.simulate_pool(pool, settings, args.points, verbose=args.verbose)
        analyzer.print_results(mc_results, pool)

    if args.plot:
        # 延迟导入，不画图时不需要加载 matplotlib
        from visualizer import GachaVisualizer

        os.makedirs(args.plot, exist_ok=True)
        visible = [tier for tier in effective_tiers if tier.id in {t.rarity_id for t in summarize_by_rarity(result, pool)}]
        GachaVisualizer().generate_all_plots(visible, result, pool, max(draw_count, 1), output_dir=args.plot)

    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='抽卡经济引擎：pt计算、抽卡执行与概率分析')
    parser.add_argument('definition', help='卡池定义JSON文件')
    parser.add_argument('--points', type=float, default=300, help='pt预算（默认300）')
    parser.add_argument('--seed', type=int, default=None, help='随机种子')
    parser.add_argument('--draws', type=int, default=None, help='理论概率使用的抽数（默认为计划抽数）')
    parser.add_argument('--target', type=int, default=1, help='目标获得个数K（默认1）')
    parser.add_argument('--iterations', type=int, default=DEFAULT_CONFIG.monte_carlo_iterations,
                        help='蒙特卡洛模拟次数（0 表示不模拟）')
    parser.add_argument('--plot', metavar='DIR', default=None, help='输出图表的目录')
    parser.add_argument('-v', '--verbose', action='store_true', help='输出调试日志')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(name)s %(levelname)s: %(message)s',
    )
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
