"""
蒙特卡洛分析器

重复执行抽卡，统计各稀有度的实际出现频率，并与理论概率对比。
保底规则只体现在模拟结果中，理论值不考虑保底。
"""
from typing import Dict, List, Optional

import numpy as np

from config import DEFAULT_CONFIG, EngineConfig
from draw_engine import create_rng, execute_gacha, summarize_by_rarity
from models import GachaPoolDefinition
from probability_simulator import calculate_at_least_one_rate


class MonteCarloAnalyzer:
    """蒙特卡洛分析器"""

    def __init__(self, config: EngineConfig = DEFAULT_CONFIG, iterations: Optional[int] = None):
        self.config = config
        self.iterations = iterations if iterations is not None else config.monte_carlo_iterations

    def simulate_pool(self, pool: GachaPoolDefinition, settings, points, seed: Optional[int] = None,
                      verbose: bool = False) -> List[Dict]:
        """
        对同一卡池重复执行抽卡
        返回: 每次模拟的结果列表 {'total_pulls', 'points_spent', 'guaranteed', 'rarity_counts', 'errors'}
        """
        rng = create_rng(self.config.seed if seed is None else seed)
        results = []

        if verbose:
            print(f"正在模拟卡池「{pool.gacha_id}」，共 {self.iterations} 次...")

        for i in range(self.iterations):
            if verbose and (i + 1) % 1000 == 0:
                print(f"进度: {i + 1}/{self.iterations}")

            result = execute_gacha(pool, settings, points, rng=rng, config=self.config)
            if result.errors:
                # 配置本身无法执行，重复也没有意义
                return [{
                    'total_pulls': 0,
                    'points_spent': 0,
                    'guaranteed': 0,
                    'rarity_counts': {},
                    'errors': list(result.errors),
                }]

            results.append({
                'total_pulls': result.total_pulls,
                'points_spent': result.points_spent,
                'guaranteed': sum(item.guaranteed_count for item in result.items),
                'rarity_counts': {tally.rarity_id: tally.count for tally in summarize_by_rarity(result, pool)},
                'errors': [],
            })

        return results

    def summarize(self, results: List[Dict], pool: GachaPoolDefinition) -> Dict[str, Dict]:
        """
        汇总模拟结果
        返回: {rarity_id: {'label', 'per_pull_rate', 'mean_count', 'simulated_at_least_one', 'theoretical_at_least_one'}}
        """
        summary: Dict[str, Dict] = {}
        valid = [r for r in results if not r['errors']]
        if not valid:
            return summary

        total_weight = sum(group.total_weight for group in pool.rarity_groups.values())
        pulls = int(np.median([r['total_pulls'] for r in valid]))

        for rarity_id, group in pool.rarity_groups.items():
            counts = np.array([r['rarity_counts'].get(rarity_id, 0) for r in valid])
            per_pull_rate = group.total_weight / total_weight if total_weight > 0 else 0.0
            summary[rarity_id] = {
                'label': group.label,
                'per_pull_rate': per_pull_rate,
                'mean_count': float(np.mean(counts)),
                'simulated_at_least_one': float(np.mean(counts > 0)),
                'theoretical_at_least_one': calculate_at_least_one_rate(per_pull_rate, pulls),
            }
        return summary

    def print_results(self, results: List[Dict], pool: GachaPoolDefinition):
        """打印模拟结果"""
        if results and results[0]['errors']:
            print("\n模拟无法执行:")
            for error in results[0]['errors']:
                print(f"  • {error}")
            return

        summary = self.summarize(results, pool)
        n = len(results)
        total_pulls = [r['total_pulls'] for r in results]
        guaranteed = [r['guaranteed'] for r in results]

        print("\n" + "=" * 60)
        print("【模拟结果】")
        print("=" * 60)
        print(f"\n模拟次数: {n}")
        print(f"每次抽数: {int(np.median(total_pulls))} 抽")
        print(f"保底替换平均值: {np.mean(guaranteed):.2f} 次")

        print("\n稀有度统计:")
        for rarity_id, row in summary.items():
            print(f"  {row['label']}: 平均 {row['mean_count']:.2f} 个, "
                  f"至少1个 模拟 {row['simulated_at_least_one'] * 100:.2f}% / "
                  f"理论 {row['theoretical_at_least_one'] * 100:.2f}%")

        print("\n" + "=" * 60 + "\n")
