"""
数据可视化模块
用于生成「N抽内获得概率」曲线和抽卡结果的图表
"""

import warnings
from typing import List, Optional, Sequence

import matplotlib
from matplotlib import font_manager
import matplotlib.pyplot as plt
import seaborn as sns
import numpy as np

from draw_engine import summarize_by_rarity
from models import ExecutionResult, GachaPoolDefinition, RarityTier
from probability_simulator import build_odds_curve, clamp_probability

sns.set_style("whitegrid")
sns.set_context("paper", font_scale=1.2)

# 稀有度名称常含日文/中文，先找一个可用的CJK字体
CJK_FONTS = [
    'Hiragino Sans', 'Yu Gothic', 'Meiryo', 'Noto Sans CJK JP', 'PingFang SC',
    'Hiragino Sans GB', 'Microsoft YaHei', 'Noto Sans CJK SC', 'Source Han Sans SC',
    'Arial Unicode MS', 'DejaVu Sans'
]


def configure_cjk_font():
    for font_name in CJK_FONTS:
        try:
            # findfont raises if the font does not exist when fallback_to_default is False
            font_manager.findfont(font_name, fallback_to_default=False)
            matplotlib.rcParams['font.sans-serif'] = [font_name]
            matplotlib.rcParams['axes.unicode_minus'] = False
            return
        except ValueError:
            continue
    warnings.warn("未找到可用的CJK字体，图表文字可能显示为方框")


configure_cjk_font()

PALETTE = ['#1F77B4', '#FF7F0E', '#2CA02C', '#D62728', '#9467BD', '#8C564B']
GUARANTEED_COLOR = '#D62728'

# Global visual tweaks
plt.rcParams['figure.dpi'] = 150
plt.rcParams['savefig.dpi'] = 300
plt.rcParams['axes.facecolor'] = '#f9fafb'
plt.rcParams['figure.facecolor'] = 'white'
plt.rcParams['axes.edgecolor'] = '#e5e7eb'
plt.rcParams['grid.color'] = '#e5e7eb'
plt.rcParams['grid.alpha'] = 0.8
sns.set_palette(PALETTE)


def style_axes(ax):
    ax.spines['top'].set_visible(False)
    ax.spines['right'].set_visible(False)
    ax.tick_params(axis='both', labelsize=10)
    ax.grid(True, linestyle='--', linewidth=0.8, alpha=0.7)
    ax.set_axisbelow(True)


def _color_for(color: Optional[str], index: int) -> str:
    return color or PALETTE[index % len(PALETTE)]


class GachaVisualizer:
    """抽卡结果可视化器"""

    def __init__(self, dpi: int = 300):
        self.dpi = dpi

    def _save(self, save_path: str) -> str:
        sns.despine()
        plt.tight_layout()
        plt.savefig(save_path, dpi=self.dpi, bbox_inches='tight')
        print(f"图表已保存至: {save_path}")
        plt.close()
        return save_path

    def plot_odds_curves(self, rarities: Sequence[RarityTier], max_draws: int, target_count: int = 1,
                         save_path: str = 'odds_curves.png') -> str:
        """
        绘制各稀有度「N抽内至少获得K个」的概率曲线
        """
        fig, ax = plt.subplots(figsize=(12, 6))
        style_axes(ax)

        draws = np.arange(max(0, int(max_draws)) + 1)
        for index, rarity in enumerate(rarities):
            rate = clamp_probability(rarity.emit_rate if rarity.emit_rate is not None else 0)
            curve = build_odds_curve(rate, max_draws, target_count)
            ax.plot(draws, curve * 100, linewidth=2, color=_color_for(rarity.color, index),
                    label=f'{rarity.label} ({rate * 100:g}%)')

        for level in (50, 90):
            ax.axhline(y=level, color='gray', linestyle='--', linewidth=1.2, alpha=0.6)

        ax.set_xlabel('抽数', fontsize=13, fontweight='bold')
        ax.set_ylabel(f'至少获得{target_count}个的概率（%）', fontsize=13, fontweight='bold')
        ax.set_title(f'{max_draws}抽内的获得概率', fontsize=15, fontweight='bold', pad=20)
        ax.set_xlim(0, max(1, int(max_draws)))
        ax.set_ylim(0, 105)
        ax.legend(fontsize=11, frameon=True, shadow=True)

        return self._save(save_path)

    def plot_draw_result(self, result: ExecutionResult, pool: GachaPoolDefinition,
                         save_path: str = 'draw_result.png') -> str:
        """
        绘制一次抽卡的稀有度分布（堆叠显示保底替换的部分）
        """
        tallies = summarize_by_rarity(result, pool)
        labels = [tally.label for tally in tallies]
        random_counts = np.array([tally.count - tally.guaranteed_count for tally in tallies])
        guaranteed_counts = np.array([tally.guaranteed_count for tally in tallies])
        colors = [_color_for(pool.rarity_groups[t.rarity_id].color if t.rarity_id in pool.rarity_groups else None, i)
                  for i, t in enumerate(tallies)]

        fig, ax = plt.subplots(figsize=(10, 6))
        style_axes(ax)

        x = np.arange(len(tallies))
        ax.bar(x, random_counts, 0.6, color=colors, alpha=0.85, edgecolor='white', linewidth=1.5, label='随机')
        bars = ax.bar(x, guaranteed_counts, 0.6, bottom=random_counts, color=GUARANTEED_COLOR, alpha=0.5,
                      edgecolor='white', linewidth=1.5, hatch='//', label='保底')

        # 在条上标注具体数字
        for bar, total in zip(bars, random_counts + guaranteed_counts):
            ax.text(bar.get_x() + bar.get_width() / 2., total, f'{total}',
                    ha='center', va='bottom', fontsize=10, fontweight='bold')

        ax.set_xlabel('稀有度', fontsize=13, fontweight='bold')
        ax.set_ylabel('获得数', fontsize=13, fontweight='bold')
        ax.set_title(f'抽卡结果 - {result.total_pulls}抽 / {result.points_spent:g}pt',
                     fontsize=15, fontweight='bold', pad=20)
        ax.set_xticks(x)
        ax.set_xticklabels(labels, fontsize=11)
        ax.legend(fontsize=11, frameon=True, shadow=True)

        return self._save(save_path)

    def generate_all_plots(self, rarities: Sequence[RarityTier], result: ExecutionResult,
                           pool: GachaPoolDefinition, max_draws: int, output_dir: str = '.') -> List[str]:
        """生成所有可视化图表"""
        print("\n" + "=" * 60)
        print("正在生成可视化图表...")
        print("=" * 60)

        paths = []
        print("\n[1/2] 生成获得概率曲线...")
        paths.append(self.plot_odds_curves(rarities, max_draws, save_path=f'{output_dir}/odds_curves.png'))

        print("\n[2/2] 生成抽卡结果分布图...")
        paths.append(self.plot_draw_result(result, pool, save_path=f'{output_dir}/draw_result.png'))

        print("\n所有图表生成完成！")
        return paths
