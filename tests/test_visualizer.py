import os

from draw_engine import create_rng, execute_gacha
from models import RarityTier
from visualizer import GachaVisualizer

PER_PULL = {'perPull': {'price': 10, 'pulls': 1}}


def test_plot_odds_curves(tmp_path):
    rarities = [
        RarityTier('n', 'N', '#2CA02C', 0.8),
        RarityTier('sr', 'SR', None, 0.2),
    ]
    path = GachaVisualizer(dpi=50).plot_odds_curves(rarities, 30, target_count=2,
                                                    save_path=str(tmp_path / 'odds.png'))
    assert os.path.getsize(path) > 0


def test_generate_all_plots(basic_pool, tmp_path):
    settings = dict(PER_PULL, guarantees=[{'id': 'rare-5', 'rarityId': 'rare', 'threshold': 5}])
    result = execute_gacha(basic_pool, settings, 200, rng=create_rng(11))
    rarities = [
        RarityTier('common', 'Common', '#2CA02C', 0.8),
        RarityTier('rare', 'Rare', '#D62728', 0.2),
    ]

    paths = GachaVisualizer(dpi=50).generate_all_plots(rarities, result, basic_pool, 50, output_dir=str(tmp_path))
    assert [os.path.basename(path) for path in paths] == ['odds_curves.png', 'draw_result.png']
    assert all(os.path.getsize(path) > 0 for path in paths)
