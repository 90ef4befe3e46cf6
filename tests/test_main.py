import json
import os

import pytest

from main import DefinitionError, main, parse_definition

EXAMPLE = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'example_gacha.json')


def test_parse_definition():
    with open(EXAMPLE, encoding='utf-8') as f:
        catalog_state, rarity_state, settings = parse_definition(json.load(f))

    gacha = catalog_state.by_gacha['summer-festival']
    assert gacha.order[0] == 'sticker'
    assert gacha.items['figure'].stock_count == 3
    assert rarity_state.entities['sr'].emit_rate == pytest.approx(0.03)
    assert rarity_state.entities['miss'].auto_adjust
    assert settings['perPull']['price'] == 10


def test_parse_definition_rejects_bad_rate():
    with pytest.raises(DefinitionError):
        parse_definition({'rarities': [{'id': 'a', 'emit_rate': 'lots'}]})


def test_cli_runs_example(capsys):
    assert main([EXAMPLE, '--points', '300', '--seed', '1', '--iterations', '20']) == 0
    out = capsys.readouterr().out
    assert '【购买计划】' in out
    assert '【抽卡结果】' in out
    assert '【模拟结果】' in out


def test_cli_missing_file(tmp_path, capsys):
    assert main([str(tmp_path / 'missing.json')]) == 1
    assert '无法读取定义文件' in capsys.readouterr().err


def test_cli_invalid_json(tmp_path, capsys):
    path = tmp_path / 'broken.json'
    path.write_text('{not json', encoding='utf-8')
    assert main([str(path)]) == 1
    assert 'JSON' in capsys.readouterr().err


def test_cli_plan_error(tmp_path):
    path = tmp_path / 'pricey.json'
    path.write_text(json.dumps({
        'rarities': [{'id': 'n', 'label': 'N', 'emit_rate': 1.0}],
        'items': [{'id': 'a', 'rarity': 'n'}],
        'pt_setting': {'perPull': {'price': 500}},
    }), encoding='utf-8')
    assert main([str(path), '--points', '100', '--iterations', '0']) == 2


def test_cli_writes_plots(tmp_path):
    out_dir = tmp_path / 'plots'
    assert main([EXAMPLE, '--seed', '4', '--iterations', '0', '--plot', str(out_dir)]) == 0
    assert sorted(os.listdir(out_dir)) == ['draw_result.png', 'odds_curves.png']
