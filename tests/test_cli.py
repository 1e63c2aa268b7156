# tests/test_cli.py

import json

import numpy as np
import pytest
import yaml
from PIL import Image

from cli import load_labels, main_cli


@pytest.fixture
def image_dir(tmp_path):
    """Directory with four small images"""
    directory = tmp_path / "images"
    directory.mkdir()
    for name in ["delta.png", "alpha.png", "charlie.jpg", "bravo.png"]:
        img = np.random.randint(0, 255, (16, 16, 3), dtype=np.uint8)
        Image.fromarray(img).save(directory / name)
    return directory


@pytest.fixture
def config_path(tmp_path):
    """Config that keeps log files inside the test directory"""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        'log_level': 'WARNING',
        'log_dir': str(tmp_path / "logs"),
        'navigation': {'preload_radius': 1},
        'loader': {'max_workers': 2},
    }))
    return str(path)


def test_list_prints_sorted_names(image_dir, config_path, capsys):
    assert main_cli(['-c', config_path, 'list', str(image_dir)]) == 0

    out = capsys.readouterr().out
    names = [line.split()[-1] for line in out.splitlines()
             if line.strip() and not line.startswith(("1 /", "No"))]
    assert names[:4] == ["alpha.png", "bravo.png", "charlie.jpg", "delta.png"]
    assert "1 / 4" in out


def test_list_descending_with_exclude(image_dir, config_path, tmp_path, capsys):
    labels = tmp_path / "labels.json"
    labels.write_text(json.dumps({"bravo.png": [["cat", 0.8]]}))

    code = main_cli(['-c', config_path, 'list', str(image_dir), '--descending',
                     '--labels', str(labels), '--exclude', 'cat'])
    assert code == 0

    out = capsys.readouterr().out
    assert "bravo.png" not in out
    assert out.index("delta.png") < out.index("charlie.jpg") < out.index("alpha.png")
    assert "(filtered from 4)" in out


def test_list_missing_images(tmp_path, config_path, capsys):
    empty = tmp_path / "empty"
    empty.mkdir()

    assert main_cli(['-c', config_path, 'list', str(empty)]) == 1
    assert "No supported images" in capsys.readouterr().out


def test_walk_reports_cache_stats(image_dir, config_path, tmp_path, capsys):
    metrics_path = tmp_path / "metrics.json"
    code = main_cli(['-c', config_path, 'walk', str(image_dir), '-n', '8',
                     '-o', str(metrics_path)])
    assert code == 0

    out = capsys.readouterr().out
    assert "WALK REPORT" in out
    assert "Steps:         8 (0 failed)" in out
    assert "Cache capacity:3" in out

    metrics = json.loads(metrics_path.read_text())
    assert sum(1 for m in metrics if m['operation'] == 'show') == 8


def test_init_config(tmp_path, config_path, capsys):
    target = tmp_path / "new" / "config.yaml"

    assert main_cli(['-c', config_path, 'init-config', str(target)]) == 0
    assert yaml.safe_load(target.read_text())['navigation']['preload_radius'] == 20

    assert main_cli(['-c', config_path, 'init-config', str(target)]) == 1
    assert main_cli(['-c', config_path, 'init-config', str(target), '--force']) == 0


def test_load_labels_resolves_relative_names(image_dir, tmp_path):
    labels = tmp_path / "labels.json"
    labels.write_text(json.dumps({"alpha.png": [["dog", 0.7]]}))

    cache = load_labels(str(labels), image_dir)
    result = cache.lookup(str(image_dir / "alpha.png"))
    assert result[0].label == "dog"
    assert result[0].confidence == pytest.approx(0.7)
