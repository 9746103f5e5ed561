import importlib

import pytest

from bookshelf_rec import config


def test_env_overrides_and_validation(monkeypatch):
    monkeypatch.setenv("BOOKSHELF_REQUEST_TIMEOUT", "2.5")
    monkeypatch.setenv("BOOKSHELF_SOURCE_RETRY_DELAY", "-1")  # should clamp to min
    monkeypatch.setenv("BOOKSHELF_SCORING_WORKERS", "0")  # min clamp

    cfg = importlib.reload(config)

    assert cfg.REQUEST_TIMEOUT == 2.5
    assert cfg.SOURCE_RETRY_DELAY == 0.0
    assert cfg.SCORING_WORKERS == 1


def test_db_path_respects_env(monkeypatch, tmp_path):
    db_path = tmp_path / "custom.db"
    monkeypatch.setenv("BOOKSHELF_DB", str(db_path))

    cfg = importlib.reload(config)

    assert cfg.DB_PATH == db_path


def test_invalid_env_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("BOOKSHELF_REQUEST_TIMEOUT", "soon")
    monkeypatch.setenv("BOOKSHELF_SOURCE_RETRIES", "many")
    monkeypatch.setenv("BOOKSHELF_SCORING_WORKERS", "bad-int")

    cfg = importlib.reload(config)

    assert cfg.REQUEST_TIMEOUT == 5.0
    assert cfg.SOURCE_MAX_RETRIES == 3
    assert cfg.SCORING_WORKERS == 1


def test_blend_weights_sum_to_one():
    cfg = importlib.reload(config)

    assert cfg.CONTENT_WEIGHT + cfg.BEHAVIOR_WEIGHT + cfg.POPULARITY_WEIGHT == pytest.approx(1.0)
    assert sum(cfg.SIMILARITY_WEIGHTS.values()) == pytest.approx(1.0)
    assert sum(cfg.BEHAVIOR_WEIGHTS.values()) == pytest.approx(1.0)
    assert sum(cfg.POPULARITY_WEIGHTS.values()) == pytest.approx(1.0)
    assert cfg.TREND_RECENT_WEIGHT + cfg.TREND_POPULARITY_WEIGHT == pytest.approx(1.0)
