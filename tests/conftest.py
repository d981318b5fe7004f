from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mediawall.bootstrap import Bootstrapper
from mediawall.config import AppConfig


@pytest.fixture()
def temp_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AppConfig:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "videos").mkdir()
    public = tmp_path / "public"
    public.mkdir()
    (public / "index.html").write_text("<!doctype html><title>wall</title>", encoding="utf-8")

    config = AppConfig.from_mapping(
        {
            "media_root": "videos",
            "public_root": "public",
            "data_root": "data",
            "likes_file": "data/likes.json",
            "suggestions_file": "data/suggestions.json",
            "existential_texts_file": "data/existential_texts.json",
            "history_file": "autoimprove/history.jsonl",
            "report_file": "autoimprove/reports.md",
        },
        base_path=tmp_path,
    )

    Bootstrapper(config).initialize()
    return config
