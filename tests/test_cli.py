"""Tests for the command line entry point."""

import sqlite3
from pathlib import Path
from unittest.mock import patch

import pytest
from PIL import Image

from conftest import png_bytes
from jamgrid.cli import build_parser, build_settings, main
from jamgrid.config import Settings

BATCH = "20250114-093000"


def _folder_args(root: Path) -> list[str]:
    return [
        "--ss-folder", str(root / "ss"),
        "--mask-folder", str(root / "mask"),
        "--db-folder", str(root / "db"),
        "--ss-comb-folder", str(root / "ss-comb"),
        "--mask-comb-folder", str(root / "mask-comb"),
        "--isolate-folder", str(root / "ss-iso"),
    ]


@pytest.fixture
def env_settings():
    settings = Settings(local_database_url=None, mosaic_rows=1, mosaic_cols=2, skip_cells={})
    with patch("jamgrid.cli.get_settings", return_value=settings):
        yield settings


class TestParser:
    """Test argument parsing."""

    def test_modes_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--ss", "--analyze", "2025"])

    def test_defaults_to_periodic_mode(self):
        args = build_parser().parse_args([])
        assert not args.ss and not args.serve
        assert args.analyze == "" and args.isolate == ""

    def test_folder_flags_override_settings(self, tmp_path, env_settings):
        args = build_parser().parse_args(["--db-folder", str(tmp_path / "db")])
        settings = build_settings(args)

        assert settings.db_folder == tmp_path / "db"
        assert settings.ss_folder == Path("ss")
        assert settings.local_db_url.endswith(f"{tmp_path / 'db' / 'traffic.db'}")


class TestMain:
    """Test running modes end to end."""

    def test_analyze_prefix(self, tmp_path, env_settings):
        ss = tmp_path / "ss"
        ss.mkdir()
        Image.new("RGB", (1280, 800), (255, 207, 67)).save(ss / f"{BATCH}-x0-y0.png")

        main(["--analyze", BATCH, *_folder_args(tmp_path)])

        with sqlite3.connect(tmp_path / "db" / "traffic.db") as conn:
            rows = conn.execute("SELECT tile_key, yellow, x, y FROM traffic").fetchall()
        assert rows == [(f"{BATCH}-x0-y0.png", 850 * 520, 0, 0)]
        assert (tmp_path / "mask" / f"{BATCH}-x0-y0.png").exists()
        assert (tmp_path / "ss-comb" / f"{BATCH}.png").exists()

    def test_isolate(self, tmp_path, env_settings):
        comb = tmp_path / "ss-comb"
        comb.mkdir(parents=True)
        (comb / f"{BATCH}.png").write_bytes(png_bytes(Image.new("RGB", (1700, 520))))

        main(["--isolate", "1,0", *_folder_args(tmp_path)])

        with Image.open(tmp_path / "ss-iso" / f"{BATCH}.png") as cell:
            assert cell.size == (850, 520)

    def test_bad_isolate_cell_exits(self, tmp_path, env_settings):
        with pytest.raises(SystemExit) as exc_info:
            main(["--isolate", "nope", *_folder_args(tmp_path)])
        assert exc_info.value.code == 1

    def test_startup_failure_exits(self, tmp_path, env_settings):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a folder")

        with pytest.raises(SystemExit) as exc_info:
            main(["--analyze", BATCH, "--ss-folder", str(blocker / "ss")])
        assert exc_info.value.code == 1
