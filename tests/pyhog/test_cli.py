"""Tests for the pyhog command line."""

import os

import pytest
from pyhog import main, parse_args


@pytest.fixture
def tree(tmp_path):
    root = tmp_path / "root"
    (root / "logs").mkdir(parents=True)
    (root / "cache").mkdir()
    (root / "logs" / "app.log").write_bytes(os.urandom(128 * 1024))
    (root / "cache" / "blob.bin").write_bytes(os.urandom(96 * 1024))
    return root


class TestParseArgs:
    """Test parse_args defaults and flags."""

    def test_defaults(self):
        args = parse_args([])
        assert args.paths == ["."]
        assert args.cross_filesystems is False
        assert args.follow_symlinks is False
        assert args.html is False
        assert args.pages is None
        assert args.width is None

    def test_flags(self):
        args = parse_args(
            ["-X", "-L", "--html", "--table", "-w", "30", "-p", "40", "out", "-m", "1MB", "a", "b"]
        )
        assert args.paths == ["a", "b"]
        assert args.cross_filesystems is True
        assert args.follow_symlinks is True
        assert args.table is True
        assert args.width == 30
        assert args.pages == ["40", "out"]
        assert args.min_size == "1MB"

    def test_repeated_patterns(self):
        args = parse_args(["-i", "/logs/,/var/", "-i", "/srv/", "-e", "tmp"])
        assert args.include == ["/logs/,/var/", "/srv/"]
        assert args.exclude == ["tmp"]


class TestMain:
    """Test main end to end."""

    def test_text_report(self, tree, capsys):
        main([str(tree), "-m", "32"])
        out = capsys.readouterr().out
        lines = out.splitlines()
        assert lines[0].startswith(str(tree))
        assert str(tree / "logs") in out
        assert str(tree / "logs" / "app.log") in out
        assert out.index(str(tree / "logs") + " ") < out.index(str(tree / "cache") + " ")

    def test_html_report(self, tree, capsys):
        main([str(tree), "-m", "32", "--html", "--table"])
        out = capsys.readouterr().out.splitlines()
        assert out[0] == "<table>"
        assert out[-1] == "</table>"
        assert any("<th" in line for line in out)

    def test_exclude(self, tree, capsys):
        main([str(tree), "-m", "32", "-e", "/cache"])
        out = capsys.readouterr().out
        assert "cache" not in out
        assert "app.log" in out

    def test_nothing_above_threshold(self, tree, capsys):
        main([str(tree), "-m", "10GB"])
        assert capsys.readouterr().out == ""

    def test_pages(self, tree, tmp_path):
        prefix = tmp_path / "report"
        main([str(tree), "-m", "32", "-p", "2", str(prefix)])
        pages = sorted(p.name for p in tmp_path.glob("report-*.txt"))
        assert pages[0] == "report-0000.txt"
        assert len(pages) >= 2

    def test_unwritable_pages(self, tree, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main([str(tree), "-m", "32", "-p", "2", str(tmp_path / "missing" / "report")])
        assert exc.value.code == 1

    def test_missing_root(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main([str(tmp_path / "missing")])
        assert exc.value.code == 1

    def test_invalid_size(self, tree):
        with pytest.raises(SystemExit) as exc:
            main([str(tree), "-m", "lots"])
        assert exc.value.code == 1

    def test_negative_size(self, tree):
        with pytest.raises(SystemExit) as exc:
            main([str(tree), "-m", "-1"])
        assert exc.value.code == 1

    def test_infinite_size(self, tree):
        with pytest.raises(SystemExit) as exc:
            main([str(tree), "-m", "inf"])
        assert exc.value.code == 1

    def test_invalid_pattern(self, tree):
        with pytest.raises(SystemExit) as exc:
            main([str(tree), "-i", "("])
        assert exc.value.code == 1

    def test_invalid_rows(self, tree):
        with pytest.raises(SystemExit) as exc:
            main([str(tree), "-p", "0", "out"])
        assert exc.value.code == 1
