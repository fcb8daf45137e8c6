import subprocess
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]


def _run(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, *args],
        cwd=ROOT,
        capture_output=True,
        text=True,
        timeout=30,
    )


def test_cli_help_lists_commands():
    result = _run("main.py", "--help")
    output = (result.stdout or "") + (result.stderr or "")
    assert result.returncode == 0
    assert "image" in output
    assert "server" in output


def test_cli_without_command_prints_help_and_fails():
    result = _run("main.py")
    assert result.returncode == 1
    assert "usage" in (result.stdout or "").lower()
