import subprocess
import sys


def test_app_help_runs():
    proc = subprocess.run(
        [sys.executable, "-m", "ticket_queue.app", "-h"],
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 0
    out = proc.stdout + proc.stderr
    assert "main entrypoint" in out
    assert "service" in out
    assert "cashier" in out
    assert "request" in out


def test_generator_help_runs():
    proc = subprocess.run(
        [sys.executable, "-m", "ticket_queue.app", "generator", "-h"],
        capture_output=True,
        text=True,
        check=False,
    )
    assert proc.returncode == 0
    out = proc.stdout + proc.stderr
    assert "queue-id" in out
    assert "--rate" in out
