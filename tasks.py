from pathlib import Path

from invoke import task
from invoke.exceptions import Exit

REPO_ROOT = Path(__file__).resolve().parent
EXAMPLE_CONFIG = REPO_ROOT / "config.example.yaml"


@task
def lint(c):
    c.run("ruff check src tests tasks.py")


@task
def format_check(c):
    c.run("ruff format --check src tests tasks.py")


@task
def test(c, k=""):
    selector = f' -k "{k}"' if k else ""
    c.run(f"pytest{selector}")


@task
def validate_config(c, path=str(EXAMPLE_CONFIG)):
    if not Path(path).exists():
        raise Exit(f"Missing config file: {path}")
    c.run(f"aesthetic-index validate {path}")


@task
def ci(c):
    lint(c)
    format_check(c)
    test(c)
    validate_config(c)
