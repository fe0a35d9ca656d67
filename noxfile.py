import os
from pathlib import Path
import nox

# Reuse existing virtualenvs for faster runs
nox.options.reuse_existing_virtualenvs = True
# Default sessions when running "nox"
nox.options.sessions = ["lint", "unit", "integration"]

# Install the project with its test extra
COMMON_DEPS = ["-e", ".[test]"]

# Environment variables to propagate
PASSED_ENV_VARS = [
    "DATABASE_URL",
    "SECRET_KEY",
    "ADMIN_PHONES",
    "LOG_LEVEL",
]


def _set_env(session):
    """
    Propagate database and test-related environment variables into the session.
    The scheduler is disabled so tests drive the sweep themselves.
    """
    session.env["PYTHONPATH"] = str(Path.cwd())
    session.env["ENVIRONMENT"] = "test"
    session.env["SCHEDULER_ENABLED"] = "false"
    for var in PASSED_ENV_VARS:
        if var in os.environ:
            session.env[var] = os.environ[var]


@nox.session(name="lint")
def lint(session):
    """
    Code formatting, linting, and type-checks:
      - isort
      - black
      - flake8
      - mypy
    """
    _set_env(session)
    session.install("isort", "black", "flake8", "mypy")
    session.run("isort", "electionpoll/", "tests/")
    session.run("black", "electionpoll/", "tests/")
    session.run("flake8", "electionpoll/", "tests/")
    session.run("mypy", "electionpoll/")


@nox.session(name="unit")
def unit(session):
    """
    Run unit tests (in-memory SQLite).
    Usage:
      nox -s unit
      nox -s unit -- tests/unit/test_services/test_lottery.py::TestDrawWinner
    """
    _set_env(session)
    session.install(*COMMON_DEPS)
    tests = session.posargs or ["-m", "unit"]
    session.run(
        "pytest",
        *tests,
        "-vv",
        "--tb=short",
        "--cov=electionpoll",
        "--cov-report=term-missing",
        "--cov-report=html:.nox/htmlcov",
    )


@nox.session(name="integration")
def integration(session):
    """
    Run API and concurrency tests.
    Usage:
      nox -s integration
    """
    _set_env(session)
    session.install(*COMMON_DEPS)
    tests = session.posargs or ["-m", "integration"]
    session.run(
        "pytest",
        *tests,
        "-vv",
        "--tb=short",
    )
