import os
import sys

import pytest

# Ensure `import placefish` resolves from a plain checkout without installing.
repo_dir = os.path.abspath(os.path.dirname(__file__))
if repo_dir not in sys.path:
    sys.path.insert(0, repo_dir)


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "-S",
        "--search",
        action="store_true",
        default=False,
        dest="run_search_slow",
        help="Run tests marked with @pytest.mark.search_slow (long-running search checks)",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    if not config.getoption("run_search_slow"):
        skip_slow = pytest.mark.skip(
            reason="use -S/--search to enable search smoke tests"
        )
        for item in items:
            if "search_slow" in item.keywords:
                item.add_marker(skip_slow)
