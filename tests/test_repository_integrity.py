"""Repository-level checks on packaging and declared dependencies."""

from __future__ import annotations

import ast
import re
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SOURCE_PACKAGES = ("app", "tanyaayomi")
FIRST_PARTY = set(SOURCE_PACKAGES)

# Import name -> distribution that provides it.
DISTRIBUTIONS = {
    "fastapi": "fastapi",
    "starlette": "fastapi",
    "uvicorn": "uvicorn",
    "httpx": "httpx",
    "pydantic": "pydantic",
    "pydantic_settings": "pydantic-settings",
    "sqlalchemy": "sqlalchemy",
}


def _source_files() -> list[Path]:
    files: list[Path] = []
    for package in SOURCE_PACKAGES:
        files.extend(
            path
            for path in (REPO_ROOT / package).rglob("*.py")
            if "__pycache__" not in path.parts
        )
    return files


def _top_level_imports(path: Path) -> set[str]:
    tree = ast.parse(path.read_text(encoding="utf-8"))
    names: set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names.update(alias.name.split(".")[0] for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
            names.add(node.module.split(".")[0])
    return names


def _declared_dependencies() -> set[str]:
    text = (REPO_ROOT / "pyproject.toml").read_text(encoding="utf-8")
    block = re.search(r"^dependencies = \[(.*?)^\]", text, re.MULTILINE | re.DOTALL)
    assert block is not None, "pyproject.toml has no dependencies list"
    return {
        re.split(r"[\[<>=~! ]", entry, maxsplit=1)[0].lower()
        for entry in re.findall(r'"([^"]+)"', block.group(1))
    }


def test_third_party_imports_are_declared() -> None:
    declared = _declared_dependencies()
    missing: dict[str, str] = {}

    for path in _source_files():
        for name in _top_level_imports(path):
            if name in FIRST_PARTY or name in sys.stdlib_module_names or name == "__future__":
                continue
            distribution = DISTRIBUTIONS.get(name)
            if distribution is None or distribution not in declared:
                missing[name] = str(path.relative_to(REPO_ROOT))

    assert not missing, f"Undeclared third-party imports: {missing}"


def test_every_package_directory_is_installed() -> None:
    text = (REPO_ROOT / "pyproject.toml").read_text(encoding="utf-8")
    listed = set(re.findall(r'"([a-z_.]+)"', re.search(r"^packages = \[(.*?)\]", text, re.MULTILINE).group(1)))

    found = {
        ".".join(path.parent.relative_to(REPO_ROOT).parts)
        for path in _source_files()
    }

    assert found <= listed, f"Packages missing from pyproject.toml: {sorted(found - listed)}"


def test_package_version_matches_pyproject() -> None:
    import app

    text = (REPO_ROOT / "pyproject.toml").read_text(encoding="utf-8")
    version = re.search(r'^version = "([^"]+)"', text, re.MULTILINE)

    assert version is not None
    assert app.__version__ == version.group(1)


def test_project_readme_exists() -> None:
    text = (REPO_ROOT / "pyproject.toml").read_text(encoding="utf-8")
    readme = re.search(r'^readme = "([^"]+)"', text, re.MULTILINE)

    assert readme is not None
    assert readme.group(1) == "README.md"
    assert (REPO_ROOT / readme.group(1)).is_file()
