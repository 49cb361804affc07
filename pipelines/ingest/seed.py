"""Plain-text name lists (seed universe, benchmark list)."""

from __future__ import annotations

from pathlib import Path

DEFAULT_SEED_PATH = Path("benchmarks/seed-universe.txt")
DEFAULT_BENCHMARK_PATH = Path("benchmarks/known-neolabs.txt")


def parse_name_list(contents: str) -> list[str]:
    """Non-blank lines in order, skipping `#` comments."""
    names: list[str] = []
    for line in contents.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            names.append(stripped)
    return names


def load_name_list(path: Path | str) -> list[str]:
    return parse_name_list(Path(path).read_text(encoding="utf-8"))
