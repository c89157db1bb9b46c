#!/usr/bin/env python
"""Quick health check for pipeline inputs and mapping-engine executables."""

from __future__ import annotations

import argparse
import os
import shutil
from pathlib import Path
from typing import Iterable, Optional

import yaml


OK_MARK = "[OK]"
MISS_MARK = "[MISSING]"

TOOLS = (
    ("CarthaGene", "carthagene_executable", "CARTHAGENE_PATH", "carthagene"),
    ("MSTmap", "mstmap_executable", "MSTMAP_PATH", "mstmap"),
    ("Rscript", "rscript_executable", "RSCRIPT_PATH", "Rscript"),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Validate expected inputs for the linkage-map pipeline")
    parser.add_argument(
        "--config",
        default="config/pipeline.yaml",
        type=Path,
        help="Path to the pipeline configuration file",
    )
    return parser


def load_config(path: Path) -> dict:
    if not path.exists():
        raise SystemExit(f"Config file not found: {path}")
    return yaml.safe_load(path.read_text(encoding="utf-8")) or {}


def check_files(paths: Iterable[tuple[str, Optional[Path]]]) -> bool:
    ok = True
    for label, path in paths:
        if path and path.exists():
            print(f"{OK_MARK} {label}: {path}")
        else:
            print(f"{MISS_MARK} {label}: {path if path else 'not set'}")
            ok = False
    return ok


def find_tool(configured: Optional[str], env_var: str, default_name: str) -> Optional[str]:
    candidate = configured or os.environ.get(env_var) or default_name
    return shutil.which(candidate) or (candidate if Path(candidate).exists() else None)


def main() -> int:
    args = build_parser().parse_args()
    config = load_config(args.config)
    root = (args.config.parent / config.get("project_root", ".")).resolve()

    genotypes = config.get("paths", {}).get("genotypes")
    print("Checking required input files...")
    inputs_ok = check_files([("Genotype table", root / genotypes if genotypes else None)])

    parents = config.get("parents") or []
    if isinstance(parents, dict):
        parents = [parents.get("parent1"), parents.get("parent2")]
    if len(parents) == 2 and all(parents):
        print(f"{OK_MARK} Parents: {', '.join(map(str, parents))}")
    else:
        print(f"{MISS_MARK} Parents: expected two identifiers, got {parents!r}")
        inputs_ok = False

    print("\nChecking mapping engines (only needed for the steps that call them)...")
    tools = config.get("tools", {}) or {}
    for label, key, env_var, default_name in TOOLS:
        found = find_tool(tools.get(key), env_var, default_name)
        print(f"{OK_MARK if found else MISS_MARK} {label}: {found or 'not found'}")

    return 0 if inputs_ok else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
