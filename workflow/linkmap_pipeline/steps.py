from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .adapters import asmap, backcross, carthagene
from .config import ConfigError, PipelineConfig
from .engine import EngineConfig, EngineSession, ScratchSpace, open_session, order_groups, run_batch
from .genotypes import DEFAULT_MISSING_CODES, read_genotype_table
from .maps import LinkageGroupAssignment, MarkerInfo, OrderedMap, write_ordered_maps
from .phase import reconcile_phase
from .segregation import SegregationTable, SymbolAliases, encode_segregation
from .utils import ensure_parent, get_logger, step_logger


logger = get_logger()

PARENTS = (1, 2)


def _resolve_input_path(config: PipelineConfig, step_cfg: dict, key: str, fallback_keys: Iterable[str] | None = None) -> Path:
    raw = step_cfg.get(key)
    if raw:
        path = config.resolve_path(raw)
        if path is None:
            raise ConfigError(f"Input path for {key} is not set")
        return path
    if fallback_keys:
        fallback = config.path(*fallback_keys)
        if fallback:
            return fallback
    raise ConfigError(f"Missing input path for key '{key}' and no fallback provided")


def _load_step_config(config: PipelineConfig, primary: str, legacy: str | None = None):
    keys = [primary]
    if legacy and legacy != primary:
        keys.append(legacy)
    for key in keys:
        step_cfg = config.get("steps", key)
        if isinstance(step_cfg, dict):
            return step_cfg, key
    return None, primary


def _output_dir(config: PipelineConfig, step_key: str) -> Path:
    output_dir = config.path("steps", step_key, "output_dir")
    if output_dir is None:
        raise ConfigError(f"steps.{step_key}.output_dir must be set")
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def _aliases(config: PipelineConfig) -> SymbolAliases:
    return SymbolAliases.from_mapping(config.aliases())


def _segregation_table(config: PipelineConfig, step_cfg: dict) -> SegregationTable:
    path = _resolve_input_path(
        config,
        step_cfg,
        "segregation_tsv",
        fallback_keys=("steps", "step01_encode_segregation", "output_tsv"),
    )
    if not path.exists():
        raise ConfigError(f"Segregation table not found: {path} (run step01_encode_segregation first)")
    return SegregationTable.read_tsv(path)


def _parent_inputs(
    config: PipelineConfig, step_cfg: dict, key: str, upstream_step: str, pattern: str
) -> Dict[int, Path]:
    """Per-parent input files, given explicitly or derived from an upstream output_dir."""
    explicit = step_cfg.get(key)
    if isinstance(explicit, dict):
        inputs = {}
        for parent in PARENTS:
            raw = explicit.get(f"parent{parent}")
            if raw:
                inputs[parent] = config.resolve_path(raw)
        if not inputs:
            raise ConfigError(f"{key} must list parent1 and/or parent2 files")
        return inputs
    upstream = config.path("steps", upstream_step, "output_dir")
    if upstream is None:
        raise ConfigError(f"Missing {key} and steps.{upstream_step}.output_dir is not set")
    return {parent: upstream / pattern.format(parent=parent) for parent in PARENTS}


def _resolve_executable(
    config: PipelineConfig | None,
    tool_key: str,
    env_vars: Sequence[str],
    default_name: str,
) -> str:
    candidate = None
    if config is not None:
        configured = config.get("tools", tool_key)
        if configured:
            resolved = config.resolve_path(configured) if ("/" in str(configured) or "\\" in str(configured)) else None
            candidate = str(resolved) if resolved else str(configured)
    if not candidate:
        for var in env_vars:
            env_override = os.environ.get(var)
            if env_override:
                candidate = env_override
                break
    if not candidate:
        found = shutil.which(default_name)
        if not found:
            raise ConfigError(
                f"{default_name} executable not found. Add it to PATH, set {'/'.join(env_vars)}, "
                f"or configure tools.{tool_key}."
            )
        candidate = found
    return candidate


def _resolve_rscript(config: PipelineConfig | None) -> str:
    return _resolve_executable(config, "rscript_executable", ("RSCRIPT_PATH", "RSCRIPT_EXECUTABLE"), "Rscript")


def _run_r_script(script: Path, args: List[object], config: PipelineConfig | None = None) -> None:
    rscript = _resolve_rscript(config)
    run_batch([rscript, str(script)] + [str(arg) for arg in args])


def encode_segregation_step(config: PipelineConfig) -> None:
    step_cfg, step_key = _load_step_config(config, "step01_encode_segregation", "encode_segregation")
    if step_cfg is None:
        logger.info("Skipping step01_encode_segregation (not configured)")
        return

    input_path = _resolve_input_path(config, step_cfg, "genotypes", fallback_keys=("paths", "genotypes"))
    output_path = config.path("steps", step_key, "output_tsv", create_parent=True)
    if output_path is None:
        raise ConfigError("steps.step01_encode_segregation.output_tsv must be set")
    summary_path = config.path("steps", step_key, "summary_tsv", create_parent=True)

    sep = step_cfg.get("sep", "\t")
    missing_codes = [str(code) for code in step_cfg.get("missing_codes", DEFAULT_MISSING_CODES)]
    aliases = _aliases(config) if config.aliases() else None

    with step_logger("Encode segregation types"):
        matrix = read_genotype_table(input_path, sep=sep, missing_codes=missing_codes)
        result = encode_segregation(matrix, config.parents(), aliases)
        result.table.to_tsv(output_path)
        summary = result.summary
        if summary_path is not None:
            ensure_parent(summary_path)
            summary.as_frame().to_csv(summary_path, sep="\t", index=False)

        logger.info(
            "Segregating loci: kept %d of %d (non-segregating %d, parent missing %d, unclassified %d)",
            summary.kept,
            summary.total,
            summary.non_segregating,
            summary.missing_parent,
            summary.unclassified,
        )
        if summary.incompatible_calls:
            logger.warning("%d offspring calls incompatible with the parents were set missing",
                           summary.incompatible_calls)
        logger.info(
            "Segregation classes: %s",
            ", ".join(f"{name}={count}" for name, count in summary.class_counts.items()),
        )


def export_backcross(config: PipelineConfig) -> None:
    step_cfg, step_key = _load_step_config(config, "step02_export_backcross", "export_backcross")
    if step_cfg is None:
        logger.info("Skipping step02_export_backcross (not configured)")
        return

    output_dir = _output_dir(config, step_key)
    include_inverted = bool(step_cfg.get("include_inverted", True))
    aliases = _aliases(config)

    with step_logger("Export pseudo-testcross files for R/qtl"):
        table = _segregation_table(config, step_cfg)
        for parent in PARENTS:
            calls = backcross.testcross_calls(table, parent, aliases, include_inverted=include_inverted)
            output_path = output_dir / f"parent{parent}_backcross.csv"
            backcross.write_rqtl_csv(calls, output_path)
            logger.info("Parent %d: %d markers written to %s", parent, len(calls.markers), output_path)


def export_carthagene(config: PipelineConfig) -> None:
    step_cfg, step_key = _load_step_config(config, "step03_export_carthagene", "export_carthagene")
    if step_cfg is None:
        logger.info("Skipping step03_export_carthagene (not configured)")
        return

    output_dir = _output_dir(config, step_key)
    include_inverted = bool(step_cfg.get("include_inverted", True))
    aliases = _aliases(config)

    with step_logger("Export CarthaGene raw data sets"):
        table = _segregation_table(config, step_cfg)
        for parent in PARENTS:
            calls = backcross.testcross_calls(table, parent, aliases, include_inverted=include_inverted)
            raw_path = output_dir / f"parent{parent}.cg"
            raw_path.write_text(carthagene.encode_raw(calls), encoding="utf-8")
            individuals_path = output_dir / f"parent{parent}.individuals.txt"
            individuals_path.write_text("\n".join(calls.individuals) + "\n", encoding="utf-8")
            logger.info("Parent %d: %d markers written to %s", parent, len(calls.markers), raw_path)


def _carthagene_engine(config: PipelineConfig, step_cfg: dict, cwd: Optional[Path]) -> EngineConfig:
    executable = _resolve_executable(config, "carthagene_executable", ("CARTHAGENE_PATH",), "carthagene")
    extra_args = [str(arg) for arg in step_cfg.get("engine_args", [])]
    return EngineConfig(
        command=[executable, *extra_args],
        echo_command=str(step_cfg.get("echo_command", "puts {token}")),
        exit_command=step_cfg.get("exit_command", "exit"),
        close_timeout=float(step_cfg.get("close_timeout", 10.0)),
        cwd=cwd,
    )


def _carthagene_commands(dataset: Path, step_cfg: dict) -> carthagene.CarthaGeneCommands:
    commands = carthagene.CarthaGeneCommands(
        dataset=dataset,
        distance_threshold=float(step_cfg.get("distance_threshold", 0.3)),
        lod_threshold=float(step_cfg.get("lod_threshold", 3.0)),
    )
    overrides = step_cfg.get("pairwise_commands")
    if isinstance(overrides, dict):
        commands.pairwise_commands.update({str(k): str(v) for k, v in overrides.items()})
    order_cmds = step_cfg.get("order_commands")
    if order_cmds:
        commands.order_commands = [str(cmd) for cmd in order_cmds]
    return commands


def _carthagene_group(
    session: EngineSession, commands: carthagene.CarthaGeneCommands, statistic: str, layout: str
) -> Tuple[MarkerInfo, object, LinkageGroupAssignment]:
    session.send(commands.load())
    marker_info = carthagene.parse_marker_info(session.send(commands.marker_info()))
    pairwise = carthagene.parse_pairwise(session.send(commands.pairwise(statistic)), marker_info, statistic, layout)
    groups = carthagene.parse_groups(session.send(commands.group()), marker_info)
    return marker_info, pairwise, groups


def _carthagene_order(
    session: EngineSession, commands: carthagene.CarthaGeneCommands, group: int, marker_info: MarkerInfo
) -> List[OrderedMap]:
    response: List[str] = []
    for command in commands.order_group(group):
        response = session.send(command)
    maps = carthagene.parse_ordered_map(response, marker_info, default_group=str(group))
    if len(maps) == 1:
        return [OrderedMap(str(group), maps[0].markers)]
    return [OrderedMap(f"{group}.{ordered.group}", ordered.markers) for ordered in maps]


def carthagene_maps(config: PipelineConfig) -> None:
    step_cfg, step_key = _load_step_config(config, "step04_carthagene_maps", "carthagene_maps")
    if step_cfg is None:
        logger.info("Skipping step04_carthagene_maps (not configured)")
        return

    output_dir = _output_dir(config, step_key)
    datasets = _parent_inputs(config, step_cfg, "datasets", "step03_export_carthagene", "parent{parent}.cg")
    statistic = str(step_cfg.get("statistic", "lod"))
    layout = str(step_cfg.get("layout", "upper"))
    workers = int(step_cfg.get("workers", 1))

    for parent, dataset in datasets.items():
        if not dataset.exists():
            raise ConfigError(f"CarthaGene data set not found: {dataset}")
        individuals_path = dataset.with_suffix(".individuals.txt")
        individuals = individuals_path.read_text(encoding="utf-8").split() if individuals_path.exists() else None
        encoded = carthagene.read_raw(dataset.read_text(encoding="utf-8"), individuals) if individuals else None
        commands = _carthagene_commands(dataset.resolve(), step_cfg)

        with step_logger(f"Group and order parent {parent} markers with CarthaGene"), \
                ScratchSpace(config.scratch_dir(), prefix=f"carthagene_p{parent}_") as scratch:
            engine_cfg = _carthagene_engine(config, step_cfg, scratch.directory)
            with open_session(engine_cfg) as session:
                marker_info, pairwise, groups = _carthagene_group(session, commands, statistic, layout)
                if encoded is not None:
                    backcross.verify_round_trip(encoded.index, marker_info.loci)
                if workers <= 1:
                    ordered = order_groups(
                        groups.groups(), lambda group: _carthagene_order(session, commands, group, marker_info)
                    )

            if workers > 1:
                def order_in_own_session(group: int) -> List[OrderedMap]:
                    with open_session(engine_cfg) as own:
                        own.send(commands.load())
                        own.send(commands.group())
                        return _carthagene_order(own, commands, group, marker_info)

                ordered = order_groups(groups.groups(), order_in_own_session, workers=workers)

        maps = [ordered_map for group in groups.groups() for ordered_map in ordered[group]]
        marker_info.frame.to_csv(output_dir / f"parent{parent}_markers.tsv", sep="\t", index=False)
        pairwise.to_long().to_csv(output_dir / f"parent{parent}_{statistic}.tsv", sep="\t", index=False, na_rep="NA")
        groups.to_tsv(output_dir / f"parent{parent}_groups.tsv")
        write_ordered_maps(maps, output_dir / f"parent{parent}_maps.tsv")
        logger.info(
            "Parent %d: %d markers in %d groups, %d unresolved pairs",
            parent,
            len(groups),
            len(groups.groups()),
            pairwise.missing_pairs(),
        )


def export_mstmap(config: PipelineConfig) -> None:
    step_cfg, step_key = _load_step_config(config, "step05_export_mstmap", "export_mstmap")
    if step_cfg is None:
        logger.info("Skipping step05_export_mstmap (not configured)")
        return

    output_dir = _output_dir(config, step_key)
    maf_threshold = float(step_cfg.get("maf_threshold", 0.05))
    include_inverted = bool(step_cfg.get("include_inverted", False))
    try:
        params = asmap.MSTmapParameters.from_mapping(step_cfg.get("parameters"))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"steps.{step_key}.parameters: {exc}") from exc

    with step_logger("Export MSTmap input files"):
        table = _segregation_table(config, step_cfg)
        for parent in PARENTS:
            calls = asmap.testcross_codes(table, parent, include_inverted=include_inverted)
            kept, dropped = asmap.filter_minor_allele(calls, maf_threshold)
            output_path = output_dir / f"parent{parent}.mstmap.txt"
            output_path.write_text(asmap.encode_mstmap(kept, params), encoding="utf-8")
            logger.info(
                "Parent %d: kept %d of %d markers (minor frequency >= %.3f)",
                parent,
                len(kept.markers),
                len(calls.markers),
                maf_threshold,
            )
            if dropped:
                logger.info("Parent %d: %d markers below the minor frequency threshold", parent, dropped)


def mstmap_maps(config: PipelineConfig) -> None:
    step_cfg, step_key = _load_step_config(config, "step06_mstmap_maps", "mstmap_maps")
    if step_cfg is None:
        logger.info("Skipping step06_mstmap_maps (not configured)")
        return

    output_dir = _output_dir(config, step_key)
    inputs = _parent_inputs(config, step_cfg, "inputs", "step05_export_mstmap", "parent{parent}.mstmap.txt")
    executable = _resolve_executable(config, "mstmap_executable", ("MSTMAP_PATH",), "mstmap")

    for parent, input_path in inputs.items():
        if not input_path.exists():
            raise ConfigError(f"MSTmap input not found: {input_path}")
        encoded = asmap.read_mstmap_input(input_path.read_text(encoding="utf-8"))
        with step_logger(f"Build parent {parent} maps with MSTmap"), \
                ScratchSpace(config.scratch_dir(), prefix=f"mstmap_p{parent}_") as scratch:
            map_path = scratch.path("map.txt")
            run_batch([executable, input_path, map_path], cwd=scratch.directory)
            if not map_path.exists():
                raise ConfigError(f"Expected MSTmap output not found: {map_path}")
            maps = asmap.parse_mstmap_map(map_path.read_text(encoding="utf-8"), known_loci=encoded.index)

        labels = {name: idx for idx, name in enumerate(maps, start=1)}
        assignment = LinkageGroupAssignment(
            (locus, labels[name]) for name, ordered in maps.items() for locus in ordered.loci
        )
        write_ordered_maps(maps.values(), output_dir / f"parent{parent}_mstmap_maps.tsv")
        assignment.to_tsv(output_dir / f"parent{parent}_mstmap_groups.tsv")
        pd.DataFrame({"group": list(labels.values()), "engine_group": list(labels.keys())}).to_csv(
            output_dir / f"parent{parent}_mstmap_group_names.tsv", sep="\t", index=False
        )
        placed = len(assignment)
        if placed != len(encoded.index):
            logger.warning("Parent %d: %d of %d markers were not placed by MSTmap",
                           parent, len(encoded.index) - placed, len(encoded.index))
        logger.info("Parent %d: %d groups, %d markers placed", parent, len(maps), placed)


def clone_check(config: PipelineConfig) -> None:
    step_cfg, step_key = _load_step_config(config, "step07_clone_check", "clone_check")
    if step_cfg is None:
        logger.info("Skipping step07_clone_check (not configured)")
        return

    output_dir = _output_dir(config, step_key)
    inputs = _parent_inputs(config, step_cfg, "inputs", "step05_export_mstmap", "parent{parent}.mstmap.txt")
    threshold = float(step_cfg.get("threshold", asmap.DEFAULT_CLONE_THRESHOLD))
    write_matrix = bool(step_cfg.get("write_matrix", False))

    with step_logger("Detect duplicate genotypes"):
        for parent, input_path in inputs.items():
            if not input_path.exists():
                raise ConfigError(f"MSTmap input not found: {input_path}")
            calls = asmap.read_mstmap_input(input_path.read_text(encoding="utf-8"))
            congruence = asmap.congruence_matrix(calls)
            clones = asmap.detect_clones(congruence, threshold)
            clones.to_csv(output_dir / f"parent{parent}_clones.tsv", sep="\t", index=False)
            if write_matrix:
                congruence.to_csv(output_dir / f"parent{parent}_congruence.tsv", sep="\t", na_rep="NA")
            if clones.empty:
                logger.info("Parent %d: no individual pairs at or above %.2f congruence", parent, threshold)
            else:
                logger.warning("Parent %d: %d likely duplicate pairs (congruence >= %.2f)",
                               parent, len(clones), threshold)


def reconcile_phase_step(config: PipelineConfig) -> None:
    step_cfg, step_key = _load_step_config(config, "step08_reconcile_phase", "reconcile_phase")
    if step_cfg is None:
        logger.info("Skipping step08_reconcile_phase (not configured)")
        return

    output_path = config.path("steps", step_key, "output_tsv", create_parent=True)
    if output_path is None:
        raise ConfigError("steps.step08_reconcile_phase.output_tsv must be set")
    crosstab_path = config.path("steps", step_key, "crosstab_tsv", create_parent=True)
    group_files = _parent_inputs(config, step_cfg, "groups", "step04_carthagene_maps", "parent{parent}_groups.tsv")
    missing_files = [str(path) for path in group_files.values() if not path.exists()]
    if len(group_files) != 2 or missing_files:
        raise ConfigError(f"Group assignments for both parents are required; missing: {', '.join(missing_files)}")

    reference = step_cfg.get("reference_groups")
    if reference is not None:
        if not isinstance(reference, dict):
            raise ConfigError("reference_groups must map parent1/parent2 to lists of group labels")
        reference = {
            parent: [int(group) for group in reference.get(f"parent{parent}", [])]
            for parent in PARENTS
            if reference.get(f"parent{parent}")
        }

    with step_logger("Reconcile linkage phase"):
        table = _segregation_table(config, step_cfg)
        assignments = {parent: LinkageGroupAssignment.read_tsv(path) for parent, path in group_files.items()}
        result = reconcile_phase(
            table,
            assignments[1],
            assignments[2],
            reference=reference,
            duplicate_symbol=_aliases(config).duplicate,
        )
        result.table.to_tsv(output_path)
        if crosstab_path is not None:
            result.crosstab.to_csv(crosstab_path, sep="\t")
        logger.info("Phased table saved to %s", output_path)
        logger.info("Segregation x phase:\n%s", result.crosstab.to_string())


def rqtl_maps(config: PipelineConfig) -> None:
    step_cfg, step_key = _load_step_config(config, "step09_rqtl_maps", "rqtl_maps")
    if step_cfg is None:
        logger.info("Skipping step09_rqtl_maps (not configured)")
        return

    script = _resolve_input_path(config, step_cfg, "script")
    inputs = _parent_inputs(config, step_cfg, "inputs", "step02_export_backcross", "parent{parent}_backcross.csv")
    output_dir = _output_dir(config, step_key)

    with step_logger("Build R/qtl maps via R"):
        for parent, input_path in inputs.items():
            if not input_path.exists():
                raise ConfigError(f"R/qtl input not found: {input_path}")
            _run_r_script(script, [input_path, output_dir / f"parent{parent}_rqtl_map.tsv"], config)
        logger.info("R/qtl outputs written to %s", output_dir)


STEP_FUNCTIONS = {
    "step01_encode_segregation": encode_segregation_step,
    "step02_export_backcross": export_backcross,
    "step03_export_carthagene": export_carthagene,
    "step04_carthagene_maps": carthagene_maps,
    "step05_export_mstmap": export_mstmap,
    "step06_mstmap_maps": mstmap_maps,
    "step07_clone_check": clone_check,
    "step08_reconcile_phase": reconcile_phase_step,
    "step09_rqtl_maps": rqtl_maps,
}
