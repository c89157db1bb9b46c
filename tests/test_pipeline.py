import json
import logging
import sys

import pandas as pd
import pytest
import yaml

from linkmap_pipeline.cli import main
from linkmap_pipeline.config import ConfigError, load_config
from linkmap_pipeline.maps import LinkageGroupAssignment, read_ordered_maps
from linkmap_pipeline.pipeline import STEP_ORDER, LinkageMapPipeline
from linkmap_pipeline.segregation import SegregationTable

from conftest import FAKE_ENGINE


@pytest.fixture
def config_path(tmp_path, genotype_tsv):
    data = {
        "project_root": ".",
        "paths": {"genotypes": genotype_tsv.name},
        "parents": {"parent1": "P1", "parent2": "P2"},
        "aliases": {"homozygous-symbol": "A", "heterozygous-symbol": "H", "missing-symbol": "-"},
        "scratch_dir": "outputs/scratch",
        "tools": {"carthagene_executable": sys.executable},
        "steps": {
            "step01_encode_segregation": {
                "output_tsv": "outputs/segregation/segregation.tsv",
                "summary_tsv": "outputs/segregation/summary.tsv",
            },
            "export_backcross": {"output_dir": "outputs/rqtl"},
            "step03_export_carthagene": {"output_dir": "outputs/carthagene"},
            "step04_carthagene_maps": {
                "output_dir": "outputs/carthagene/maps",
                "engine_args": [str(FAKE_ENGINE)],
                "close_timeout": 5,
            },
            "step05_export_mstmap": {"output_dir": "outputs/asmap", "maf_threshold": 0.05},
            "step07_clone_check": {"output_dir": "outputs/asmap/clones", "write_matrix": True},
            "step08_reconcile_phase": {
                "output_tsv": "outputs/phase/phased.tsv",
                "crosstab_tsv": "outputs/phase/crosstab.tsv",
            },
        },
    }
    path = tmp_path / "pipeline.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


def test_config_accessors(config_path):
    config = load_config(config_path)
    assert config.parents() == ["P1", "P2"]
    assert config.aliases()["missing-symbol"] == "-"
    assert config.scratch_dir() == config.root / "outputs" / "scratch"


def test_config_errors(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "absent.yaml")

    path = tmp_path / "bad.yaml"
    path.write_text("parents: [P1, ~]\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="parents"):
        load_config(path).parents()


def test_configured_steps_follow_pipeline_order(config_path):
    pipeline = LinkageMapPipeline(load_config(config_path))
    assert pipeline.configured_steps() == [
        "step01_encode_segregation",
        "step02_export_backcross",
        "step03_export_carthagene",
        "step04_carthagene_maps",
        "step05_export_mstmap",
        "step07_clone_check",
        "step08_reconcile_phase",
    ]
    assert pipeline.available_steps() == list(STEP_ORDER)
    assert pipeline.select_steps(["clone_check", "step01_encode_segregation"]) == [
        "step01_encode_segregation",
        "step07_clone_check",
    ]
    with pytest.raises(ConfigError, match="Unknown step"):
        pipeline.select_steps(["step42"])


def test_dry_run_records_plan(config_path, tmp_path):
    LinkageMapPipeline(load_config(config_path)).run(dry_run=True)

    history = tmp_path / "outputs" / "run_history"
    latest = json.loads((history / "latest.json").read_text(encoding="utf-8"))
    assert latest["status"] == "dry_run"
    progress = json.loads((history / latest["progress_file"]).read_text(encoding="utf-8"))
    assert [entry["status"] for entry in progress["steps"]] == ["planned"] * 7
    assert not (tmp_path / "outputs" / "segregation").exists()


def test_full_run(config_path, tmp_path):
    LinkageMapPipeline(load_config(config_path)).run()
    outputs = tmp_path / "outputs"

    table = SegregationTable.read_tsv(outputs / "segregation" / "segregation.tsv")
    assert table.locus_ids == ["m1", "m2", "m3", "m7"]

    assert (outputs / "rqtl" / "parent1_backcross.csv").exists()
    assert (outputs / "carthagene" / "parent2.cg").read_text(encoding="utf-8").startswith("data type f2 backcross")

    groups = LinkageGroupAssignment.read_tsv(outputs / "carthagene" / "maps" / "parent2_groups.tsv")
    assert groups.members(1) == ["m2", "m7"]
    assert groups.members(2) == ["m2_d", "m7_d"]
    maps = read_ordered_maps(outputs / "carthagene" / "maps" / "parent2_maps.tsv")
    assert [ordered.group for ordered in maps] == ["1", "2"]
    assert maps[0].markers["position"].tolist() == [0.0, 5.0]
    lod = pd.read_csv(outputs / "carthagene" / "maps" / "parent2_lod.tsv", sep="\t")
    assert len(lod) == 6

    assert (outputs / "asmap" / "parent2.mstmap.txt").exists()
    assert (outputs / "asmap" / "clones" / "parent1_clones.tsv").exists()

    phased = SegregationTable.read_tsv(outputs / "phase" / "phased.tsv")
    assert phased.phase("m1") == "0-"
    assert phased.phase("m7") == "-0"
    assert phased.phase("m3") is None

    scratch = outputs / "scratch"
    assert not any(scratch.iterdir())

    latest = json.loads((outputs / "run_history" / "latest.json").read_text(encoding="utf-8"))
    assert latest["status"] == "completed"
    assert latest["last_completed_step"] == "step08_reconcile_phase"


def test_failed_step_is_recorded(config_path, tmp_path):
    pipeline = LinkageMapPipeline(load_config(config_path))
    with pytest.raises(ConfigError, match="Segregation table not found"):
        pipeline.run(selected_steps=["export_backcross"])

    history = tmp_path / "outputs" / "run_history"
    latest = json.loads((history / "latest.json").read_text(encoding="utf-8"))
    assert latest["status"] == "failed"
    progress = json.loads((history / latest["progress_file"]).read_text(encoding="utf-8"))
    assert progress["steps"][-1]["status"] == "failed"


def test_cli(config_path, tmp_path):
    assert main(["--config", str(config_path), "--list-steps"]) == 0
    assert main(["--config", str(tmp_path / "absent.yaml")]) == 1
    assert main(["--config", str(config_path), "--steps", "encode_segregation"]) == 0
    assert (tmp_path / "outputs" / "segregation" / "segregation.tsv").exists()


def test_cli_log_level_and_step_listing(config_path, caplog):
    logger = logging.getLogger("linkmap_pipeline")
    try:
        with caplog.at_level(logging.INFO, logger="linkmap_pipeline"):
            assert main(["--config", str(config_path), "--log-level", "info", "--list-steps"]) == 0
        assert "* step01_encode_segregation (encode_segregation)" in caplog.text
        assert "  step06_mstmap_maps (mstmap_maps)" in caplog.text

        assert main(["--config", str(config_path), "--log-level", "warning", "--dry-run"]) == 0
        assert logger.level == logging.WARNING
    finally:
        logger.setLevel(logging.INFO)

    with pytest.raises(SystemExit):
        main(["--config", str(config_path), "--list-steps", "--steps", "clone_check"])


def test_empty_step_selection_is_reported(config_path, caplog):
    pipeline = LinkageMapPipeline(load_config(config_path))
    with caplog.at_level(logging.WARNING, logger="linkmap_pipeline"):
        pipeline.run(selected_steps=iter(["", " , "]))
    assert "No matching steps to run for selection: ['', ' , ']" in caplog.text
