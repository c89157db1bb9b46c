from __future__ import annotations

from datetime import datetime
import logging
from typing import Iterable, List, Optional, Sequence

from .config import ConfigError, PipelineConfig
from .progress import ProgressLog
from .steps import STEP_FUNCTIONS
from .utils import LOG_FORMAT, get_logger


STEP_SEQUENCE: Sequence[tuple[str, str]] = (
    ("step01_encode_segregation", "encode_segregation"),
    ("step02_export_backcross", "export_backcross"),
    ("step03_export_carthagene", "export_carthagene"),
    ("step04_carthagene_maps", "carthagene_maps"),
    ("step05_export_mstmap", "export_mstmap"),
    ("step06_mstmap_maps", "mstmap_maps"),
    ("step07_clone_check", "clone_check"),
    ("step08_reconcile_phase", "reconcile_phase"),
    ("step09_rqtl_maps", "rqtl_maps"),
)

STEP_ORDER: Sequence[str] = tuple(primary for primary, _ in STEP_SEQUENCE)
STEP_ALIASES = {alias: primary for primary, alias in STEP_SEQUENCE}
STEP_ALIASES.update({primary: primary for primary, _ in STEP_SEQUENCE})


class LinkageMapPipeline:
    def __init__(self, config: PipelineConfig):
        self.config = config
        self.logger = get_logger()

    def configured_steps(self) -> List[str]:
        steps_cfg = self.config.get("steps", default={})
        if not isinstance(steps_cfg, dict):
            raise ConfigError("steps must be a mapping in the YAML configuration")
        configured: List[str] = []
        for primary, short in STEP_SEQUENCE:
            cfg = steps_cfg.get(primary)
            if not isinstance(cfg, dict):
                cfg = steps_cfg.get(short)
            if isinstance(cfg, dict):
                configured.append(primary)
        return configured

    def available_steps(self) -> List[str]:
        return list(STEP_ORDER)

    def select_steps(self, selected_steps: Iterable[str]) -> List[str]:
        tokens: List[str] = []
        for token in selected_steps:
            if token is None:
                continue
            tokens.extend(part.strip() for part in str(token).split(",") if part.strip())

        unknown = [token for token in tokens if STEP_ALIASES.get(token) not in STEP_FUNCTIONS]
        if unknown:
            raise ConfigError(f"Unknown step(s): {', '.join(unknown)}")
        requested = {STEP_ALIASES[token] for token in tokens}
        # Run in pipeline order regardless of the order given on the command line.
        return [step for step in STEP_ORDER if step in requested]

    def run(self, selected_steps: Optional[Iterable[str]] = None, dry_run: bool = False) -> None:
        if selected_steps is not None:
            selection = list(selected_steps)
            run_order = self.select_steps(selection)
            if not run_order:
                self.logger.warning("No matching steps to run for selection: %s", selection)
                return
        else:
            run_order = self.configured_steps()

        log_handler: logging.Handler | None = None
        progress: ProgressLog | None = None
        current_step: Optional[str] = None
        try:
            log_dir = self.config.root / "outputs" / "run_history"
            log_dir.mkdir(parents=True, exist_ok=True)
            start_time = datetime.now()
            suffix = "_dryrun" if dry_run else ""
            session_name = f"run_{start_time.strftime('%Y%m%d_%H%M%S')}{suffix}"
            progress = ProgressLog(
                log_dir / f"{session_name}.json",
                session=session_name,
                dry_run=dry_run,
                run_order=run_order,
                started_at=start_time,
            )

            log_handler = logging.FileHandler(log_dir / f"{session_name}.log", encoding="utf-8")
            log_handler.setFormatter(logging.Formatter(LOG_FORMAT, "%H:%M:%S"))
            self.logger.addHandler(log_handler)
            self.logger.info("Run started (dry_run=%s): %s", dry_run, ", ".join(run_order))

            if dry_run:
                for step in run_order:
                    progress.plan_step(step)
                    self.logger.info("[dry-run] %s", step)
                progress.finish(status="dry_run")
                self.logger.info("Dry run complete")
                return

            for step in run_order:
                current_step = step
                progress.start_step(step)
                STEP_FUNCTIONS[step](self.config)
                progress.complete_step(step)
            progress.finish(status="completed")
            self.logger.info("Run complete")
        except Exception as exc:
            if progress is not None:
                if current_step is not None:
                    try:
                        progress.fail_step(current_step, message=str(exc))
                    except Exception:
                        # Best effort: avoid shadowing the original error.
                        pass
                try:
                    progress.finish(status="failed", message=str(exc))
                except Exception:
                    pass
            raise
        finally:
            if log_handler is not None:
                self.logger.removeHandler(log_handler)
                log_handler.close()


__all__ = ["LinkageMapPipeline", "STEP_ORDER"]
