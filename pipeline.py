#!/usr/bin/env python3
"""
MLOPS PIPELINE SCRIPT: Continuous Learning for Tire Analysis Models
===================================================================

This script drives the tire model lifecycle:
1. Data collection (sample store inventory)
2. Data labeling (auto-label unlabeled samples)
3. Model training (tread depth, condition, wear pattern)
4. Model evaluation (held-out metrics and report)
5. Model deployment (restart the model server)
6. Monitoring (periodic drift checks)

Usage:
    python pipeline.py                      # Run the full pipeline, then keep monitoring
    python pipeline.py --stage train        # Run only training
    python pipeline.py --stage evaluate     # Run only evaluation
    python pipeline.py --stage monitor      # Run the monitoring loop in the foreground
    python pipeline.py --stage rollback     # Restore the previous model versions and redeploy
    python pipeline.py --no-monitor         # Full pipeline, exit when done
"""

import argparse
import json
import logging
import signal
import sys
from datetime import datetime

from tire_ml.bootstrap import build_container
from tire_ml.config.settings import get_settings
from tire_ml.errors import TireMLError
from tire_ml.orchestration.orchestrator import PipelinePhase
from tire_ml.training.architectures import TASKS
from tire_ml.utils.logger import setup_logging

logger = logging.getLogger("Pipeline")

STAGE_PHASES = {
    "collect": PipelinePhase.DATA_COLLECTION,
    "label": PipelinePhase.DATA_LABELING,
    "train": PipelinePhase.MODEL_TRAINING,
    "evaluate": PipelinePhase.MODEL_EVALUATION,
    "deploy": PipelinePhase.MODEL_DEPLOYMENT,
}


def model_versions(container):
    """Active version of every stored model."""
    return {manifest.name: manifest.version for manifest in container.model_store.list_models()}


def rollback(container) -> int:
    """Restore the backed-up version of every model and restart the server."""
    restored = 0
    for task in TASKS.values():
        if not container.model_store.has_backup(task.model_name):
            logger.info(f"No backup for {task.model_name}")
            continue
        manifest = container.model_store.restore_previous(task.model_name)
        logger.info(f"Restored {task.model_name} v{manifest.version}")
        restored += 1
    models = model_versions(container)
    container.event_log.append(
        "model_rollback", "success" if restored else "skipped", restored=restored, models=models,
    )
    logger.info(f"Active models: {models}")

    if restored:
        container.deployer.restart()
        logger.info(f"Model server restarted at {container.deployer.url}")
    return 0


def print_summary(start_time, payload, models):
    elapsed = datetime.now() - start_time

    logger.info("=" * 70)
    logger.info("PIPELINE EXECUTION SUMMARY")
    logger.info("=" * 70)
    logger.info(f"Elapsed time: {elapsed}")
    logger.info(json.dumps(payload, indent=2, default=str))
    logger.info(f"Active models: {json.dumps(models)}")
    logger.info("=" * 70)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="MLOps pipeline for the tire analysis models",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--stage",
        choices=["full", "monitor", "rollback"] + list(STAGE_PHASES),
        default="full",
        help="Pipeline stage to run (default: full)",
    )
    parser.add_argument(
        "--no-monitor",
        action="store_true",
        help="Exit after the full pipeline instead of monitoring in the foreground",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(
        level="DEBUG" if args.verbose else settings.LOG_LEVEL,
        log_dir=settings.LOG_DIR if settings.LOG_TO_FILE else None,
        format_string=settings.LOG_FORMAT,
        file_prefix="pipeline",
    )

    container = build_container(settings)
    orchestrator = container.orchestrator

    def handle_sigint(signum, frame):
        logger.info("Interrupt received, shutting down")
        orchestrator.shutdown()

    signal.signal(signal.SIGINT, handle_sigint)
    signal.signal(signal.SIGTERM, handle_sigint)

    start_time = datetime.now()
    logger.info("=" * 70)
    logger.info(f"STARTING MLOPS PIPELINE (stage: {args.stage})")
    logger.info("=" * 70)

    try:
        if args.stage == "rollback":
            return rollback(container)

        if args.stage in STAGE_PHASES:
            result = orchestrator.run_single_phase(STAGE_PHASES[args.stage])
            print_summary(start_time, result.to_dict(), model_versions(container))
            return 0 if result.success else 1

        if args.stage == "full":
            run = orchestrator.run_full_pipeline(trigger="cli")
            print_summary(start_time, run.to_dict(), model_versions(container))
            if args.no_monitor or run.skipped:
                orchestrator.shutdown()
                return 0 if run.succeeded else 1
        else:
            orchestrator.start_monitoring()

        logger.info("Pipeline monitoring active, press Ctrl+C to stop")
        orchestrator.wait_for_shutdown()
        return 0
    except TireMLError as e:
        logger.error(f"Pipeline failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
