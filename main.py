#!/usr/bin/env python
"""
Candidate Election ML Pipeline - Main Entry Point
Loads the candidate table, prepares features, tunes the neural network
classifier with cross-validated grid search and benchmarks the regressors.
"""
import sys
import logging
import argparse
import traceback
import random
from pathlib import Path

import numpy as np

from modules.config_manager import ConfigurationManager
from modules.logging_config import LoggingConfigurator
from modules.data_manager import DataManager
from modules.preprocessing import FeaturePreprocessor
from modules.hpo_search_engine import HPOSearchEngine
from modules.regression_engine import RegressionEngine
from utils.exceptions import ElectionMLException


def parse_arguments(argv=None):
    """
    Parse command-line arguments for configurable pipeline execution.

    Returns:
        argparse.Namespace: Parsed command-line arguments.
    """
    parser = argparse.ArgumentParser(
        description="Candidate Election ML Pipeline - Neural Network Grid Search & Regression Benchmark",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    parser.add_argument(
        "--config",
        type=str,
        default="config/config.json",
        help="Path to the configuration JSON file"
    )

    parser.add_argument(
        "--schema",
        type=str,
        default="config/schema.json",
        help="Path to the configuration JSON schema"
    )

    parser.add_argument(
        "--run-id",
        type=str,
        default=None,
        help="Optional run identifier (defaults to timestamp if not provided)"
    )

    parser.add_argument(
        "--skip-hpo",
        action="store_true",
        help="Skip the neural network grid search"
    )

    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help="Score a saved best_model.pkl on the prepared data instead of running the grid search"
    )

    parser.add_argument(
        "--skip-regression",
        action="store_true",
        help="Skip the regression benchmark"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and setup without running the pipeline"
    )

    return parser.parse_args(argv)


def setup_global_determinism(config: dict, logger: logging.Logger):
    """
    Seed Python and NumPy global generators.

    Fold assignment, weight initialisation, SMOTE and the regression splits
    take their own seeds from ``_internal_seeds``; this covers library code
    that still draws from the global state.
    """
    seed = config.get('reproducibility', {}).get('seed', 42)
    logger.info(f"Setting Global Deterministic Seed: {seed}")
    random.seed(seed)
    np.random.seed(seed)


def setup_run_directory(config: dict, run_id: str, logger: logging.Logger) -> Path:
    """Create the run directory ``<base_results_dir>/<run_id>`` and point the config at it."""
    base_results_dir = config.get('outputs', {}).get('base_results_dir', 'results')
    run_dir = (Path(base_results_dir) / run_id).absolute()
    run_dir.mkdir(parents=True, exist_ok=True)
    config['outputs']['base_results_dir'] = str(run_dir)
    logger.info(f"Created run directory: {run_dir}")
    return run_dir


def main(argv=None):
    """
    Main pipeline orchestration function.

    Returns:
        int: Exit code (0 for success, 1 for errors, 130 when interrupted)
    """
    logger = None

    try:
        args = parse_arguments(argv)

        # ---------------------------------------------------------------
        # PHASE 0: INITIALIZATION & VALIDATION
        # ---------------------------------------------------------------
        config_manager = ConfigurationManager(config_path=args.config, schema_path=args.schema)
        config = config_manager.load_and_validate()

        if args.verbose:
            config.setdefault('logging', {})['level'] = 'DEBUG'

        logging_configurator = LoggingConfigurator(config)
        logging_configurator.setup()
        logger = logging_configurator.get_logger('pipeline')

        logger.info("Pipeline initialization started")
        logger.info(f"Configuration loaded from: {args.config}")

        config_manager.run_id = args.run_id
        run_id = config_manager.generate_run_id()
        run_dir = setup_run_directory(config, run_id, logger)
        config_manager.save_artifacts(str(run_dir))
        setup_global_determinism(config, logger)

        logger.info(f"Run ID: {run_id}")

        if args.dry_run:
            logger.info("Dry run mode: validation complete. Exiting without running pipeline.")
            return 0

        # ---------------------------------------------------------------
        # PHASE 1: DATA INGESTION & PREPARATION
        # ---------------------------------------------------------------
        logger.info("=" * 60)
        logger.info("PHASE 1: DATA INGESTION & PREPARATION")
        logger.info("=" * 60)

        validated = DataManager(config, logger).execute(run_id)
        prepared = FeaturePreprocessor(config, logger).execute(validated, run_id)

        # ---------------------------------------------------------------
        # PHASE 2: NEURAL NETWORK GRID SEARCH
        # ---------------------------------------------------------------
        if args.model:
            logger.info("=" * 60)
            logger.info("PHASE 2: SAVED MODEL EVALUATION")
            logger.info("=" * 60)
            HPOSearchEngine(config, logger).evaluate_saved_model(
                prepared.frame, prepared.target_range, args.model, run_id)
        elif args.skip_hpo or not config.get('hyperparameters', {}).get('enabled', True):
            logger.info("PHASE 2: GRID SEARCH SKIPPED")
        else:
            logger.info("=" * 60)
            logger.info("PHASE 2: NEURAL NETWORK GRID SEARCH")
            logger.info("=" * 60)
            result = HPOSearchEngine(config, logger).execute(prepared.frame, prepared.target_range, run_id)
            logger.info(
                f"Selected configuration: {result.best_row.hyperparameters()} "
                f"(mean {result.best_row.metric} {result.best_row.mean_accuracy:.4f})"
            )

        # ---------------------------------------------------------------
        # PHASE 3: REGRESSION BENCHMARK
        # ---------------------------------------------------------------
        if args.skip_regression or not config.get('regression', {}).get('enabled', False):
            logger.info("PHASE 3: REGRESSION BENCHMARK SKIPPED")
        else:
            logger.info("=" * 60)
            logger.info("PHASE 3: REGRESSION BENCHMARK")
            logger.info("=" * 60)
            RegressionEngine(config, logger).execute(prepared.features, prepared.regression_target, run_id)

        logger.info("-" * 60)
        logger.info("PIPELINE COMPLETED SUCCESSFULLY")
        logger.info(f"Output Directory: {run_dir}")
        logger.info("-" * 60)
        return 0

    except ElectionMLException as e:
        msg = f"Pipeline Error: {str(e)}"
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            print(f"\n[ERROR] {msg}", file=sys.stderr)
            traceback.print_exc()
        return 1

    except KeyboardInterrupt:
        if logger:
            logger.warning("Pipeline interrupted by user (Ctrl+C)")
        else:
            print("\n[INTERRUPTED] Pipeline interrupted by user.", file=sys.stderr)
        return 130

    except Exception as e:
        msg = f"Unexpected Error: {str(e)}"
        if logger:
            logger.critical(msg, exc_info=True)
        else:
            print(f"\n[CRITICAL] {msg}", file=sys.stderr)
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
