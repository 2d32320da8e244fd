"""
Main script to steer Bayesian inference studies

For each analysis in the config file, the enabled steps are run in order:
 - run_mcmc: sample the posterior
 - run_closure_tests: sample the posterior for pseudodata generated from known parameter values
 - compute_diagnostics: convergence diagnostics and posterior summary
 - run_posterior_predictive: posterior predictive check

authors: J.Mulligan, R.Ehlers
"""

from __future__ import annotations

import argparse
import logging
import shutil
from pathlib import Path

import yaml

from bayesian_primer import analysis, common_base, diagnostics, helpers, mc_sampling, posterior_predictive

logger = logging.getLogger(__name__)


####################################################################################################################
class SteerAnalysis(common_base.CommonBase):
    # ---------------------------------------------------------------
    # Constructor
    # ---------------------------------------------------------------
    def __init__(self, config_file: Path, **kwargs):
        super().__init__(**kwargs)
        # Initialize config file
        self.config_file = Path(config_file)
        self.initialize()

        logger.info(self)

    # ---------------------------------------------------------------
    # Initialize config
    # ---------------------------------------------------------------
    def initialize(self) -> None:
        logger.info("Initializing class objects")

        with self.config_file.open() as stream:
            config = yaml.safe_load(stream)

        self.output_dir = Path(config["output_dir"])
        self.output_dir.mkdir(exist_ok=True, parents=True)

        # Option to reduce logging to file
        self._reduce_logging_to_file = config.get("reduce_logging_to_file", False)

        # Configure which functions to run
        self.run_mcmc = config.get("run_mcmc", True)
        self.run_closure_tests = config.get("run_closure_tests", False)
        self.compute_diagnostics = config.get("compute_diagnostics", True)
        self.run_posterior_predictive = config.get("run_posterior_predictive", True)

        # Configuration of different analyses
        self.analyses = config.get("analyses") or {}
        if not self.analyses:
            msg = f"No analyses defined in {self.config_file}"
            raise ValueError(msg)

    def run_analysis(self) -> None:
        """Main steering function for analyses."""
        # Keep track of log and config for each run for reproducibility.
        file_handler = None
        if not self._reduce_logging_to_file:
            # Add logging to file
            file_handler = logging.FileHandler(self.output_dir / "steer_analysis.log", "w")
            logging.getLogger().addHandler(file_handler)

            # Also write analysis config to shared directory
            shutil.copy(self.config_file, self.output_dir / "steer_analysis_config.yaml")

        try:
            self._run_all_analyses()
        finally:
            if file_handler is not None:
                logging.getLogger().removeHandler(file_handler)
                file_handler.close()

    def _run_all_analyses(self) -> None:
        # Loop through each analysis
        with helpers.progress_bar() as progress:
            analysis_task = progress.add_task("[deep_sky_blue1]Running analysis...", total=len(self.analyses))

            for analysis_name in self.analyses:
                analysis_config = analysis.AnalysisConfig.from_config_file(
                    analysis_name=analysis_name,
                    config_file=self.config_file,
                )
                mcmc_config = mc_sampling.MCMCConfig.from_analysis_config(analysis_config)

                # Run MCMC
                if self.run_mcmc:
                    # Just indicate that it's working
                    mcmc_task = progress.add_task("[deep_sky_blue4]Running MCMC...", total=None)
                    progress.start_task(mcmc_task)
                    logger.info("")
                    logger.info("========================================================================")
                    logger.info(f"Running MCMC for {analysis_name}...")
                    mc_sampling.run_mcmc(mcmc_config)
                    progress.update(mcmc_task, advance=100, visible=False)

                # Run closure tests -- one for each closure test value
                #   - Generate pseudodata from the closure test value
                #   - Sample the posterior given the pseudodata
                if self.run_closure_tests:
                    n_closure_tests = len(analysis_config.closure_test_values)
                    closure_test_task = progress.add_task(
                        "[deep_sky_blue4]Running closure tests...", total=n_closure_tests
                    )
                    progress.start_task(closure_test_task)
                    logger.info("")
                    logger.info("------------------------------------------------------------------------")
                    if n_closure_tests == 0:
                        logger.warning(f"Closure tests requested for {analysis_name}, but no closure_test_values are given")

                    for closure_index, closure_value in enumerate(analysis_config.closure_test_values):
                        logger.info(
                            f"Running closure test for {analysis_name}, closure_index={closure_index}, value={closure_value}..."
                        )
                        closure_mcmc_config = mc_sampling.MCMCConfig.from_analysis_config(
                            analysis_config, closure_index=closure_index
                        )
                        mc_sampling.run_mcmc(closure_mcmc_config, closure_index=closure_index)
                        if self.compute_diagnostics:
                            diagnostics.compute_diagnostics(closure_mcmc_config)
                        progress.update(closure_test_task, advance=1)

                    if n_closure_tests > 0:
                        diagnostics.closure_coverage(analysis_config)
                    progress.update(closure_test_task, visible=False)

                # Convergence diagnostics
                if self.compute_diagnostics:
                    logger.info("------------------------------------------------------------------------")
                    logger.info(f"Computing diagnostics for {analysis_name}...")
                    diagnostics.compute_diagnostics(mcmc_config)

                # Posterior predictive check
                if self.run_posterior_predictive:
                    logger.info("------------------------------------------------------------------------")
                    logger.info(f"Running posterior predictive check for {analysis_name}...")
                    posterior_predictive.run_posterior_predictive(mcmc_config)

                progress.update(analysis_task, advance=1)

        logger.info("Done!")


def main() -> None:
    helpers.setup_logging(level=logging.INFO)

    parser = argparse.ArgumentParser(description="Bayesian inference with MCMC")
    parser.add_argument(
        "-c",
        "--configFile",
        help="Path of config file for analysis",
        action="store",
        type=Path,
        default=Path("config/normal_mean.yaml"),
    )
    args = parser.parse_args()

    logger.info("Configuring...")
    logger.info(f"  configFile: {args.configFile}")

    # If invalid configFile is given, exit
    config_file = Path(args.configFile)
    if not config_file.exists():
        msg = f"File {args.configFile} does not exist! Exiting!"
        logger.info(msg)
        raise ValueError(msg)

    steer_analysis = SteerAnalysis(config_file=config_file)
    steer_analysis.run_analysis()


if __name__ == "__main__":
    main()
