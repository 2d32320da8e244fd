"""Primary analysis parameters.

An analysis is one named entry under the `analyses` key of the steering config:
the observations, the model settings and the sampling settings for a single
inference.

.. codeauthor:: Raymond Ehlers <raymond.ehlers@cern.ch>, LBL/UCB
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import attrs
import yaml

logger = logging.getLogger(__name__)


@attrs.define
class AnalysisIO:
    _output_dir: Path = attrs.field(converter=Path)

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> AnalysisIO:
        return cls(
            output_dir=config["output_dir"],
        )

    @classmethod
    def from_config_file(cls, config_file: str | Path) -> AnalysisIO:
        with Path(config_file).open() as stream:
            config = yaml.safe_load(stream)

        return cls.from_config(config=config)

    def output_dir(self, analysis_config: AnalysisConfig) -> Path:
        return self._output_dir / analysis_config.name


@attrs.define
class AnalysisConfig:
    name: str
    config_file: Path = attrs.field(converter=Path)
    io: AnalysisIO
    raw_analysis_config: dict[str, Any] = attrs.field(factory=dict)

    @classmethod
    def from_config(cls, analysis_name: str, config_file: Path, config: dict[str, Any]) -> AnalysisConfig:
        """
        Initialize the analysis configuration from a config file.
        """
        try:
            raw_analysis_config = config["analyses"][analysis_name]
        except KeyError as e:
            msg = f"Analysis '{analysis_name}' is not defined in {config_file}"
            raise KeyError(msg) from e
        return cls(
            name=analysis_name,
            config_file=config_file,
            io=AnalysisIO.from_config(config=config),
            raw_analysis_config=raw_analysis_config,
        )

    @classmethod
    def from_config_file(cls, analysis_name: str, config_file: str | Path) -> AnalysisConfig:
        with Path(config_file).open() as stream:
            config = yaml.safe_load(stream)

        return cls.from_config(analysis_name=analysis_name, config_file=Path(config_file), config=config)

    @property
    def output_dir(self) -> Path:
        return self.io.output_dir(self)

    @property
    def config_dir(self) -> Path:
        """Directory of the config file. Relative paths in the config are resolved against it."""
        return self.config_file.parent

    @property
    def model_settings(self) -> dict[str, Any]:
        return self.raw_analysis_config.get("model", {})

    def parameters(self, block: str) -> dict[str, Any]:
        """Settings for one step of the analysis (e.g. `mcmc`, `diagnostics`).

        Missing blocks are returned as empty dicts so that each step can apply its own defaults.
        """
        return self.raw_analysis_config.get("parameters", {}).get(block, {}) or {}

    @property
    def closure_test_values(self) -> list[float]:
        return [float(v) for v in self.raw_analysis_config.get("closure_test_values") or []]
