"""
Workflow Settings
=================

Defines the column layout of the input spreadsheet, the detection-limit floor
and the parameters of every analysis stage.

To analyse a differently laid-out spreadsheet:
1. Copy DEFAULT_SETTINGS with ``with_overrides``
2. Point ``sample_col``, ``group_col`` and ``covariate_cols`` at its headers
3. Adjust ``group_labels`` to the raw group codes used in the file

Example:
    settings = DEFAULT_SETTINGS.with_overrides(
        sample_col='Mouse',
        group_labels={1: 'WT', 2: 'KO'},
        seed=7,
    )
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Tuple


@dataclass(frozen=True)
class WorkflowSettings:
    """Configuration for one run of the lipidomics workflow."""
    # Input layout
    sample_col: str = "Sample"
    group_col: str = "Group"
    covariate_cols: Tuple[str, ...] = ("Age", "BMI")
    analyte_delimiter: str = ":"  # single-species columns, e.g. 'PC 34:1'
    group_labels: Dict[Any, str] = field(
        default_factory=lambda: {0: "Control", 1: "Case"}
    )
    sheet_name: Any = None  # None -> first sheet

    # Detection limit (nmol/mg) substituted for zero/missing measurements
    detection_limit: float = 0.001
    below_detection_markers: Tuple[str, ...] = (
        '-----', '----', '---', 'LOD', 'BLQ', 'ND', 'N/D', '<LOD', '<LOQ', 'BLOQ', ''
    )
    units: str = "nmol/mg"

    # Long-form export
    long_table_path: str = "lipids_long.csv"
    long_table_sep: str = ","

    # Box plots
    boxplot_pattern: str = "LPC"
    boxplot_ncols: int = 4
    color_palette: str = "Set2"

    # Hypothesis testing
    alpha: float = 0.05

    # Clustering
    n_clusters: int = 2
    n_init: int = 25
    max_iter: int = 10
    seed: int = 42

    output_dir: str = "results"

    def validate(self) -> "WorkflowSettings":
        """Raise ValueError if any parameter is out of range."""
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")
        if self.detection_limit <= 0:
            raise ValueError(f"detection_limit must be positive, got {self.detection_limit}")
        if len(self.group_labels) != 2:
            raise ValueError(
                f"group_labels must map exactly two codes, got {self.group_labels}"
            )
        if len(set(self.group_labels.values())) != 2:
            raise ValueError("group_labels must map to two distinct labels")
        if not self.analyte_delimiter:
            raise ValueError("analyte_delimiter must be a non-empty string")
        if self.n_clusters < 1:
            raise ValueError(f"n_clusters must be >= 1, got {self.n_clusters}")
        if self.n_init < 1:
            raise ValueError(f"n_init must be >= 1, got {self.n_init}")
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {self.max_iter}")
        if self.boxplot_ncols < 1:
            raise ValueError(f"boxplot_ncols must be >= 1, got {self.boxplot_ncols}")
        return self

    def with_overrides(self, **overrides) -> "WorkflowSettings":
        """Return a validated copy with the given fields replaced."""
        if 'covariate_cols' in overrides:
            overrides['covariate_cols'] = tuple(overrides['covariate_cols'])
        return replace(self, **overrides).validate()

    @property
    def label_order(self) -> Tuple[str, str]:
        """Group labels in lookup order (first label is the reference group)."""
        return tuple(self.group_labels.values())


DEFAULT_SETTINGS = WorkflowSettings().validate()
