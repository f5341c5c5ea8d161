"""
End-to-End Lipidomics Workflow
==============================

Runs the stages in order on one spreadsheet:
1. Ingestion, recoding, detection-limit floor and long-table export
2. Re-import of the exported long table
3. Descriptive summary per analyte and group
4. Box plots for the configured analyte pattern
5. Hypothesis tests with multiplicity correction
6. k-means clustering of samples

Usage:
    python -m lipidomics.workflow lipids.xlsx [output_dir]
"""

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import matplotlib.pyplot as plt
import pandas as pd

from config.workflow_settings import DEFAULT_SETTINGS, WorkflowSettings
from lipidomics.clustering import ClusteringResult, cluster_samples
from lipidomics.data_processing import (
    LipidDataProcessor, ProcessedData, read_long_table, validate_data_quality
)
from lipidomics.descriptive import summarize_by_group
from lipidomics.exceptions import ClusteringError
from lipidomics.statistical_tests import (
    HypothesisTestResults, HypothesisTester, SignificanceCounts
)
from lipidomics.visualization import LipidVisualizer

logger = logging.getLogger(__name__)


@dataclass
class WorkflowResults:
    """Every intermediate product of one workflow run."""
    settings: WorkflowSettings
    processed: ProcessedData
    long: pd.DataFrame                     # as re-imported from the exported file
    long_table_path: Path
    long_table_written: bool
    summary: pd.DataFrame
    tests: HypothesisTestResults
    clustering: Optional[ClusteringResult] = None
    clustering_error: Optional[str] = None
    quality: Dict[str, Any] = field(default_factory=dict)
    figures: Dict[str, plt.Figure] = field(default_factory=dict)

    @property
    def counts(self) -> SignificanceCounts:
        return self.tests.counts


def resolve_long_table_path(settings: WorkflowSettings) -> Path:
    """Relative long-table paths live under the output directory."""
    path = Path(settings.long_table_path)
    if path.is_absolute():
        return path
    return Path(settings.output_dir) / path


def run_workflow(
    input_path: Union[str, Path],
    settings: Optional[WorkflowSettings] = None
) -> WorkflowResults:
    """
    Run every stage on one spreadsheet.

    Ingestion errors are fatal. Per-analyte test failures are recorded in the
    test results. A clustering failure is recorded and the remaining results
    are still returned.
    """
    settings = settings or DEFAULT_SETTINGS
    export_path = resolve_long_table_path(settings)

    processor = LipidDataProcessor(settings)
    processed = processor.load_and_process(input_path, export_path=export_path)
    logger.info(f"Loaded {len(processed.sample_data)} samples x "
                f"{len(processed.schema.analyte_cols)} analytes from {input_path}")

    long = read_long_table(export_path, sep=settings.long_table_sep)
    summary = summarize_by_group(long)

    visualizer = LipidVisualizer(color_palette=settings.color_palette,
                                 group_order=settings.label_order, units=settings.units)
    figures = {
        'boxplots': visualizer.plot_analyte_boxplots(
            long, settings.boxplot_pattern, ncols=settings.boxplot_ncols
        ),
    }

    tester = HypothesisTester(alpha=settings.alpha, group_order=settings.label_order)
    tests = tester.run_all(long)
    figures['pvalue_histogram'] = visualizer.plot_pvalue_histogram(
        tests.pvalues['p_log_t'], alpha=settings.alpha
    )

    clustering = None
    clustering_error = None
    try:
        clustering = cluster_samples(
            long,
            n_clusters=settings.n_clusters,
            n_init=settings.n_init,
            max_iter=settings.max_iter,
            seed=settings.seed,
        )
    except ClusteringError as e:
        logger.error(f"Clustering failed: {e}")
        clustering_error = str(e)
    else:
        figures['cluster_projection'] = visualizer.plot_cluster_projection(clustering)

    return WorkflowResults(
        settings=settings,
        processed=processed,
        long=long,
        long_table_path=export_path,
        long_table_written=processed.export_written,
        summary=summary,
        tests=tests,
        clustering=clustering,
        clustering_error=clustering_error,
        quality=validate_data_quality(processed),
        figures=figures,
    )


def main(argv=None) -> int:
    from config.logging_config import setup_logging
    from lipidomics.report_generation import write_report
    from lipidomics.statistical_tests import format_testing_report

    argv = sys.argv[1:] if argv is None else argv
    if not argv or len(argv) > 2:
        print("Usage: python -m lipidomics.workflow <spreadsheet> [output_dir]",
              file=sys.stderr)
        return 2

    setup_logging()
    settings = DEFAULT_SETTINGS
    if len(argv) == 2:
        settings = settings.with_overrides(output_dir=argv[1])

    results = run_workflow(argv[0], settings)
    print(format_testing_report(results.tests))
    if results.clustering is not None:
        c = results.clustering
        print(f"\nk-means: sizes {c.sizes.tolist()}, "
              f"between_SS / total_SS = {c.between_ratio * 100:.1f}%")

    report_path = write_report(results, settings.output_dir)
    print(f"\nReport written to {report_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
