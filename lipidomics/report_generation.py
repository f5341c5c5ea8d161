"""
Report Generation Module for Lipidomics Analysis
=================================================

Generates an Excel workbook with:
- An overview of the dataset, thresholds and significance counts
- One sheet per analysis stage (summary, p-values, clusters)
- Failed per-analyte tests kept visible rather than silently dropped

Also writes every workflow figure as PNG and PDF.
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Optional, Union

import matplotlib.pyplot as plt
import pandas as pd

from config.lipid_classes import get_class_info
from config.workflow_settings import WorkflowSettings
from lipidomics.data_processing import ANALYTE, GROUP
from lipidomics.visualization import LipidVisualizer

if TYPE_CHECKING:
    from lipidomics.workflow import WorkflowResults

logger = logging.getLogger(__name__)

REPORT_FILENAME = "lipidomics_report.xlsx"


def _category_name(abbreviation) -> Optional[str]:
    info = get_class_info(abbreviation) if abbreviation else None
    return info.category.value if info else None


class ExcelReportGenerator:
    """
    Write workflow results to a multi-sheet Excel workbook.

    Usage:
        generator = ExcelReportGenerator(results)
        generator.save_excel_report('report.xlsx')
    """

    def __init__(
        self,
        results: "WorkflowResults",
        settings: Optional[WorkflowSettings] = None
    ):
        self.results = results
        self.settings = settings or results.settings

    def _section(self, writer: pd.ExcelWriter, sheet_name: str, title: str, row: int) -> int:
        pd.DataFrame({'': [title]}).to_excel(
            writer, sheet_name=sheet_name, startrow=row, index=False, header=False
        )
        return row + 1

    def _write_overview_sheet(self, writer: pd.ExcelWriter):
        """Write overview/summary sheet."""
        results = self.results
        quality = results.quality
        schema = results.processed.schema
        sheet = 'Overview'

        current_row = self._section(writer, sheet, 'LIPIDOMICS ANALYSIS REPORT', 0) + 1

        groups = quality.get('groups', {})
        summary_df = pd.DataFrame({
            'Parameter': [
                'Total Samples', 'Groups', 'Analytes Measured', 'Excluded Columns',
                'Values at Detection Limit', 'Detection Limit', 'Long Table',
                'Significance Level',
            ],
            'Value': [
                quality.get('n_samples', len(results.processed.sample_data)),
                ', '.join(f"{g} (n={n})" for g, n in groups.items()),
                len(schema.analyte_cols),
                len(schema.excluded_cols),
                f"{quality.get('pct_replaced', 0.0):.1f}%",
                f"{self.settings.detection_limit} {self.settings.units}",
                f"{results.long_table_path} "
                f"({'written' if results.long_table_written else 'existing file kept'})",
                f"α = {self.settings.alpha}",
            ]
        })
        summary_df.to_excel(writer, sheet_name=sheet, startrow=current_row, index=False)
        current_row += len(summary_df) + 3

        current_row = self._section(writer, sheet, 'SIGNIFICANCE COUNTS (log-scale t-test)',
                                    current_row)
        counts_df = results.tests.counts.as_frame()
        counts_df.to_excel(writer, sheet_name=sheet, startrow=current_row, index=False)
        current_row += len(counts_df) + 2

        rank_df = pd.DataFrame({
            'Test': ['Mann-Whitney U (uncorrected)'],
            'Significant': [results.tests.rank_test_uncorrected],
            'Tested': [results.tests.n_tested],
        })
        rank_df.to_excel(writer, sheet_name=sheet, startrow=current_row, index=False)
        current_row += 4

        clustering = results.clustering
        current_row = self._section(writer, sheet, 'CLUSTERING', current_row)
        if clustering is None:
            pd.DataFrame({'Status': [f"Failed: {results.clustering_error}"]}).to_excel(
                writer, sheet_name=sheet, startrow=current_row, index=False
            )
            return

        cluster_df = pd.DataFrame({
            'Parameter': ['k', 'Starts', 'Seed', 'Iterations (best start)', 'Converged',
                          'Total SS', 'Total within SS', 'Between SS',
                          'Between SS / Total SS', 'Silhouette', 'Dropped constant columns',
                          'Discarded starts (empty cluster)'],
            'Value': [
                clustering.n_clusters, clustering.n_init, clustering.seed,
                clustering.iterations, 'Yes' if clustering.converged else 'No',
                f"{clustering.totss:.4f}", f"{clustering.tot_withinss:.4f}",
                f"{clustering.betweenss:.4f}", f"{clustering.between_ratio * 100:.1f}%",
                f"{clustering.silhouette:.3f}" if clustering.silhouette is not None else 'N/A',
                ', '.join(clustering.dropped_columns) or 'None',
                clustering.n_discarded_starts,
            ]
        })
        cluster_df.to_excel(writer, sheet_name=sheet, startrow=current_row, index=False)

    def _write_summary_sheet(self, writer: pd.ExcelWriter):
        summary = self.results.summary
        wide = summary.pivot(index=ANALYTE, columns=GROUP, values=['n', 'mean', 'std'])
        wide = wide.loc[summary[ANALYTE].unique()]
        wide.columns = [f"{stat}_{group}" for stat, group in wide.columns]
        wide.to_excel(writer, sheet_name='Summary')

    def _write_pvalue_sheet(self, writer: pd.ExcelWriter):
        tests = self.results.tests
        table = tests.pvalues.copy()
        table.insert(1, 'lipid_category', table['lipid_class'].map(_category_name))
        alpha = tests.alpha
        table['significant_uncorrected'] = table['p_log_t'] < alpha
        table['significant_bonferroni'] = table['p_log_t'] < tests.counts.bonferroni_threshold
        table['significant_fdr'] = table['p_adj_fdr'] < alpha
        table.to_excel(writer, sheet_name='PValues')

    def _write_failures_sheet(self, writer: pd.ExcelWriter):
        failures = self.results.tests.failures
        pd.DataFrame({
            ANALYTE: list(failures.keys()),
            'reason': list(failures.values()),
        }).to_excel(writer, sheet_name='FailedTests', index=False)

    def _write_cluster_sheets(self, writer: pd.ExcelWriter):
        clustering = self.results.clustering
        members = pd.DataFrame({'cluster': clustering.assignments + 1})
        if clustering.groups is not None:
            members[GROUP] = clustering.groups.loc[members.index]
        members.to_excel(writer, sheet_name='Clusters')

        row = len(members) + 3
        row = self._section(writer, 'Clusters', 'CLUSTER SIZES AND WITHIN SS', row)
        sizes = clustering.summary_frame()
        sizes.index = sizes.index + 1
        sizes.to_excel(writer, sheet_name='Clusters', startrow=row)

        crosstab = clustering.crosstab()
        if crosstab is not None:
            row += len(sizes) + 3
            row = self._section(writer, 'Clusters', 'CLUSTER x GROUP', row)
            crosstab.index = crosstab.index + 1
            crosstab.to_excel(writer, sheet_name='Clusters', startrow=row)

        centroids = clustering.centroids.copy()
        centroids.index = centroids.index + 1
        centroids.T.to_excel(writer, sheet_name='Centroids')

    def save_excel_report(self, filepath):
        """Save complete Excel report with all analysis sheets (path or binary buffer)."""
        if isinstance(filepath, (str, Path)):
            filepath = Path(filepath)
            filepath.parent.mkdir(parents=True, exist_ok=True)

        with pd.ExcelWriter(filepath, engine='openpyxl') as writer:
            self._write_overview_sheet(writer)
            self._write_summary_sheet(writer)
            self._write_pvalue_sheet(writer)
            if self.results.tests.failures:
                self._write_failures_sheet(writer)
            if self.results.clustering is not None:
                self._write_cluster_sheets(writer)

        logger.info(f"Saved Excel report to {filepath}")
        return filepath


def save_figures(
    figures: Dict[str, plt.Figure],
    output_dir: Union[str, Path],
    formats: List[str] = ['png', 'pdf']
) -> List[Path]:
    """Save every named figure under ``output_dir/figures``."""

    visualizer = LipidVisualizer()
    saved = []
    for name, fig in figures.items():
        saved.extend(visualizer.save_figure(fig, Path(output_dir) / 'figures' / name,
                                            formats=formats))
    return saved


def write_report(results: "WorkflowResults", output_dir: Union[str, Path]) -> Path:
    """Write the Excel workbook and all figures; returns the workbook path."""
    output_dir = Path(output_dir)
    report_path = ExcelReportGenerator(results).save_excel_report(output_dir / REPORT_FILENAME)
    saved = save_figures(results.figures, output_dir)
    logger.info(f"Saved {len(saved)} figure file(s) to {output_dir / 'figures'}")
    return report_path
