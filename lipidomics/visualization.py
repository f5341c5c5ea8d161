"""
Visualization Module for Lipidomics Analysis
=============================================

Generates figures for the report:
1. Grouped box plots faceted by analyte
2. Raw p-value distribution with the significance threshold
3. Cluster assignments projected onto the first two principal components
"""

from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns

from lipidomics.clustering import ClusteringResult, project_pca
from lipidomics.data_processing import ANALYTE, CONCENTRATION, GROUP

# Set publication-quality defaults
plt.rcParams.update({
    'font.family': 'sans-serif',
    'font.sans-serif': ['Arial', 'DejaVu Sans'],
    'font.size': 10,
    'axes.titlesize': 12,
    'axes.labelsize': 11,
    'xtick.labelsize': 9,
    'ytick.labelsize': 9,
    'legend.fontsize': 9,
    'figure.dpi': 150,
    'savefig.dpi': 300,
    'savefig.bbox': 'tight',
    'axes.spines.top': False,
    'axes.spines.right': False,
})

DEFAULT_PALETTE = "Set2"


def get_group_palette(palette_name: str = DEFAULT_PALETTE, n_colors: int = 10):
    """Get a color palette by name."""
    return sns.color_palette(palette_name, n_colors)


class LipidVisualizer:
    """Generate visualizations for lipidomics data analysis."""

    def __init__(
        self,
        figsize_single: Tuple[float, float] = (8, 6),
        color_palette: str = DEFAULT_PALETTE,
        style: str = "whitegrid",
        group_order: Optional[List[str]] = None,
        units: str = "nmol/mg"
    ):
        self.figsize_single = figsize_single
        self.palette_name = color_palette
        self.group_palette = get_group_palette(color_palette, 10)
        self.group_order = list(group_order) if group_order else None
        self.units = units
        sns.set_style(style)

    def _group_colors(self, groups: List[str]) -> Dict[str, tuple]:
        """Same color for the same group in every panel."""
        return dict(zip(groups, self.group_palette[:len(groups)]))

    def _groups(self, data: pd.DataFrame) -> List[str]:
        present = sorted(data[GROUP].unique().tolist())
        if self.group_order and sorted(self.group_order) == present:
            return list(self.group_order)
        return present

    def plot_analyte_boxplots(
        self,
        long: pd.DataFrame,
        pattern: str,
        ncols: int = 4,
        figsize: Optional[Tuple[float, float]] = None,
        log_scale: bool = False,
        show_points: bool = True,
        sharey: bool = False
    ) -> plt.Figure:
        """
        One box plot per analyte whose name contains ``pattern``, ``ncols`` per row.

        Each panel compares the groups; unused grid cells are hidden.
        """
        data = long[long[ANALYTE].str.contains(pattern, regex=False)]
        analytes = data[ANALYTE].unique().tolist()
        n_plots = len(analytes)

        if n_plots == 0:
            fig, ax = plt.subplots(figsize=self.figsize_single)
            ax.text(0.5, 0.5, f"No analytes match '{pattern}'",
                    transform=ax.transAxes, ha='center', va='center')
            ax.set_axis_off()
            return fig

        nrows = int(np.ceil(n_plots / ncols))
        if figsize is None:
            figsize = (ncols * 3.5, nrows * 3.2)

        fig, axes = plt.subplots(nrows, ncols, figsize=figsize, sharey=sharey, squeeze=False)
        axes = axes.flatten()

        groups = self._groups(long)
        palette = self._group_colors(groups)
        ylabel = f'Concentration ({self.units})'

        for i, analyte in enumerate(analytes):
            ax = axes[i]
            panel = data[data[ANALYTE] == analyte]

            sns.boxplot(data=panel, x=GROUP, y=CONCENTRATION, ax=ax,
                        hue=GROUP, palette=palette, order=groups, legend=False,
                        showfliers=not show_points)
            if show_points:
                sns.stripplot(data=panel, x=GROUP, y=CONCENTRATION, ax=ax,
                              color='black', alpha=0.5, size=3, order=groups)
            if log_scale:
                ax.set_yscale('log')

            ax.set_title(analyte, fontsize=10)
            ax.set_xlabel('')
            ax.set_ylabel(ylabel if i % ncols == 0 else '')

        for i in range(n_plots, len(axes)):
            axes[i].set_visible(False)

        plt.tight_layout()
        return fig

    def plot_pvalue_histogram(
        self,
        pvalues: pd.Series,
        alpha: float = 0.05,
        bins: int = 20,
        title: Optional[str] = None,
        figsize: Optional[Tuple[float, float]] = None
    ) -> plt.Figure:
        """Histogram of raw p-values; a uniform shape means mostly true nulls."""
        fig, ax = plt.subplots(figsize=figsize or self.figsize_single)
        ax.hist(np.asarray(pvalues, dtype=float), bins=bins, range=(0, 1),
                color=self.group_palette[0], edgecolor='white')

        expected = len(pvalues) / bins
        ax.axhline(expected, color='gray', linestyle='--', linewidth=1,
                   label='Expected under H0')
        ax.axvline(alpha, color='#d62728', linestyle=':', linewidth=1.5,
                   label=f'α = {alpha}')

        ax.set_xlabel('p-value')
        ax.set_ylabel('Number of analytes')
        ax.set_title(title or f'Raw p-value distribution (m = {len(pvalues)})')
        ax.legend()
        plt.tight_layout()
        return fig

    def plot_cluster_projection(
        self,
        clustering: ClusteringResult,
        title: Optional[str] = None,
        figsize: Optional[Tuple[float, float]] = None,
        annotate: bool = False
    ) -> plt.Figure:
        """Samples on PC1/PC2 of the standardized data, colored by cluster."""
        scores, explained = project_pca(clustering.standardized, n_components=2)
        plot_data = scores.copy()
        plot_data['Cluster'] = clustering.assignments.loc[scores.index].map(
            lambda c: f'Cluster {c + 1}')

        style = None
        if clustering.groups is not None:
            plot_data['Group'] = clustering.groups.loc[scores.index]
            style = 'Group'

        fig, ax = plt.subplots(figsize=figsize or self.figsize_single)
        cluster_labels = [f'Cluster {c + 1}' for c in range(clustering.n_clusters)]
        palette = dict(zip(cluster_labels, get_group_palette('Dark2', clustering.n_clusters)))

        y_col = 'PC2' if 'PC2' in plot_data.columns else 'PC1'
        sns.scatterplot(data=plot_data, x='PC1', y=y_col, hue='Cluster', style=style,
                        hue_order=cluster_labels, palette=palette, s=60, ax=ax)

        if annotate:
            for sample, row in plot_data.iterrows():
                ax.annotate(str(sample), (row['PC1'], row[y_col]), fontsize=7,
                            xytext=(3, 3), textcoords='offset points')

        ax.set_xlabel(f'PC1 ({explained[0] * 100:.1f}%)')
        if y_col == 'PC2':
            ax.set_ylabel(f'PC2 ({explained[1] * 100:.1f}%)')
        ax.set_title(title or f'k-means clusters (k = {clustering.n_clusters})')
        ax.legend(bbox_to_anchor=(1.02, 1), loc='upper left', borderaxespad=0)
        plt.tight_layout()
        return fig

    def save_figure(
        self,
        fig: plt.Figure,
        filepath: Union[str, Path],
        formats: List[str] = ['png', 'pdf'],
        dpi: int = 300
    ) -> List[Path]:
        """Save figure in multiple formats."""
        filepath = Path(filepath)
        filepath.parent.mkdir(parents=True, exist_ok=True)

        saved = []
        for fmt in formats:
            save_path = filepath.with_suffix(f'.{fmt}')
            fig.savefig(save_path, format=fmt, dpi=dpi, bbox_inches='tight')
            saved.append(save_path)
        return saved
