"""Tests for report figures."""

import numpy as np
import pytest

from lipidomics.clustering import cluster_samples
from lipidomics.visualization import LipidVisualizer


@pytest.fixture
def viz():
    return LipidVisualizer(group_order=["Control", "Case"])


def visible_axes(fig):
    return [ax for ax in fig.axes if ax.get_visible()]


class TestAnalyteBoxplots:
    def test_one_panel_per_matching_analyte(self, viz, long_table):
        fig = viz.plot_analyte_boxplots(long_table, "LPC", ncols=4)
        assert len(fig.axes) == 4
        titles = [ax.get_title() for ax in visible_axes(fig)]
        assert titles == ["LPC 16:0", "LPC 18:0", "LPC 18:1"]

    def test_grid_wraps_and_hides_unused(self, viz, long_table):
        fig = viz.plot_analyte_boxplots(long_table, "P", ncols=2)
        # LPC x3, PC x2, PE x1
        assert len(visible_axes(fig)) == 6
        assert len(fig.axes) == 6

        fig = viz.plot_analyte_boxplots(long_table, "LPC", ncols=2)
        assert len(fig.axes) == 4
        assert len(visible_axes(fig)) == 3

    def test_substring_is_not_a_regex(self, viz, long_table):
        fig = viz.plot_analyte_boxplots(long_table, "d18:1/16:0")
        assert [ax.get_title() for ax in visible_axes(fig)] == ["SM d18:1/16:0"]

    def test_no_match(self, viz, long_table):
        fig = viz.plot_analyte_boxplots(long_table, "Cer")
        assert len(fig.axes) == 1
        assert "Cer" in fig.axes[0].texts[0].get_text()

    def test_log_scale(self, viz, long_table):
        fig = viz.plot_analyte_boxplots(long_table, "PC 3", log_scale=True)
        assert all(ax.get_yscale() == "log" for ax in visible_axes(fig))


def test_pvalue_histogram(viz):
    fig = viz.plot_pvalue_histogram(np.linspace(0.001, 0.999, 50), alpha=0.05)
    ax = fig.axes[0]
    assert ax.get_xlabel() == "p-value"
    assert "m = 50" in ax.get_title()


def test_cluster_projection_labels(viz, long_table):
    fig = viz.plot_cluster_projection(cluster_samples(long_table, seed=42))
    ax = fig.axes[0]
    assert ax.get_xlabel().startswith("PC1 (")
    assert ax.get_ylabel().startswith("PC2 (")
    assert ax.get_xlabel().endswith("%)")


def test_save_figure(viz, long_table, tmp_path):
    fig = viz.plot_analyte_boxplots(long_table, "LPC")
    saved = viz.save_figure(fig, tmp_path / "figs" / "lpc")
    assert [p.name for p in saved] == ["lpc.png", "lpc.pdf"]
    assert all(p.stat().st_size > 0 for p in saved)
