"""
Lipidomics Statistics Workflow - Streamlit Application
======================================================

Run with: streamlit run app.py
"""

import streamlit as st
import pandas as pd
import matplotlib.pyplot as plt
from io import BytesIO
from pathlib import Path
import sys
import tempfile
import zipfile
from datetime import datetime

sys.path.insert(0, str(Path(__file__).parent))

from config.logging_config import setup_logging
from config.workflow_settings import DEFAULT_SETTINGS
from lipidomics.data_processing import ANALYTE
from lipidomics.descriptive import style_summary_table
from lipidomics.report_generation import ExcelReportGenerator
from lipidomics.statistical_tests import format_testing_report
from lipidomics.visualization import LipidVisualizer
from lipidomics.workflow import run_workflow

st.set_page_config(page_title="Lipidomics Statistics Workflow", page_icon="🧬", layout="wide")
setup_logging()


def init_session_state():
    """Initialize session state variables."""
    defaults = {
        'results': None,
        'figures': {},
        'last_file': None,
        'last_settings': None,  # Settings the cached results were computed with
        'workdir': None,
    }
    for key, val in defaults.items():
        if key not in st.session_state:
            st.session_state[key] = val


def check_settings_changed(settings):
    """Check if workflow settings have changed, reset caches if so."""
    if st.session_state.last_settings != settings:
        st.session_state.results = None
        st.session_state.figures = {}
        st.session_state.last_settings = settings
        return True
    return False


def fresh_workdir():
    """Replace the previous run's temporary directory with a new one."""
    previous = st.session_state.workdir
    if previous is not None:
        previous.cleanup()
    st.session_state.workdir = tempfile.TemporaryDirectory(prefix="lipidomics_")
    return Path(st.session_state.workdir.name)


def fig_to_bytes(fig, format='png', dpi=300):
    """Convert matplotlib figure to bytes."""
    buf = BytesIO()
    fig.savefig(buf, format=format, dpi=dpi, bbox_inches='tight')
    buf.seek(0)
    return buf.getvalue()


def store_figure(fig, name):
    """Store a figure in session state."""
    st.session_state.figures[name] = fig


def excel_report_bytes(results):
    buf = BytesIO()
    ExcelReportGenerator(results).save_excel_report(buf)
    buf.seek(0)
    return buf.getvalue()


def create_results_zip(results, figures):
    """Create ZIP with long table, p-values, report and figures."""
    buf = BytesIO()
    with zipfile.ZipFile(buf, 'w', zipfile.ZIP_DEFLATED) as zf:
        zf.writestr('data/lipids_long.csv', results.long.to_csv(index=False))
        zf.writestr('data/summary.csv', results.summary.to_csv(index=False))
        zf.writestr('data/pvalues.csv', results.tests.pvalues.to_csv())
        if results.clustering is not None:
            zf.writestr('data/clusters.csv', results.clustering.assignments.to_csv())

        zf.writestr('reports/lipidomics_report.xlsx', excel_report_bytes(results))
        zf.writestr('reports/hypothesis_tests.txt', format_testing_report(results.tests))

        for name, fig in figures.items():
            if fig:
                zf.writestr(f'figures/{name}.png', fig_to_bytes(fig, 'png'))
                zf.writestr(f'figures/{name}.pdf', fig_to_bytes(fig, 'pdf'))

    buf.seek(0)
    return buf.getvalue()


def render_sidebar():
    """Render sidebar settings."""
    st.sidebar.markdown("## ⚙️ Settings")

    st.sidebar.markdown("### Input layout")
    sample_col = st.sidebar.text_input("Sample column", DEFAULT_SETTINGS.sample_col)
    group_col = st.sidebar.text_input("Group column", DEFAULT_SETTINGS.group_col)
    covariates = st.sidebar.text_input("Covariate columns (comma-separated)",
                                       ', '.join(DEFAULT_SETTINGS.covariate_cols))
    detection_limit = st.sidebar.number_input(
        f"Detection limit ({DEFAULT_SETTINGS.units})", 0.0001, 10.0,
        DEFAULT_SETTINGS.detection_limit, format="%.4f")

    st.sidebar.markdown("### Analysis")
    alpha = st.sidebar.slider("Significance (α)", 0.01, 0.10, DEFAULT_SETTINGS.alpha, 0.01)
    n_clusters = st.sidebar.number_input("Clusters (k)", 1, 10, DEFAULT_SETTINGS.n_clusters)
    n_init = st.sidebar.number_input("k-means starts", 1, 200, DEFAULT_SETTINGS.n_init)
    seed = st.sidebar.number_input("Random seed", 0, 2**31 - 1, DEFAULT_SETTINGS.seed)

    st.sidebar.markdown("### 🎨 Appearance")
    palette_options = {
        "Set2": "Set2 (Default - Soft pastels)",
        "Set1": "Set1 (Bold primary)",
        "Paired": "Paired (Light/dark pairs)",
        "Dark2": "Dark2 (Darker pastels)",
        "colorblind": "Colorblind-friendly",
        "tab10": "Tab10 (Matplotlib default)",
    }
    color_palette = st.sidebar.selectbox("Color palette", list(palette_options.keys()),
                                         format_func=lambda x: palette_options[x])

    return DEFAULT_SETTINGS.with_overrides(
        sample_col=sample_col.strip(),
        group_col=group_col.strip(),
        covariate_cols=[c.strip() for c in covariates.split(',') if c.strip()],
        detection_limit=float(detection_limit),
        alpha=float(alpha),
        n_clusters=int(n_clusters),
        n_init=int(n_init),
        seed=int(seed),
        color_palette=color_palette,
    )


def render_data_tab(results):
    """Long table and ingestion details."""
    st.markdown("### Long-Form Table")
    schema = results.processed.schema

    st.caption(f"{len(results.long)} rows: one per (sample, analyte). "
               f"Concentrations below detection set to "
               f"{results.settings.detection_limit} {results.settings.units}.")
    st.dataframe(results.long.head(500), hide_index=True)

    if schema.excluded_cols:
        with st.expander(f"Excluded columns ({len(schema.excluded_cols)})"):
            st.write(', '.join(schema.excluded_cols))

    replaced = {c: n for c, n in results.quality['replacement_counts'].items() if n}
    if replaced:
        with st.expander(f"Values set to the detection limit ({sum(replaced.values())})"):
            st.dataframe(pd.Series(replaced, name='replaced').sort_values(ascending=False))


def render_summary_tab(results):
    st.markdown("### Mean and SD by Group")
    st.dataframe(style_summary_table(results.summary))


def render_boxplot_tab(results, settings):
    """Faceted box plots for analytes matching a name pattern."""
    st.markdown("### Analyte Box Plots")
    viz = LipidVisualizer(color_palette=settings.color_palette,
                          group_order=settings.label_order, units=settings.units)

    col1, col2, col3 = st.columns([2, 1, 1])
    pattern = col1.text_input("Analyte name contains", settings.boxplot_pattern)
    ncols = col2.number_input("Columns", 1, 8, settings.boxplot_ncols)
    log_scale = col3.checkbox("Log₁₀ scale", key="box_log")

    n_match = results.long.loc[results.long[ANALYTE].str.contains(pattern, regex=False),
                               ANALYTE].nunique()
    st.caption(f"{n_match} matching analyte(s)")

    fig = viz.plot_analyte_boxplots(results.long, pattern, ncols=int(ncols), log_scale=log_scale)
    st.pyplot(fig)
    store_figure(fig, f'boxplots_{pattern}{"_log" if log_scale else ""}')
    plt.close(fig)


def render_tests_tab(results):
    """Hypothesis test results and multiplicity summary."""
    st.markdown("### Hypothesis Tests")
    tests = results.tests
    counts = tests.counts

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Tested", counts.m)
    c2.metric(f"p < {counts.alpha}", counts.n_uncorrected)
    c3.metric("Bonferroni", counts.n_bonferroni)
    c4.metric("FDR (BH)", counts.n_fdr)
    st.caption(f"Mann-Whitney U p < {counts.alpha}: {tests.rank_test_uncorrected}")

    st.dataframe(counts.as_frame(), hide_index=True)

    show = st.radio("Show", ["All", "FDR significant", "Uncorrected significant"], horizontal=True)
    if show == "FDR significant":
        table = tests.significant('p_adj_fdr')
    elif show == "Uncorrected significant":
        table = tests.significant('p_log_t')
    else:
        table = tests.pvalues
    st.dataframe(table)

    fig = results.figures.get('pvalue_histogram')
    if fig is not None:
        st.pyplot(fig)
        store_figure(fig, 'pvalue_histogram')

    if tests.failures:
        with st.expander(f"⚠️ Analytes not tested ({len(tests.failures)})"):
            st.dataframe(pd.DataFrame({'analyte': list(tests.failures.keys()),
                                       'reason': list(tests.failures.values())}),
                         hide_index=True)


def render_clustering_tab(results):
    """k-means assignments, sums of squares and PCA projection."""
    st.markdown("### k-means Clustering")
    clustering = results.clustering
    if clustering is None:
        st.error(f"Clustering failed: {results.clustering_error}")
        return

    c1, c2, c3 = st.columns(3)
    c1.metric("Between SS / Total SS", f"{clustering.between_ratio * 100:.1f}%")
    c2.metric("Total within SS", f"{clustering.tot_withinss:.2f}")
    c3.metric("Silhouette",
              f"{clustering.silhouette:.3f}" if clustering.silhouette is not None else "N/A")

    if clustering.dropped_columns:
        st.warning(f"Dropped {len(clustering.dropped_columns)} constant analyte(s) before "
                   f"standardizing: {', '.join(clustering.dropped_columns[:10])}")
    if not clustering.converged:
        st.info(f"Best start did not converge within {results.settings.max_iter} iterations.")
    if clustering.n_discarded_starts:
        st.info(f"{clustering.n_discarded_starts} of {clustering.n_init} k-means start(s) "
                f"left a cluster empty and were discarded.")

    col1, col2 = st.columns(2)
    with col1:
        st.dataframe(clustering.summary_frame())
    with col2:
        crosstab = clustering.crosstab()
        if crosstab is not None:
            st.dataframe(crosstab)

    fig = results.figures.get('cluster_projection')
    if fig is not None:
        st.pyplot(fig)
        store_figure(fig, 'cluster_projection')


def render_export_tab(results):
    """Export tab."""
    st.markdown("### Export Results")

    col1, col2 = st.columns(2)
    with col1:
        st.markdown("#### Individual Downloads")
        st.download_button("📥 Long table (CSV)", results.long.to_csv(index=False),
                           "lipids_long.csv", "text/csv")
        st.download_button("📥 P-values (CSV)", results.tests.pvalues.to_csv(),
                           "lipid_pvalues.csv", "text/csv")

    with col2:
        st.download_button("📥 Statistical Report (Excel)", excel_report_bytes(results),
                           f"lipidomics_report_{datetime.now():%Y%m%d}.xlsx",
                           "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet")

    st.markdown("---")
    if st.button("📦 Generate Complete Package", type="primary"):
        with st.spinner("Creating ZIP..."):
            zip_bytes = create_results_zip(results, st.session_state.figures)
            st.download_button("📥 Download ZIP", zip_bytes,
                               f"lipidomics_analysis_{datetime.now():%Y%m%d_%H%M}.zip",
                               "application/zip")


def main():
    """Main entry point."""
    init_session_state()
    try:
        settings = render_sidebar()
    except ValueError as e:
        st.sidebar.error(f"Invalid settings: {e}")
        return

    st.markdown("# 🧬 Lipidomics Statistics Workflow")
    uploaded = st.file_uploader("Upload Excel/ODS/CSV file", ['xlsx', 'xls', 'ods', 'csv'])

    if uploaded:
        file_changed = st.session_state.last_file != uploaded.name
        if file_changed:
            st.session_state.results = None
            st.session_state.figures = {}
            st.session_state.last_file = uploaded.name
            st.session_state.last_settings = None

        settings_changed = check_settings_changed(settings)

        if st.session_state.results is None:
            with st.spinner("Running workflow..." + (" (settings changed)" if settings_changed else "")):
                workdir = fresh_workdir()
                input_path = workdir / uploaded.name
                input_path.write_bytes(uploaded.getvalue())

                try:
                    st.session_state.results = run_workflow(
                        input_path, settings.with_overrides(output_dir=str(workdir))
                    )
                    st.success("✅ Data loaded and analysed!")
                except ValueError as e:
                    st.error(f"Error: {e}")
                    return

    if st.session_state.results:
        results = st.session_state.results
        quality = results.quality

        c1, c2, c3 = st.columns(3)
        c1.metric("Samples", quality['n_samples'])
        c2.metric("Analytes", quality['n_analytes'])
        c3.metric("Groups", quality['n_groups'])
        st.caption(f"📊 {quality['pct_replaced']:.1f}% of values at the detection limit | "
                   f"α = **{results.settings.alpha}**")

        tabs = st.tabs(["📋 Data", "📈 Summary", "📦 Box Plots", "🧪 Tests", "🔵 Clustering",
                        "💾 Export"])
        with tabs[0]: render_data_tab(results)
        with tabs[1]: render_summary_tab(results)
        with tabs[2]: render_boxplot_tab(results, settings)
        with tabs[3]: render_tests_tab(results)
        with tabs[4]: render_clustering_tab(results)
        with tabs[5]: render_export_tab(results)


if __name__ == "__main__":
    main()
