"""
Descriptive Statistics for the Long-Form Lipid Table
=====================================================

Mean and sample standard deviation of concentration per (analyte, group),
plus a styled wide rendering for the report.
"""

import logging
from typing import Optional

import pandas as pd
from pandas.io.formats.style import Styler

from lipidomics.data_processing import ANALYTE, CONCENTRATION, GROUP
from lipidomics.exceptions import StatisticalTestError

logger = logging.getLogger(__name__)


def summarize_by_group(long: pd.DataFrame) -> pd.DataFrame:
    """
    Calculate n, mean and standard deviation of concentration per (analyte, group).

    Every analyte must be measured in every group with at least two values so
    that the standard deviation is defined.

    Raises:
        StatisticalTestError: naming the analytes with empty or single-value groups.
    """
    groups = sorted(long[GROUP].unique())
    summary = long.groupby([ANALYTE, GROUP], sort=False)[CONCENTRATION].agg([
        ('n', 'count'),
        ('mean', 'mean'),
        ('std', 'std'),
    ])

    full_index = pd.MultiIndex.from_product(
        [long[ANALYTE].unique(), groups], names=[ANALYTE, GROUP]
    )
    summary = summary.reindex(full_index)
    summary['n'] = summary['n'].fillna(0).astype(int)

    undersized = summary[summary['n'] < 2]
    if not undersized.empty:
        offenders = undersized.reset_index()
        details = [f"{row[ANALYTE]} / {row[GROUP]} (n={row['n']})"
                   for _, row in offenders.head(10).iterrows()]
        raise StatisticalTestError(
            f"Standard deviation undefined for {len(offenders)} analyte/group pair(s) "
            f"with fewer than 2 values: {'; '.join(details)}",
            analyte=offenders[ANALYTE].iloc[0],
        )

    logger.info(f"Summarized {summary.index.get_level_values(ANALYTE).nunique()} analytes "
                f"across groups {groups}")
    return summary.reset_index()


def style_summary_table(
    summary: pd.DataFrame,
    precision: int = 4,
    cmap: str = "Blues",
    caption: Optional[str] = "Concentration (nmol/mg) by group: mean and SD"
) -> Styler:
    """Render the summary as analyte x (statistic, group) with formatted numbers."""
    wide = summary.pivot(index=ANALYTE, columns=GROUP, values=['mean', 'std'])
    wide = wide.loc[summary[ANALYTE].unique()]

    mean_cols = [c for c in wide.columns if c[0] == 'mean']
    styler = (
        wide.style
        .format(precision=precision)
        .background_gradient(cmap=cmap, subset=pd.IndexSlice[:, mean_cols], axis=None)
    )
    if caption:
        styler = styler.set_caption(caption)
    return styler
