"""
Statistical Testing Module for Lipidomics Analysis
===================================================

This module handles:
1. Per-analyte two-group tests (Mann-Whitney U, Welch t-test on log values)
2. Multiple comparison corrections
3. Significance counts under uncorrected, Bonferroni and FDR thresholds
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

import numpy as np
import pandas as pd
from scipy import stats

from config.lipid_classes import get_lipid_class
from lipidomics.data_processing import ANALYTE, CONCENTRATION, GROUP
from lipidomics.exceptions import StatisticalTestError

logger = logging.getLogger(__name__)


class CorrectionMethod(Enum):
    """Multiple comparison correction methods."""
    BONFERRONI = "bonferroni"
    HOLM = "holm"
    FDR_BH = "fdr_bh"  # Benjamini-Hochberg
    FDR_BY = "fdr_by"  # Benjamini-Yekutieli
    NONE = "none"


@dataclass
class AnalyteTestResult:
    """Both raw tests for a single analyte."""
    analyte: str
    groups_compared: List[str]
    n_per_group: Dict[str, int]
    u_statistic: float
    p_rank: float
    t_statistic: float
    p_log_t: float
    log_mean_diff: float  # mean(log b) - mean(log a), second group vs reference


@dataclass
class SignificanceCounts:
    """How many analytes pass each significance threshold."""
    m: int
    alpha: float
    bonferroni_threshold: float
    n_uncorrected: int
    n_bonferroni: int
    n_fdr: int

    def as_frame(self) -> pd.DataFrame:
        return pd.DataFrame({
            'Threshold': ['Uncorrected', 'Bonferroni (FWER)', 'Benjamini-Hochberg (FDR)'],
            'Criterion': [f"p < {self.alpha}",
                          f"p < {self.alpha}/{self.m} = {self.bonferroni_threshold:.3g}",
                          f"adjusted p < {self.alpha}"],
            'Significant': [self.n_uncorrected, self.n_bonferroni, self.n_fdr],
            'Tested': [self.m] * 3,
        })


@dataclass
class HypothesisTestResults:
    """Results of testing every analyte."""
    pvalues: pd.DataFrame                 # indexed by analyte, sorted by p_log_t
    counts: SignificanceCounts
    rank_test_uncorrected: int            # Mann-Whitney p < alpha
    groups_compared: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    correction_method: CorrectionMethod = CorrectionMethod.FDR_BH
    alpha: float = 0.05

    @property
    def n_tested(self) -> int:
        return len(self.pvalues)

    def significant(self, column: str = 'p_adj_fdr') -> pd.DataFrame:
        """Analytes below alpha on the given p-value column."""
        return self.pvalues[self.pvalues[column] < self.alpha]


def adjust_pvalues(
    pvalues: Union[pd.Series, np.ndarray],
    method: CorrectionMethod = CorrectionMethod.FDR_BH
) -> Union[pd.Series, np.ndarray]:
    """
    Apply multiple comparison correction.

    For FDR_BH the p-values are ranked ascending, each is scaled by m / rank and
    the running minimum is taken from the largest rank down, capped at 1.
    A Series input keeps its index so results stay joinable by key.
    """
    index = pvalues.index if isinstance(pvalues, pd.Series) else None
    p = np.asarray(pvalues, dtype=float)
    n = len(p)

    if n == 0:
        adjusted = p.copy()
    elif not np.all(np.isfinite(p)) or np.any((p < 0) | (p > 1)):
        raise StatisticalTestError("p-values must be finite and within [0, 1]")
    elif method == CorrectionMethod.NONE:
        adjusted = p.copy()
    elif method == CorrectionMethod.BONFERRONI:
        adjusted = np.minimum(p * n, 1.0)
    elif method == CorrectionMethod.HOLM:
        sorted_idx = np.argsort(p, kind='mergesort')
        scaled = np.minimum(p[sorted_idx] * (n - np.arange(n)), 1.0)
        # Ensure monotonicity
        scaled = np.maximum.accumulate(scaled)
        adjusted = np.empty_like(p)
        adjusted[sorted_idx] = scaled
    elif method == CorrectionMethod.FDR_BH:
        adjusted = stats.false_discovery_control(p, method='bh')
    elif method == CorrectionMethod.FDR_BY:
        adjusted = stats.false_discovery_control(p, method='by')
    else:
        raise ValueError(f"Unknown correction method: {method}")

    if index is not None:
        return pd.Series(adjusted, index=index, name=getattr(pvalues, 'name', None))
    return adjusted


def count_significant(
    pvalues: Union[pd.Series, np.ndarray],
    adjusted: Union[pd.Series, np.ndarray],
    alpha: float = 0.05
) -> SignificanceCounts:
    """Count p < alpha, p < alpha/m (Bonferroni) and adjusted p < alpha (FDR)."""
    p = np.asarray(pvalues, dtype=float)
    adj = np.asarray(adjusted, dtype=float)
    m = len(p)
    if m == 0:
        raise StatisticalTestError("No p-values to count")
    if len(adj) != m:
        raise ValueError("pvalues and adjusted must have the same length")

    threshold = alpha / m
    return SignificanceCounts(
        m=m,
        alpha=alpha,
        bonferroni_threshold=threshold,
        n_uncorrected=int(np.sum(p < alpha)),
        n_bonferroni=int(np.sum(p < threshold)),
        n_fdr=int(np.sum(adj < alpha)),
    )


class HypothesisTester:
    """
    Two-group testing of every analyte with multiplicity correction.

    Usage:
        tester = HypothesisTester(alpha=0.05)
        results = tester.run_all(long_table)
    """

    MIN_GROUP_SIZE = 2

    def __init__(
        self,
        alpha: float = 0.05,
        correction_method: CorrectionMethod = CorrectionMethod.FDR_BH,
        group_order: Optional[List[str]] = None,
        strict: bool = False
    ):
        """
        Initialize the tester.

        Args:
            alpha: Significance level for all thresholds
            correction_method: Correction applied to the log-scale t-test p-values
            group_order: (reference, comparison) labels; sorted labels if None
            strict: Raise on the first analyte that cannot be tested instead of
                recording it in ``failures``
        """
        self.alpha = alpha
        self.correction_method = correction_method
        self.group_order = list(group_order) if group_order else None
        self.strict = strict

    def test_analyte(
        self,
        values_a: np.ndarray,
        values_b: np.ndarray,
        analyte: str,
        groups: Optional[List[str]] = None
    ) -> AnalyteTestResult:
        """
        Run the rank test and the log-scale t-test for one analyte.

        Raises:
            StatisticalTestError: if either test is undefined for this analyte.
        """
        groups = groups or ['a', 'b']
        a = np.asarray(values_a, dtype=float)
        b = np.asarray(values_b, dtype=float)

        for name, values in zip(groups, (a, b)):
            if len(values) < self.MIN_GROUP_SIZE:
                raise StatisticalTestError(
                    f"{analyte}: group '{name}' has {len(values)} observation(s); "
                    f"at least {self.MIN_GROUP_SIZE} required",
                    analyte=analyte,
                )
            if np.isnan(values).any():
                raise StatisticalTestError(
                    f"{analyte}: group '{name}' contains missing values", analyte=analyte
                )
            if np.any(values <= 0):
                raise StatisticalTestError(
                    f"{analyte}: group '{name}' contains non-positive concentrations; "
                    f"log transform undefined",
                    analyte=analyte,
                )

        log_a, log_b = np.log(a), np.log(b)
        if np.ptp(log_a) == 0 and np.ptp(log_b) == 0:
            raise StatisticalTestError(
                f"{analyte}: both groups are constant; t statistic undefined",
                analyte=analyte,
            )

        u_stat, p_rank = stats.mannwhitneyu(a, b, alternative='two-sided')
        t_stat, p_log = stats.ttest_ind(log_a, log_b, equal_var=False)

        if not (np.isfinite(p_rank) and np.isfinite(p_log)):
            raise StatisticalTestError(
                f"{analyte}: non-finite p-value (rank p={p_rank}, log-t p={p_log})",
                analyte=analyte,
            )

        return AnalyteTestResult(
            analyte=analyte,
            groups_compared=list(groups),
            n_per_group={groups[0]: len(a), groups[1]: len(b)},
            u_statistic=float(u_stat),
            p_rank=float(p_rank),
            t_statistic=float(t_stat),
            p_log_t=float(p_log),
            log_mean_diff=float(np.mean(log_b) - np.mean(log_a)),
        )

    def _resolve_groups(self, long: pd.DataFrame) -> List[str]:
        present = sorted(long[GROUP].unique().tolist())
        if len(present) != 2:
            raise StatisticalTestError(
                f"Exactly two groups are required for two-sample tests; found {present}"
            )
        if self.group_order:
            if sorted(self.group_order) != present:
                raise StatisticalTestError(
                    f"group_order {self.group_order} does not match groups in data {present}"
                )
            return list(self.group_order)
        return present

    def run_all(self, long: pd.DataFrame) -> HypothesisTestResults:
        """
        Test every analyte in a long-form table and correct for multiplicity.

        Analytes that cannot be tested are logged, listed in ``failures`` and left
        out of the p-value table and of m.
        """
        groups = self._resolve_groups(long)

        rows = []
        failures = {}
        for analyte, sub in long.groupby(ANALYTE, sort=False):
            values = [sub.loc[sub[GROUP] == g, CONCENTRATION].to_numpy() for g in groups]
            try:
                result = self.test_analyte(values[0], values[1], analyte, groups)
            except StatisticalTestError as e:
                if self.strict:
                    raise
                logger.warning(f"Skipping analyte: {e}")
                failures[analyte] = str(e)
                continue
            rows.append({
                ANALYTE: analyte,
                'lipid_class': get_lipid_class(analyte),
                'n_' + groups[0]: result.n_per_group[groups[0]],
                'n_' + groups[1]: result.n_per_group[groups[1]],
                'log_mean_diff': result.log_mean_diff,
                'u_statistic': result.u_statistic,
                'p_rank': result.p_rank,
                't_statistic': result.t_statistic,
                'p_log_t': result.p_log_t,
            })

        if not rows:
            raise StatisticalTestError(
                f"No analyte could be tested ({len(failures)} failure(s))"
            )

        pvalues = pd.DataFrame(rows).set_index(ANALYTE)
        pvalues['p_adj_fdr'] = adjust_pvalues(pvalues['p_log_t'], self.correction_method)
        pvalues = pvalues.sort_values('p_log_t', kind='mergesort')

        counts = count_significant(pvalues['p_log_t'], pvalues['p_adj_fdr'], self.alpha)
        rank_uncorrected = int((pvalues['p_rank'] < self.alpha).sum())

        logger.info(
            f"Tested {counts.m} analytes ({len(failures)} skipped): "
            f"{counts.n_uncorrected} p<{self.alpha}, {counts.n_bonferroni} Bonferroni, "
            f"{counts.n_fdr} FDR"
        )

        return HypothesisTestResults(
            pvalues=pvalues,
            counts=counts,
            rank_test_uncorrected=rank_uncorrected,
            groups_compared=groups,
            failures=failures,
            correction_method=self.correction_method,
            alpha=self.alpha,
        )


def format_testing_report(results: HypothesisTestResults, top_n: int = 10) -> str:
    """Generate a human-readable report from the testing results."""
    c = results.counts
    lines = []
    lines.append(f"{'='*60}")
    lines.append(f"HYPOTHESIS TESTS: {' vs '.join(results.groups_compared)}")
    lines.append(f"{'='*60}")

    lines.append(f"\nAnalytes tested: {c.m}")
    if results.failures:
        lines.append(f"Analytes skipped: {len(results.failures)}")
        for analyte, reason in list(results.failures.items())[:5]:
            lines.append(f"  {reason}")

    lines.append("\n--- SIGNIFICANCE COUNTS ---")
    lines.append(f"Mann-Whitney p < {c.alpha}: {results.rank_test_uncorrected}")
    lines.append(f"log t-test p < {c.alpha} (uncorrected): {c.n_uncorrected}")
    lines.append(f"log t-test p < {c.bonferroni_threshold:.4g} (Bonferroni): {c.n_bonferroni}")
    lines.append(f"log t-test adjusted p < {c.alpha} ({results.correction_method.value}): {c.n_fdr}")

    lines.append(f"\n--- TOP {top_n} ANALYTES ---")
    cols = ['lipid_class', 'p_rank', 'p_log_t', 'p_adj_fdr']
    lines.append(results.pvalues[cols].head(top_n).to_string(float_format=lambda v: f"{v:.3g}"))

    return "\n".join(lines)


if __name__ == "__main__":
    from config.logging_config import setup_logging

    setup_logging()
    rng = np.random.default_rng(42)

    # 40 analytes, the first 10 shifted in the case group
    records = []
    for i in range(40):
        shift = 0.8 if i < 10 else 0.0
        for group, offset in [('Control', 0.0), ('Case', shift)]:
            for j, value in enumerate(rng.lognormal(offset, 0.5, 12)):
                records.append({'sample': f'{group}_{j}', 'group': group,
                                'analyte': f'PC {30 + i}:1', 'concentration': value})

    tester = HypothesisTester(alpha=0.05, group_order=['Control', 'Case'])
    print(format_testing_report(tester.run_all(pd.DataFrame(records))))
