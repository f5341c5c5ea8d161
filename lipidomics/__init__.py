"""Lipidomics statistics workflow modules."""
from .exceptions import ClusteringError, DataValidationError, LipidomicsError, StatisticalTestError
from .data_processing import (
    LipidDataProcessor, ProcessedData, read_long_table, validate_data_quality, write_long_table
)
from .descriptive import style_summary_table, summarize_by_group
from .statistical_tests import (
    CorrectionMethod, HypothesisTester, adjust_pvalues, count_significant, format_testing_report
)
from .clustering import KMeansClusterer, cluster_samples, project_pca
from .visualization import LipidVisualizer
from .report_generation import ExcelReportGenerator, write_report
from .workflow import WorkflowResults, run_workflow
