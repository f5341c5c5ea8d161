"""
Data Processing Module for Lipidomics Analysis
===============================================

Handles:
1. Loading data from Excel/ODS/delimited files
2. Validating the column layout (sample, group, covariates, analytes)
3. Recoding group labels
4. Data cleaning (detection-limit floor for zero/missing values)
5. Reshaping wide -> long and the one-time long-table export
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np
import pandas as pd

from config.workflow_settings import DEFAULT_SETTINGS, WorkflowSettings
from lipidomics.exceptions import DataValidationError

logger = logging.getLogger(__name__)

# Column names of the long-form table
SAMPLE = "sample"
GROUP = "group"
ANALYTE = "analyte"
CONCENTRATION = "concentration"


@dataclass
class ColumnSchema:
    """Validated column layout of the input table."""
    n_rows: int
    n_cols: int
    sample_col: str
    group_col: str
    covariate_cols: List[str] = field(default_factory=list)
    analyte_cols: List[str] = field(default_factory=list)
    excluded_cols: List[str] = field(default_factory=list)  # class sums and other columns
    sheet_used: Optional[str] = None
    replacement_counts: Dict[str, int] = field(default_factory=dict)  # values set to the detection limit

    @property
    def long_columns(self) -> List[str]:
        return [SAMPLE, GROUP] + list(self.covariate_cols) + [ANALYTE, CONCENTRATION]


@dataclass
class ProcessedData:
    """Container for processed lipidomics data."""
    raw_data: pd.DataFrame
    sample_data: pd.DataFrame     # cleaned wide table, one row per sample
    schema: ColumnSchema
    concentrations: pd.DataFrame  # analyte columns only, indexed by sample id
    long: pd.DataFrame            # canonical long-form table
    export_path: Optional[Path] = None
    export_written: bool = False


def _normalize_code(code: Any) -> Any:
    """Normalize a raw group code so 1, 1.0 and '1' look the same."""
    if code is None or (not isinstance(code, str) and pd.isna(code)):
        return None
    if isinstance(code, str):
        code = code.strip()
        try:
            number = float(code)
        except ValueError:
            return code
        return int(number) if number.is_integer() else number
    if isinstance(code, (float, np.floating)) and float(code).is_integer():
        return int(code)
    if isinstance(code, (np.integer,)):
        return int(code)
    return code


class LipidDataProcessor:
    """
    Process lipidomics concentration tables from spreadsheet files.

    Usage:
        processor = LipidDataProcessor()
        processed = processor.load_and_process("lipids.xlsx")
    """

    DELIMITED_SUFFIXES = {'.csv': ',', '.tsv': '\t', '.txt': '\t'}

    def __init__(self, settings: Optional[WorkflowSettings] = None):
        """
        Initialize the processor.

        Args:
            settings: Column layout and detection limit. Defaults to DEFAULT_SETTINGS.
        """
        self.settings = (settings or DEFAULT_SETTINGS).validate()
        self.detection_limit = self.settings.detection_limit
        self._label_lookup = {
            _normalize_code(code): label for code, label in self.settings.group_labels.items()
        }
        self._markers = {m.strip().lower() for m in self.settings.below_detection_markers}

    @staticmethod
    def _excel_engine(filepath: Path) -> Optional[str]:
        suffix = filepath.suffix.lower()
        if suffix == '.ods':
            return 'odf'
        elif suffix in ['.xlsx', '.xlsm']:
            return 'openpyxl'
        elif suffix == '.xls':
            return 'xlrd'
        return None

    def load_file(
        self,
        filepath: Union[str, Path],
        sheet_name: Union[str, int, None] = None
    ) -> Tuple[pd.DataFrame, str]:
        """
        Load data from an Excel/ODS workbook or a delimited text file.

        Args:
            filepath: Path to the file
            sheet_name: Sheet to load (name or index). If None, uses the first sheet.

        Returns:
            Tuple of (DataFrame, sheet_name_used)
        """
        filepath = Path(filepath)
        if not filepath.exists():
            raise FileNotFoundError(f"Input file not found: {filepath}")

        suffix = filepath.suffix.lower()
        if suffix in self.DELIMITED_SUFFIXES:
            df = pd.read_csv(filepath, sep=self.DELIMITED_SUFFIXES[suffix])
            sheet_used = filepath.name
        else:
            engine = self._excel_engine(filepath)
            xlsx = pd.ExcelFile(filepath, engine=engine)
            available_sheets = xlsx.sheet_names
            selected_sheet = sheet_name if sheet_name is not None else 0
            if isinstance(selected_sheet, str) and selected_sheet not in available_sheets:
                raise DataValidationError(
                    f"Sheet '{selected_sheet}' not found in {filepath.name}; "
                    f"available sheets: {available_sheets}"
                )
            df = xlsx.parse(selected_sheet)
            sheet_used = (selected_sheet if isinstance(selected_sheet, str)
                          else available_sheets[selected_sheet])

        df.columns = [str(c).strip() for c in df.columns]
        logger.info(f"Loaded {len(df)} rows x {len(df.columns)} columns from {filepath.name} "
                    f"(sheet: {sheet_used})")
        return df, sheet_used

    def is_analyte_column(self, col: str) -> bool:
        """Single-species columns carry the chain delimiter ('PC 34:1'); class sums do not ('PC')."""
        return self.settings.analyte_delimiter in str(col)

    def detect_structure(self, df: pd.DataFrame) -> ColumnSchema:
        """
        Validate the configured metadata columns and tag analyte columns.

        Raises:
            DataValidationError: if expected columns are missing, no analyte column
                is present or sample identifiers are not unique.
        """
        s = self.settings
        columns = [str(c) for c in df.columns]

        expected = [s.sample_col, s.group_col] + list(s.covariate_cols)
        missing = [c for c in expected if c not in columns]
        if missing:
            raise DataValidationError(
                f"Input table is missing expected column(s): {missing}. "
                f"Found columns: {columns[:10]}{' ...' if len(columns) > 10 else ''}"
            )

        schema = ColumnSchema(
            n_rows=len(df),
            n_cols=len(columns),
            sample_col=s.sample_col,
            group_col=s.group_col,
            covariate_cols=list(s.covariate_cols),
        )

        for col in columns:
            if col in expected:
                continue
            if self.is_analyte_column(col):
                schema.analyte_cols.append(col)
            else:
                schema.excluded_cols.append(col)

        if not schema.analyte_cols:
            raise DataValidationError(
                f"No analyte columns found: no column name contains "
                f"'{s.analyte_delimiter}'"
            )

        sample_ids = df[s.sample_col]
        if sample_ids.isna().any():
            raise DataValidationError(f"Column '{s.sample_col}' has missing sample identifiers")
        duplicated = sample_ids[sample_ids.duplicated()].astype(str).unique().tolist()
        if duplicated:
            raise DataValidationError(f"Duplicate sample identifiers: {duplicated[:10]}")

        if schema.excluded_cols:
            logger.info(f"Excluding {len(schema.excluded_cols)} non-analyte column(s): "
                        f"{schema.excluded_cols}")
        logger.info(f"Detected {len(schema.analyte_cols)} analyte columns")
        return schema

    def recode_groups(self, groups: pd.Series) -> pd.Series:
        """
        Map raw group codes to display labels.

        Raises:
            DataValidationError: for missing codes or codes outside the lookup.
        """
        normalized = groups.map(_normalize_code)
        labels = normalized.map(lambda code: self._label_lookup.get(code))
        unknown_mask = labels.isna()
        if unknown_mask.any():
            unknown = sorted({repr(v) for v in groups[unknown_mask].tolist()})
            raise DataValidationError(
                f"Unrecognized group code(s) in '{groups.name}': {', '.join(unknown)}. "
                f"Expected one of {list(self.settings.group_labels.keys())}"
            )
        return labels.astype(str)

    def _to_numeric(self, series: pd.Series) -> pd.Series:
        """
        Convert a column to float, reading below-detection markers
        ('ND', '<LOD', '-----', ...) and blanks as missing.

        Raises:
            DataValidationError: if any other non-numeric text is present.
        """
        # Convert series to object type first to avoid downcasting issues
        series = series.astype(object)

        as_text = series.astype(str).str.strip().str.lower()
        marker_mask = series.notna() & as_text.isin(self._markers)
        series = series.where(~marker_mask, None)

        numeric = pd.to_numeric(series, errors='coerce')
        invalid = series.notna() & numeric.isna()
        if invalid.any():
            examples = series[invalid].astype(str).unique().tolist()[:5]
            raise DataValidationError(
                f"Column '{series.name}' contains non-numeric values: {examples}"
            )
        return numeric.astype(float)

    def _clean_numeric_column_with_count(
        self,
        series: pd.Series,
        allow_negative: bool = False
    ) -> Tuple[pd.Series, int]:
        """
        Convert a column to numeric and floor it at the detection limit.

        Missing values (blanks and below-detection markers) and zeros are
        replaced with the detection limit. Negative values are an error unless
        ``allow_negative`` is set, in which case they are kept as they are.

        Returns:
            Tuple of (cleaned series, count of replaced values)

        Raises:
            DataValidationError: if a value is negative and negatives are not allowed.
        """
        numeric = self._to_numeric(series)

        negative = numeric < 0
        if negative.any() and not allow_negative:
            raise DataValidationError(
                f"Column '{series.name}' contains {int(negative.sum())} negative "
                f"concentration(s), e.g. {numeric[negative].iloc[0]}"
            )

        floor_mask = numeric.isna() | (numeric == 0)
        numeric = numeric.where(~floor_mask, self.detection_limit)
        return numeric, int(floor_mask.sum())

    def clean_data(
        self,
        df: pd.DataFrame,
        schema: ColumnSchema
    ) -> pd.DataFrame:
        """
        Clean the raw data:
        - Recode group labels
        - Convert covariate and analyte columns to numeric
        - Replace zero/missing values with the detection limit
        - Reject negative concentrations (negative covariates are kept)
        - Drop excluded (class-sum) columns
        """
        df = df[[schema.sample_col, schema.group_col] + schema.covariate_cols
                + schema.analyte_cols].copy()
        df[schema.sample_col] = df[schema.sample_col].astype(str).str.strip()
        df[schema.group_col] = self.recode_groups(df[schema.group_col])

        counts = {}
        for col in schema.covariate_cols:
            df[col], counts[col] = self._clean_numeric_column_with_count(
                df[col], allow_negative=True
            )
        for col in schema.analyte_cols:
            df[col], counts[col] = self._clean_numeric_column_with_count(df[col])
        schema.replacement_counts = counts

        n_replaced = sum(counts[c] for c in schema.analyte_cols)
        if n_replaced:
            logger.info(f"Replaced {n_replaced} zero/missing analyte values with "
                        f"detection limit {self.detection_limit}")
        return df.reset_index(drop=True)

    def to_long(self, wide: pd.DataFrame, schema: ColumnSchema) -> pd.DataFrame:
        """Reshape the cleaned wide table to one row per (sample, analyte)."""
        renamed = wide.rename(columns={schema.sample_col: SAMPLE, schema.group_col: GROUP})
        long = renamed.melt(
            id_vars=[SAMPLE, GROUP] + schema.covariate_cols,
            value_vars=schema.analyte_cols,
            var_name=ANALYTE,
            value_name=CONCENTRATION,
        )
        return long[schema.long_columns]

    def load_and_process(
        self,
        filepath: Union[str, Path],
        sheet_name: Union[str, int, None] = None,
        export_path: Union[str, Path, None] = None
    ) -> ProcessedData:
        """
        Main entry point: load, validate, clean and reshape a lipidomics file.

        Args:
            filepath: Path to Excel/ODS/CSV file
            sheet_name: Sheet to load (name or index). Defaults to settings.sheet_name.
            export_path: If given, the long table is written there unless the file exists.

        Returns:
            ProcessedData object with the wide and long tables
        """
        if sheet_name is None:
            sheet_name = self.settings.sheet_name
        raw_df, sheet_used = self.load_file(filepath, sheet_name)

        schema = self.detect_structure(raw_df)
        schema.sheet_used = sheet_used

        clean_df = self.clean_data(raw_df, schema)
        concentrations = clean_df.set_index(schema.sample_col)[schema.analyte_cols]
        long = self.to_long(clean_df, schema)

        processed = ProcessedData(
            raw_data=raw_df,
            sample_data=clean_df,
            schema=schema,
            concentrations=concentrations,
            long=long,
        )

        if export_path is not None:
            processed.export_path = Path(export_path)
            processed.export_written = write_long_table(
                long, export_path, sep=self.settings.long_table_sep
            )

        return processed


def write_long_table(
    long: pd.DataFrame,
    path: Union[str, Path],
    sep: str = ","
) -> bool:
    """
    Write the long table to a delimited file unless the file already exists.

    An existing file is never overwritten or refreshed, even if stale.

    Returns:
        True if the file was written, False if the write was skipped.
    """
    path = Path(path)
    if path.exists():
        logger.info(f"Long table {path} already exists; skipping write")
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    long.to_csv(path, sep=sep, index=False)
    logger.info(f"Wrote long table ({len(long)} rows) to {path}")
    return True


def read_long_table(path: Union[str, Path], sep: str = ",") -> pd.DataFrame:
    """
    Read a long table written by ``write_long_table``.

    Raises:
        DataValidationError: if required columns are missing or a concentration
            is not strictly positive.
    """
    path = Path(path)
    long = pd.read_csv(path, sep=sep, dtype={SAMPLE: str, GROUP: str, ANALYTE: str},
                       float_precision="round_trip")

    missing = [c for c in [SAMPLE, GROUP, ANALYTE, CONCENTRATION] if c not in long.columns]
    if missing:
        raise DataValidationError(f"{path.name} is missing long-table column(s): {missing}")

    bad = long[~(long[CONCENTRATION] > 0)]
    if not bad.empty:
        raise DataValidationError(
            f"{path.name} has {len(bad)} non-positive or missing concentration(s), "
            f"e.g. analyte '{bad[ANALYTE].iloc[0]}' in sample '{bad[SAMPLE].iloc[0]}'"
        )
    return long


def validate_data_quality(processed: ProcessedData) -> Dict[str, Any]:
    """
    Generate a data quality report.
    """
    schema = processed.schema
    groups = processed.sample_data[schema.group_col]
    analyte_counts = {c: schema.replacement_counts.get(c, 0) for c in schema.analyte_cols}
    n_values = len(processed.sample_data) * len(schema.analyte_cols)

    return {
        'n_samples': len(processed.sample_data),
        'n_analytes': len(schema.analyte_cols),
        'n_excluded_cols': len(schema.excluded_cols),
        'excluded_cols': schema.excluded_cols,
        'groups': groups.value_counts().to_dict(),
        'n_groups': groups.nunique(),
        'replacement_counts': analyte_counts,
        'pct_replaced': (sum(analyte_counts.values()) / n_values * 100) if n_values else 0.0,
        'sheet_used': schema.sheet_used,
    }


if __name__ == "__main__":
    import sys

    from config.logging_config import setup_logging

    setup_logging()

    if len(sys.argv) > 1:
        filepath = sys.argv[1]
    else:
        print("Usage: python -m lipidomics.data_processing <path_to_file>")
        print("\nRunning demo with synthetic data...")

        rng = np.random.default_rng(42)
        demo_data = pd.DataFrame({
            'Sample': [f'S{i}' for i in range(10)],
            'Group': [0] * 5 + [1] * 5,
            'Age': rng.integers(20, 70, 10),
            'BMI': rng.normal(25, 3, 10).round(1),
            'PC': rng.lognormal(3, 0.5, 10),
            'PC 34:1': rng.lognormal(2, 0.5, 10),
            'PC 36:2': rng.lognormal(1.5, 0.5, 10),
            'LPC 16:0': rng.lognormal(0, 0.5, 10),
            'TAG 52:2': rng.lognormal(1, 1, 10),
        })
        demo_data.loc[2, 'LPC 16:0'] = 0

        demo_path = '/tmp/demo_lipid_data.xlsx'
        demo_data.to_excel(demo_path, index=False)
        filepath = demo_path

    processor = LipidDataProcessor()
    processed = processor.load_and_process(filepath)

    print("\n" + "=" * 60)
    print("DATA PROCESSING REPORT")
    print("=" * 60)

    quality = validate_data_quality(processed)
    print(f"\nSamples: {quality['n_samples']}")
    print(f"Analytes: {quality['n_analytes']}")
    print(f"Groups: {quality['groups']}")
    print(f"Excluded columns: {quality['excluded_cols']}")

    print("\n--- LONG TABLE (first 5 rows) ---")
    print(processed.long.head())
