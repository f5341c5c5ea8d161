"""
Shared fixtures: a small synthetic two-group lipidomics table.

Two analytes are shifted upward in the case group; 'PE 38:4' carries a zero,
a blank and an 'ND' marker that must end up at the detection limit; 'PC' is a
class-sum column that ingestion has to exclude.
"""

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import pytest

from config.workflow_settings import DEFAULT_SETTINGS
from lipidomics.data_processing import LipidDataProcessor

ANALYTES = [
    "LPC 16:0", "LPC 18:0", "LPC 18:1",
    "PC 34:1", "PC 36:2", "PE 38:4", "TAG 52:2", "SM d18:1/16:0",
]
SHIFTED = {"LPC 16:0": 1.2, "PC 34:1": 0.9}
N_PER_GROUP = 10


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")


@pytest.fixture
def wide_frame():
    """Wide input table as it would come out of the spreadsheet."""
    rng = np.random.default_rng(7)
    rows = []
    for code in (0, 1):
        for i in range(N_PER_GROUP):
            row = {
                "Sample": f"S{code}{i:02d}",
                "Group": code,
                "Age": float(rng.integers(30, 70)),
                "BMI": round(float(rng.normal(25, 3)), 1),
            }
            for analyte in ANALYTES:
                shift = SHIFTED.get(analyte, 0.0) if code == 1 else 0.0
                row[analyte] = float(rng.lognormal(shift, 0.4))
            rows.append(row)

    df = pd.DataFrame(rows)
    df["PC"] = df["PC 34:1"] + df["PC 36:2"]
    df["PE 38:4"] = df["PE 38:4"].astype(object)
    df.loc[0, "PE 38:4"] = 0.0
    df.loc[1, "PE 38:4"] = np.nan
    df.loc[2, "PE 38:4"] = "ND"
    return df


@pytest.fixture
def xlsx_path(tmp_path, wide_frame):
    path = tmp_path / "lipids.xlsx"
    wide_frame.to_excel(path, index=False)
    return path


@pytest.fixture
def csv_path(tmp_path, wide_frame):
    path = tmp_path / "lipids.csv"
    wide_frame.to_csv(path, index=False)
    return path


@pytest.fixture
def processor():
    return LipidDataProcessor()


@pytest.fixture
def long_table(processor, wide_frame):
    """Long-form table built in memory from the wide fixture."""
    schema = processor.detect_structure(wide_frame)
    clean = processor.clean_data(wide_frame, schema)
    return processor.to_long(clean, schema)


@pytest.fixture
def settings(tmp_path):
    return DEFAULT_SETTINGS.with_overrides(output_dir=str(tmp_path / "results"))
