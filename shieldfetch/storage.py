from pathlib import Path

import pandas as pd

from .settings import PROJECT_ROOT

RESULTS_DIR = PROJECT_ROOT / "results"


def save_df(df: pd.DataFrame, name: str, results_dir: Path | None = None) -> Path | None:
    """
    Persist a DataFrame as CSV under results/<name>.csv.

    Returns the written path, or None when there was nothing to write.
    """
    if df.empty:
        return None

    out_dir = results_dir or RESULTS_DIR
    out_dir.mkdir(parents=True, exist_ok=True)
    out_path = out_dir / f"{name}.csv"
    df.to_csv(out_path, index=False)
    return out_path
