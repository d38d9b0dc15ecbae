import csv
import json
import os
from datetime import datetime
from typing import List, Sequence

from freeway_sim.experiments.runner import SweepRow
from freeway_sim.metrics.types import SimulationResult


def _ensure_dir(path: str):
    os.makedirs(path, exist_ok=True)


def _timestamp() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def save_result_as_json(result: SimulationResult, output_dir: str) -> str:
    _ensure_dir(output_dir)
    filename = f"{result.backend}_{_timestamp()}.json"
    path = os.path.join(output_dir, filename)

    with open(path, "w", encoding="utf-8") as f:
        json.dump(result.__dict__, f, indent=2, ensure_ascii=False)

    return path


def save_sweep_as_csv(rows: Sequence[SweepRow], output_dir: str, prefix: str = "sweep") -> str:
    """
    One line per sweep point. Rows with different lane counts carry
    different per-lane columns; missing cells are left empty.
    """
    _ensure_dir(output_dir)
    path = os.path.join(output_dir, f"{prefix}_{_timestamp()}.csv")

    records = [r.to_dict() for r in rows]
    columns: List[str] = []
    for record in records:
        for key in record:
            if key not in columns:
                columns.append(key)

    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=columns, restval="")
        writer.writeheader()
        writer.writerows(records)

    return path
