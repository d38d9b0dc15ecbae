import json
import os
import re
from datetime import datetime
from typing import Any, Dict, List

from freeway_sim.io.logging_utils import logger
from freeway_sim.metrics.types import SimulationResult


DEFAULT_STORE_DIR = os.path.join("results", "saved_runs")

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]+")


class RunNotFoundError(LookupError):
    pass


def _path_for(name: str, store_dir: str) -> str:
    slug = _UNSAFE.sub("_", name.strip()).strip("._")
    if not slug:
        raise ValueError(f"Invalid run name: {name!r}")
    return os.path.join(store_dir, f"{slug}.json")


def save_run(name: str, result: SimulationResult, store_dir: str = DEFAULT_STORE_DIR) -> str:
    """
    Persist a finished run under a user-chosen name (overwrites a run
    saved earlier under the same name):
    - configuration and traffic rule
    - periodic chart history
    - final statistics
    """
    os.makedirs(store_dir, exist_ok=True)
    path = _path_for(name, store_dir)

    params = result.config.get("params", {})
    record = {
        "name": name,
        "saved_at": datetime.now().isoformat(timespec="seconds"),
        "traffic_rule": params.get("traffic_rule", result.extra_stats.get("traffic_rule")),
        "config": result.config,
        "history": result.history,
        "final_stats": {
            "backend": result.backend,
            "total_simulated_time": result.total_simulated_time,
            "vehicles_in_world": result.vehicles_in_world,
            "exits": result.exits,
            "entries": result.entries,
            "lane_changes": result.lane_changes,
            **result.metrics(),
        },
    }

    with open(path, "w", encoding="utf-8") as f:
        json.dump(record, f, indent=2, ensure_ascii=False)

    logger.info(f"Saved run '{name}' to {path}")
    return path


def load_run(name: str, store_dir: str = DEFAULT_STORE_DIR) -> Dict[str, Any]:
    path = _path_for(name, store_dir)
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise RunNotFoundError(f"No saved run named '{name}' in {store_dir}")


def list_runs(store_dir: str = DEFAULT_STORE_DIR) -> List[Dict[str, Any]]:
    """Name, save time and traffic rule of every saved run, newest first."""
    if not os.path.isdir(store_dir):
        return []

    runs: List[Dict[str, Any]] = []
    for filename in os.listdir(store_dir):
        if not filename.endswith(".json"):
            continue
        with open(os.path.join(store_dir, filename), "r", encoding="utf-8") as f:
            record = json.load(f)
        runs.append({
            "name": record.get("name", filename[:-5]),
            "saved_at": record.get("saved_at", ""),
            "traffic_rule": record.get("traffic_rule"),
        })

    runs.sort(key=lambda r: r["saved_at"], reverse=True)
    return runs


def delete_run(name: str, store_dir: str = DEFAULT_STORE_DIR) -> None:
    path = _path_for(name, store_dir)
    try:
        os.remove(path)
    except FileNotFoundError:
        raise RunNotFoundError(f"No saved run named '{name}' in {store_dir}")
    logger.info(f"Deleted run '{name}'")
