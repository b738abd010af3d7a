"""
Copyright (c) 2025. All rights reserved.
"""

"""
Partition Load Analysis and Visualization

Measures how evenly a finished join spread its records over the reduce
partitions. A hot join key sends all of its records to one partition; the
balance ratio and Gini coefficient make that visible. Reporting only: routing
is never changed based on these numbers.
"""

from dataclasses import dataclass
from typing import Dict, Sequence, Tuple

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np

from .stats import JoinStats


def calculate_gini(values: Sequence[int]) -> float:
    """Calculate Gini coefficient to measure inequality in load distribution."""
    if len(values) == 0:
        return 0.0

    sorted_values = np.sort(np.asarray(values, dtype=np.float64))
    n = len(sorted_values)
    cumsum = np.cumsum(sorted_values)
    if cumsum[-1] <= 0:
        return 0.0
    return float((n + 1 - 2 * np.sum(cumsum) / cumsum[-1]) / n)


@dataclass(frozen=True)
class PartitionLoadReport:
    """Load distribution metrics for one join run."""
    partition_loads: Tuple[int, ...]
    total_records: int
    load_balance_ratio: float      # max load / mean load, 1.0 is perfect
    load_variance: float
    load_std: float
    gini_coefficient: float        # 0.0 is perfect balance

    @classmethod
    def from_loads(cls, loads: Sequence[int]) -> "PartitionLoadReport":
        loads = tuple(int(load) for load in loads)
        total_records = sum(loads)

        if not loads:
            return cls(loads, 0, 0.0, 0.0, 0.0, 0.0)

        array = np.asarray(loads, dtype=np.float64)
        mean_load = total_records / len(loads)
        return cls(
            partition_loads=loads,
            total_records=total_records,
            load_balance_ratio=float(array.max() / mean_load) if mean_load > 0 else 0.0,
            load_variance=float(np.var(array)),
            load_std=float(np.std(array)),
            gini_coefficient=calculate_gini(loads),
        )

    @classmethod
    def from_stats(cls, stats: JoinStats) -> "PartitionLoadReport":
        return cls.from_loads(stats.partition_loads)

    def overloaded_partitions(self, factor: float = 1.5) -> Tuple[int, ...]:
        """Partitions holding more than factor times the mean load."""
        if not self.partition_loads:
            return ()
        mean_load = self.total_records / len(self.partition_loads)
        return tuple(pid for pid, load in enumerate(self.partition_loads) if load > mean_load * factor)

    def as_dict(self) -> Dict[str, object]:
        return {
            'total_records': self.total_records,
            'partition_loads': list(self.partition_loads),
            'load_balance_ratio': self.load_balance_ratio,
            'load_variance': self.load_variance,
            'load_std': self.load_std,
            'gini_coefficient': self.gini_coefficient,
        }

    def summary(self) -> str:
        lines = [
            f"Total Records: {self.total_records:,}",
            f"Partitions: {len(self.partition_loads)}",
            f"Load Balance Ratio: {self.load_balance_ratio:.2f}",
            f"Load Standard Deviation: {self.load_std:.2f}",
            f"Gini Coefficient: {self.gini_coefficient:.3f}",
        ]
        if self.partition_loads:
            lines.append(f"Min Load: {min(self.partition_loads)}")
            lines.append(f"Max Load: {max(self.partition_loads)}")
        return "\n".join(lines)


def plot_partition_loads(loads: Sequence[int], path: str,
                         title: str = "Partition Load Distribution") -> str:
    """Save a bar chart of records per partition; returns the path written."""
    report = PartitionLoadReport.from_loads(loads)
    partitions = list(range(len(report.partition_loads)))
    avg_load = report.total_records / len(partitions) if partitions else 0

    fig, ax = plt.subplots(figsize=(10, 6))
    bars = ax.bar(partitions, report.partition_loads, alpha=0.7)
    ax.set_title(title)
    ax.set_xlabel('Partition ID')
    ax.set_ylabel('Number of Records')

    # Color bars by load (red for overloaded)
    for bar, load in zip(bars, report.partition_loads):
        if load > avg_load * 1.5:
            bar.set_color('red')
        elif load < avg_load * 0.5:
            bar.set_color('orange')
        else:
            bar.set_color('green')

    metrics_text = f"Balance Ratio: {report.load_balance_ratio:.2f}\n"
    metrics_text += f"Gini Coeff: {report.gini_coefficient:.3f}"
    ax.text(0.02, 0.98, metrics_text, transform=ax.transAxes,
            verticalalignment='top', bbox=dict(boxstyle='round', facecolor='wheat'))

    fig.tight_layout()
    fig.savefig(path, dpi=100, bbox_inches='tight')
    plt.close(fig)
    return path
