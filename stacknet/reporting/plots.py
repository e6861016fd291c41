"""Headless-safe plotting of training curves."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Mapping, Tuple


class PlotAdapter:
    """Collect per-epoch losses and optionally emit a matplotlib figure."""

    def __init__(self, run_dir: str | Path, enable_plots: bool = False, split: str = "train"):
        self.enable_plots = enable_plots
        self.run_dir = Path(run_dir)
        self.split = split
        self._history: Dict[str, List[Tuple[int, float]]] = {}
        if self.enable_plots:
            self.run_dir.mkdir(parents=True, exist_ok=True)

    def for_split(self, split: str) -> "_SplitView":
        return _SplitView(self, split)

    def record(self, split: str, epoch: int, metrics: Mapping[str, float]) -> None:
        if not self.enable_plots:
            return
        self._history.setdefault(split, []).append((epoch, float(metrics.get("loss", 0.0))))

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        self.record(self.split, epoch, metrics)

    def close(self) -> Path | None:
        if not self.enable_plots or not self._history:
            return None
        import matplotlib

        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # imported lazily for headless safety

        fig, ax = plt.subplots()
        for split, points in sorted(self._history.items()):
            epochs, losses = zip(*points)
            ax.plot(epochs, losses, label=split)
        ax.set_xlabel("Epoch")
        ax.set_ylabel("Cost")
        ax.set_title("Training Curve")
        ax.legend()
        plot_path = self.run_dir / "loss.png"
        fig.savefig(plot_path)
        plt.close(fig)
        return plot_path

    __call__ = on_epoch


class _SplitView:
    """Epoch observer forwarding to a shared :class:`PlotAdapter` under ``split``."""

    def __init__(self, adapter: PlotAdapter, split: str) -> None:
        self.adapter = adapter
        self.split = split

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        self.adapter.record(self.split, epoch, metrics)


__all__ = ["PlotAdapter"]
