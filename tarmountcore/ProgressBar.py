import logging
import time
from typing import Any, Optional

import rich.progress
from rich.logging import RichHandler


def _logging_uses_rich() -> bool:
    return any(isinstance(handler, RichHandler) for handler in logging.getLogger().handlers)


class ProgressBar:
    """Keeps track of the archive position while indexing and prints the progress and a time estimate."""

    def __init__(self, maxValue: float, description: str = "Indexing"):
        # Do not use thread_time because it does not count the time spent waiting for I/O.
        self._get_time = time.time
        self.value = 0.0
        self.maxValue = maxValue
        self.description = description
        self.lastUpdateTime = self._get_time()
        self.updateInterval = 2.0  # seconds
        self.creationTime = self._get_time()
        self._richProgress: Optional[rich.progress.Progress] = None
        self._taskID: Optional[Any] = None

    def __enter__(self):
        return self

    def __exit__(self, exception_type, exception_value, exception_traceback) -> None:
        if self._richProgress is None:
            return
        if self._taskID is not None:
            self._richProgress.update(self._taskID, completed=self.value)
            self._richProgress.refresh()
        self._richProgress.stop()
        self._richProgress = None
        self._taskID = None

    def _start_rich(self) -> None:
        self._richProgress = rich.progress.Progress(
            rich.progress.TextColumn("[progress.description]{task.description}"),
            rich.progress.BarColumn(bar_width=None),
            rich.progress.TaskProgressColumn(),
            rich.progress.DownloadColumn(),
            rich.progress.TimeElapsedColumn(),
            rich.progress.TimeRemainingColumn(elapsed_when_finished=True),
            # Updates are triggered by the indexing loop, so there is no need for a refresh thread.
            auto_refresh=False,
            redirect_stdout=False,
            redirect_stderr=False,
        )
        self._richProgress.start()
        self._taskID = self._richProgress.add_task(self.description, total=self.maxValue)
        self.updateInterval = 0.2

    def update(self, value: float) -> None:
        """Should be called whenever the monitored value changes. The progress bar is updated accordingly."""
        self.value = value
        if (self._get_time() - self.lastUpdateTime) < self.updateInterval:
            return

        if self._richProgress is None and _logging_uses_rich():
            self._start_rich()

        if self._richProgress and self._taskID is not None:
            self._richProgress.update(self._taskID, completed=value)
            self._richProgress.refresh()
        else:
            percent = value / self.maxValue if self.maxValue != 0 else 1.0
            totalTime = self._get_time() - self.creationTime
            eta = int(totalTime / percent - totalTime if percent != 0 else 0)
            print(
                f"{self.description}: position {value} of {self.maxValue} ({percent * 100.0:.2f}%). "
                f"Remaining time: {eta // 60} min {eta % 60} s. "
                f"Spent time: {int(totalTime) // 60} min {int(totalTime) % 60} s",
                flush=True,
            )

        self.lastUpdateTime = self._get_time()
