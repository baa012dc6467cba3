import logging
import os
from datetime import datetime

from tqdm import tqdm


def setup_logger(log_dir: str = ".codesearch/logs") -> logging.Logger:
    """Creates a file logger. All verbose output goes here."""
    os.makedirs(log_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = os.path.join(log_dir, f"codesearch_{timestamp}.log")

    logger = logging.getLogger("codesearch")
    logger.setLevel(logging.DEBUG)

    # File handler captures everything
    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S"
    ))
    logger.addHandler(fh)

    return logger


class ProgressDisplay:
    """Terminal progress bar fed by index coordinator progress events.

    Instances are callable as ``(fraction, message)`` listeners::

        display = ProgressDisplay("Indexing")
        coordinator.add_progress_listener(display)
        coordinator.rebuild_index()
        display.close()
    """

    def __init__(self, desc: str = "Indexing", **tqdm_kwargs):
        self._pbar = tqdm(total=100, unit="%", desc=desc,
                          bar_format="{desc}: {percentage:3.0f}%|{bar}| {postfix}",
                          **tqdm_kwargs)
        self.last_message = ""

    def __call__(self, fraction: float, message: str) -> None:
        target = max(0, min(100, int(round(fraction * 100))))
        if target > self._pbar.n:
            self._pbar.update(target - self._pbar.n)
        self.last_message = message
        self._pbar.set_postfix_str(message, refresh=True)

    def close(self) -> None:
        self._pbar.close()

    def __enter__(self) -> "ProgressDisplay":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
