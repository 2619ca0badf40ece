from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np


@dataclass
class Image:
    pixels: np.ndarray
    classification: int

    @property
    def channels(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def rows(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def cols(self) -> int:
        return int(self.pixels.shape[2])


@dataclass
class ImageSet:
    name: str
    images: np.ndarray
    labels: np.ndarray
    number_classes: int

    def __post_init__(self):
        self.images = np.asarray(self.images, dtype=np.float64)
        self.labels = np.asarray(self.labels, dtype=np.int64)
        if self.images.ndim != 4:
            raise ValueError(f"images must have shape (n, channels, rows, cols), got {self.images.shape}")
        if self.labels.shape != (self.images.shape[0],):
            raise ValueError(f"labels must have shape ({self.images.shape[0]},), got {self.labels.shape}")
        if self.labels.size and (self.labels.min() < 0 or self.labels.max() >= self.number_classes):
            raise ValueError(f"labels must lie in [0, {self.number_classes})")

    @property
    def number_images(self) -> int:
        return int(self.images.shape[0])

    @property
    def channels(self) -> int:
        return int(self.images.shape[1])

    @property
    def rows(self) -> int:
        return int(self.images.shape[2])

    @property
    def cols(self) -> int:
        return int(self.images.shape[3])

    def get_image(self, index: int) -> Image:
        return Image(pixels=self.images[index], classification=int(self.labels[index]))


def _shuffle(x: np.ndarray, y: np.ndarray, rng: np.random.Generator) -> tuple[np.ndarray, np.ndarray]:
    idx = np.arange(x.shape[0])
    rng.shuffle(idx)
    return x[idx], y[idx]


def _generate_bars(n: int, rows: int, cols: int, noise: float, rng: np.random.Generator) -> tuple[np.ndarray, np.ndarray]:
    # class 0: one horizontal bar, class 1: one vertical bar
    x = rng.normal(0.0, noise, size=(n, 1, rows, cols))
    y = rng.integers(0, 2, size=(n,))
    for i in range(n):
        if y[i] == 0:
            x[i, 0, rng.integers(rows), :] += 1.0
        else:
            x[i, 0, :, rng.integers(cols)] += 1.0
    return x, y


def _generate_quadrants(n: int, rows: int, cols: int, noise: float, rng: np.random.Generator) -> tuple[np.ndarray, np.ndarray]:
    # the class is the quadrant holding a bright blob
    x = rng.normal(0.0, noise, size=(n, 1, rows, cols))
    y = rng.integers(0, 4, size=(n,))
    half_r = max(rows // 2, 1)
    half_c = max(cols // 2, 1)
    for i in range(n):
        r0 = 0 if y[i] in (0, 1) else rows - half_r
        c0 = 0 if y[i] in (0, 2) else cols - half_c
        r = r0 + rng.integers(half_r)
        c = c0 + rng.integers(half_c)
        x[i, 0, r, c] += 1.5
    return x, y


def _generate_crosses(n: int, rows: int, cols: int, noise: float, rng: np.random.Generator) -> tuple[np.ndarray, np.ndarray]:
    # class 0: plus sign, class 1: diagonal cross, class 2: empty frame
    x = rng.normal(0.0, noise, size=(n, 1, rows, cols))
    y = rng.integers(0, 3, size=(n,))
    diag = min(rows, cols)
    for i in range(n):
        if y[i] == 0:
            x[i, 0, rows // 2, :] += 1.0
            x[i, 0, :, cols // 2] += 1.0
        elif y[i] == 1:
            idx = np.arange(diag)
            x[i, 0, idx, idx] += 1.0
            x[i, 0, idx, diag - 1 - idx] += 1.0
        else:
            x[i, 0, 0, :] += 1.0
            x[i, 0, -1, :] += 1.0
            x[i, 0, :, 0] += 1.0
            x[i, 0, :, -1] += 1.0
    return x, y


TASKS = {
    "bars": (_generate_bars, 2),
    "quadrants": (_generate_quadrants, 4),
    "crosses": (_generate_crosses, 3),
}


def make_dataset(task: str, size: int, rows: int, cols: int, noise: float, seed: int) -> ImageSet:
    if task not in TASKS:
        raise ValueError(f"Unknown task: {task}")
    rng = np.random.default_rng(seed)
    generate, number_classes = TASKS[task]
    x, y = generate(size, rows, cols, noise, rng)
    x, y = _shuffle(x, y, rng)
    return ImageSet(name=task, images=x, labels=y, number_classes=number_classes)


def load_image_set(path: Path, number_classes: int | None = None) -> ImageSet:
    """Load ``images`` (n, channels, rows, cols) and ``labels`` (n,) from an ``.npz`` file.

    A 3-D ``images`` array is treated as single-channel.
    """
    with np.load(path) as data:
        images = np.asarray(data["images"], dtype=np.float64)
        labels = np.asarray(data["labels"], dtype=np.int64)
    if images.ndim == 3:
        images = images[:, None, :, :]
    if number_classes is None:
        number_classes = int(labels.max()) + 1 if labels.size else 0
    return ImageSet(name=Path(path).stem, images=images, labels=labels, number_classes=number_classes)
