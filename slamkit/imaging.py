"""Basic image handling: size and channel information, pixel traversal, and shared versus copied data."""

from __future__ import annotations

import argparse
import sys
import time
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import numpy as np
from PIL import Image

BLOCK_SIZE = 100


@dataclass(frozen=True)
class ImageInfo:
    """Width, height, channel count and element type of an image."""

    width: int
    height: int
    channels: int
    dtype: str


def describe(image) -> ImageInfo:
    """Size, channels and element type of an HxW or HxWxC image array."""
    a = np.asarray(image)
    if a.ndim == 2:
        channels = 1
    elif a.ndim == 3:
        channels = a.shape[2]
    else:
        raise ValueError(f"expected a 2D or 3D image array, got shape {a.shape}")
    return ImageInfo(width=a.shape[1], height=a.shape[0], channels=channels, dtype=str(a.dtype))


def iterate_pixels(image) -> Iterator[tuple[int, int, tuple[int, ...]]]:
    """Yield (x, y, channel values) row by row for an 8-bit greyscale or colour image."""
    a = np.asarray(image)
    info = describe(a)
    if a.dtype != np.uint8 or info.channels not in (1, 3):
        raise ValueError("please provide an 8-bit colour or greyscale image")
    pixels = a.reshape(info.height, info.width, info.channels)
    return (
        (x, y, tuple(int(c) for c in pixels[y, x]))
        for y in range(info.height)
        for x in range(info.width)
    )


def fill_region(image, x: int, y: int, width: int, height: int, value) -> None:
    """Set a rectangle of ``image`` to ``value`` in place; every array sharing the data sees it."""
    if not isinstance(image, np.ndarray):
        raise TypeError("image must be a numpy array")
    info = describe(image)
    if width < 0 or height < 0 or x < 0 or y < 0 or x + width > info.width or y + height > info.height:
        raise ValueError(
            f"region ({x}, {y}, {width}, {height}) does not fit a {info.width}x{info.height} image"
        )
    image[y : y + height, x : x + width] = value


def main(argv: list[str] | None = None) -> int:
    """Load an image, report on it, time a traversal and show how copies behave."""
    parser = argparse.ArgumentParser(prog="image-basics", description=__doc__)
    parser.add_argument("image", help="image file to read")
    parser.add_argument("--save-dir", default=None, help="directory to save the modified images to")
    args = parser.parse_args(argv)

    try:
        with Image.open(args.image) as img:
            image = np.array(img.convert("RGB"))
    except OSError:
        print(f"file {args.image} does not exist.", file=sys.stderr)
        return 0

    info = describe(image)
    print(f"image width {info.width}, height {info.height}, channels {info.channels}")
    if image.dtype != np.uint8 or info.channels not in (1, 3):
        print("please provide a colour or greyscale image.")
        return 0

    start = time.perf_counter()
    for _ in iterate_pixels(image):
        pass
    elapsed = time.perf_counter() - start
    print(f"traversing the image took {elapsed:g} seconds.")

    block_w, block_h = min(BLOCK_SIZE, info.width), min(BLOCK_SIZE, info.height)
    image_another = image
    fill_region(image_another, 0, 0, block_w, block_h, 0)
    print(f"original top-left pixel after filling the alias: {tuple(int(c) for c in image[0, 0])}")

    image_clone = image.copy()
    fill_region(image_clone, 0, 0, block_w, block_h, 255)
    print(f"original top-left pixel after filling the clone: {tuple(int(c) for c in image[0, 0])}")
    print(f"clone top-left pixel: {tuple(int(c) for c in image_clone[0, 0])}")

    if args.save_dir is not None:
        out = Path(args.save_dir)
        out.mkdir(parents=True, exist_ok=True)
        Image.fromarray(image).save(out / "image.png")
        Image.fromarray(image_clone).save(out / "clone.png")
    return 0