"""Shared test fixtures."""

import os
import shutil
import tempfile

import numpy as np
import pytest
from PIL import Image

from TexBrew.config import RunConfig


@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def default_config():
    config = RunConfig()
    config.max_workers = 2
    return config


def save_test_tiff(path, width=32, height=24, mode="RGB", seed=0):
    """Write a random TIFF image in ``mode`` and return its pixel array."""
    rng = np.random.default_rng(seed)
    if mode == "RGB":
        arr = rng.integers(0, 256, (height, width, 3), dtype=np.uint8)
    elif mode == "RGBA":
        arr = rng.integers(0, 256, (height, width, 4), dtype=np.uint8)
    elif mode == "L":
        arr = rng.integers(0, 256, (height, width), dtype=np.uint8)
    elif mode == "I;16":
        arr = rng.integers(0, 65536, (height, width), dtype=np.uint16)
    else:
        raise ValueError(f"unsupported test mode {mode}")
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    Image.fromarray(arr).save(path, format="TIFF")
    return arr


def save_corrupt_tiff(path):
    """Write a file with a TIFF name whose bytes are not an image."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "wb") as f:
        f.write(b"this is not a tiff image at all")
