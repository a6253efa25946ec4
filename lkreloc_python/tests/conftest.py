"""Pytest fixtures for lkreloc tests."""

import numpy as np
import pytest
from pathlib import Path
import tempfile


@pytest.fixture
def sample_grayscale_image():
    """Create a sample grayscale image."""
    np.random.seed(42)
    return (np.random.rand(100, 100) * 255).astype(np.uint8)


@pytest.fixture
def sample_rgb_image():
    """Create a sample RGB image."""
    np.random.seed(42)
    return (np.random.rand(100, 100, 3) * 255).astype(np.uint8)


@pytest.fixture
def sample_16bit_image():
    """Create a sample 16-bit grayscale image."""
    np.random.seed(42)
    return (np.random.rand(100, 100) * 65535).astype(np.uint16)


@pytest.fixture
def smooth_texture():
    """
    Smooth, non-separable texture for alignment tests.

    Superposition of plane waves at several orientations with wavelengths
    of 30-55 pixels, normalized to [0, 1].
    """
    size = 128
    y, x = np.mgrid[0:size, 0:size].astype(np.float64)

    waves = [
        (0.3, 31.0, 0.2),
        (1.2, 37.0, 1.1),
        (2.1, 43.0, 2.5),
        (2.8, 53.0, 4.0),
    ]

    pattern = np.zeros((size, size), dtype=np.float64)
    for angle, wavelength, phase in waves:
        proj = x * np.cos(angle) + y * np.sin(angle)
        pattern += np.sin(2 * np.pi * proj / wavelength + phase)

    return (pattern - pattern.min()) / (pattern.max() - pattern.min())


@pytest.fixture
def interior_mask():
    """Square mask well inside the 128 x 128 texture."""
    mask = np.zeros((128, 128), dtype=np.bool_)
    mask[24:104, 24:104] = True
    return mask


@pytest.fixture
def known_warp():
    """Small rigid motion recoverable from the smooth texture."""
    from lkreloc.core.warp_parameters import WarpParameters

    return WarpParameters(theta=0.02, tx=1.5, ty=-1.0)


@pytest.fixture
def warped_candidate(smooth_texture, known_warp):
    """Candidate frame whose alignment onto the texture is ``known_warp``."""
    from lkreloc.algorithms.warp import apply_warp

    return apply_warp(smooth_texture, known_warp.inverse())


@pytest.fixture
def uniform_image():
    """Constant image without any gradient."""
    return np.full((64, 64), 0.5, dtype=np.float64)


@pytest.fixture
def alignment_parameters():
    """Create default alignment parameters for testing."""
    from lkreloc.core.alignment_parameters import AlignmentParameters

    return AlignmentParameters()


@pytest.fixture
def temp_image_file(sample_grayscale_image):
    """Create a temporary image file."""
    from PIL import Image

    with tempfile.NamedTemporaryFile(suffix=".png", delete=False) as f:
        filepath = Path(f.name)

    # Save image
    img = Image.fromarray(sample_grayscale_image)
    img.save(filepath)

    yield filepath

    # Cleanup
    if filepath.exists():
        filepath.unlink()


@pytest.fixture
def temp_texture_files(smooth_texture, warped_candidate, interior_mask):
    """Reference, candidate and mask written as 8-bit PNG files."""
    from PIL import Image

    with tempfile.TemporaryDirectory() as tmpdir:
        tmpdir = Path(tmpdir)

        ref_path = tmpdir / "keyframe.png"
        cand_path = tmpdir / "frame_001.png"
        mask_path = tmpdir / "mask.png"

        Image.fromarray(np.round(smooth_texture * 255).astype(np.uint8)).save(ref_path)
        Image.fromarray(np.round(warped_candidate * 255).astype(np.uint8)).save(cand_path)
        Image.fromarray(interior_mask.astype(np.uint8) * 255).save(mask_path)

        yield ref_path, cand_path, mask_path
