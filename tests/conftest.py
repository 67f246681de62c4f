"""Pytest configuration and shared fixtures for cghmatch tests."""

import cv2
import numpy as np
import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--run-slow", action="store_true", default=False,
        help="Run timing tests on full-resolution frames",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: full-resolution timing test")


def pytest_collection_modifyitems(config, items):
    if not config.getoption("--run-slow"):
        skip_slow = pytest.mark.skip(reason="needs --run-slow option to run")
        for item in items:
            if "slow" in item.keywords:
                item.add_marker(skip_slow)


@pytest.fixture
def shape_template():
    """60x60 grayscale template: a filled L and a small disc on black.

    Both shapes stay well inside the frame so blur and Sobel kernels see
    only background at the template border.
    """
    img = np.zeros((60, 60), dtype=np.uint8)
    ell = np.array([[15, 15], [45, 15], [45, 25], [25, 25], [25, 45], [15, 45]],
                   dtype=np.int32)
    cv2.fillPoly(img, [ell], 255)
    cv2.circle(img, (37, 37), 5, 180, -1)
    return img


@pytest.fixture
def make_scene():
    """Paste a template into a black scene at ``(top, left)``."""
    def _make(template, top, left, shape=(160, 200)):
        scene = np.zeros(shape, dtype=template.dtype)
        h, w = template.shape[:2]
        scene[top:top + h, left:left + w] = template
        return scene

    return _make
