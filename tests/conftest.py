from __future__ import annotations

import os
import tempfile

# Point import-time defaults somewhere writable before any catalog module loads.
os.environ.setdefault("CATALOG_DATA_DIR", tempfile.mkdtemp(prefix="catalog-tests-"))

import pytest  # noqa: E402

from tests.fakes import configure_temp_paths  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_data_dir(tmp_path, monkeypatch):
    configure_temp_paths(tmp_path, monkeypatch)
    yield
