from __future__ import annotations
import sys, pathlib

import pytest
import torch

# Garantiza que 'stepbox' se pueda importar tanto si ejecutas pytest desde la raíz
# como desde dentro del subdirectorio 'stepbox/'.
try:
    import stepbox  # noqa: F401
except ImportError:
    here = pathlib.Path(__file__).resolve()
    for p in [here.parents[i] for i in range(1, 6)]:
        if (p / "stepbox" / "__init__.py").exists():
            sys.path.insert(0, str(p))
            break


@pytest.fixture(autouse=True)
def set_default_dtype_cpu():
    torch.set_default_dtype(torch.float32)
    torch.set_num_threads(1)
    yield
