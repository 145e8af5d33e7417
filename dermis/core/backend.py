"""
GPU/CPU Backend Abstraction for Dermis kernel synthesis.

Batches of profiles are evaluated with CuPy (GPU) when available and
requested, falling back to NumPy (CPU) otherwise.
"""

import numpy as np

# Try to import CuPy
try:
    import cupy as cp
    CUPY_AVAILABLE = True
except ImportError:
    cp = None
    CUPY_AVAILABLE = False


class ComputeBackend:
    """
    Backend abstraction for array operations.

    Exposes the active array module as `xp` so that the kernel math can be
    written once for both NumPy and CuPy.
    """

    def __init__(self, use_gpu: bool = False, verbose: bool = True):
        """
        Initialize compute backend.

        Args:
            use_gpu: If True, use GPU (CuPy) when available
            verbose: Report the selected backend
        """
        self.use_gpu = use_gpu and CUPY_AVAILABLE
        self.xp = cp if self.use_gpu else np

        if verbose:
            if self.use_gpu:
                print(f"[Dermis] Using GPU backend (CuPy) - Device: {cp.cuda.Device().name.decode()}")
            elif use_gpu:
                print("[Dermis] CuPy not available, using CPU backend (NumPy)")
            else:
                print("[Dermis] Using CPU backend (NumPy)")

    @property
    def name(self) -> str:
        """Get backend name."""
        return "CuPy (GPU)" if self.use_gpu else "NumPy (CPU)"

    def to_numpy(self, x):
        """Convert array to NumPy (for caching and export)."""
        if self.use_gpu:
            return cp.asnumpy(x)
        return np.asarray(x)

    def synchronize(self):
        """Synchronize GPU (no-op for CPU)."""
        if self.use_gpu:
            cp.cuda.Stream.null.synchronize()


def is_gpu_available() -> bool:
    """Check if GPU (CuPy) is available."""
    return CUPY_AVAILABLE
