"""
Dermis Core - Subsurface scattering kernel synthesis.
"""

from .constants import NUM_SAMPLES, NUM_CHANNELS, MAX_NUM_PROFILES
from .parameters import (
    InvalidParameterError,
    ScatteringProfile,
    ScatteringParameters,
    sanitize_profile,
)
from .kernel import (
    FilterKernel,
    compute_kernel,
    compute_kernels,
    normal_cdf_inverse,
)
from .backend import ComputeBackend, CUPY_AVAILABLE, is_gpu_available
from .model import ScatteringModel
