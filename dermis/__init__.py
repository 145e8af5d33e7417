"""
Dermis - Separable subsurface scattering filter kernels.

Precomputes the importance-sampled blur taps of two-lobe Gaussian scattering
profiles, for use by a screen-space subsurface scattering pass.
"""

__version__ = "1.0.0"

from .core import (
    NUM_SAMPLES,
    MAX_NUM_PROFILES,
    InvalidParameterError,
    ScatteringProfile,
    ScatteringParameters,
    sanitize_profile,
    FilterKernel,
    compute_kernel,
    compute_kernels,
    ScatteringModel,
)
