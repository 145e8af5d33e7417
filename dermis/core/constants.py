"""
Dermis Constants - Kernel layout, parameter ranges and profile defaults.
"""

import numpy as np

# =============================================================================
# Filter kernel layout
# =============================================================================

# Number of importance-sampled taps per profile. Must be odd so that the
# kernel has a center tap.
NUM_SAMPLES = 7

# Color channels (R, G, B)
NUM_CHANNELS = 3

# Packed GPU layout: xyz = per-channel weights, w = position
KERNEL_VECTOR_SIZE = 4

# =============================================================================
# Profile collection
# =============================================================================

MAX_NUM_PROFILES = 8

# Valid range of a Gaussian lobe standard deviation (world units)
MIN_STD_DEV = 0.05
MAX_STD_DEV = 2.0

DEFAULT_STD_DEV1 = (0.3, 0.3, 0.3)
DEFAULT_STD_DEV2 = (1.0, 1.0, 1.0)
DEFAULT_LERP_WEIGHT = 0.5

# Larger values make the blur more tolerant to depth differences
DEFAULT_BILATERAL_SCALE = 0.1

# =============================================================================
# Inverse normal CDF (Abramowitz and Stegun, formula 26.2.23)
# Absolute error is below 4.5e-4.
# =============================================================================

RATIONAL_APPROX_C = np.array([2.515517, 0.802853, 0.010328])
RATIONAL_APPROX_D = np.array([1.432788, 0.189269, 0.001308])
RATIONAL_APPROX_MAX_ERROR = 4.5e-4
