"""
Dermis Kernel - Importance-sampled filter kernel synthesis.

Our goal is to blur the image using a filter represented as a product of a
linear combination of two normalized 1D Gaussians, as suggested by Jimenez et
al. in "Separable Subsurface Scattering". With variance v and radial distance
x from the origin, a normalized 1D Gaussian with zero mean is

    G1(x, v) = exp(-x^2 / (2 v)) / sqrt(2 pi v)

and for a lerp weight w the 1D and 2D filters are

    A1(v1, v2, w, x)    = G1(x, v1) * (1 - w) + G1(x, v2) * w
    A2(v1, v2, w, x, y) = A1(v1, v2, w, x) * A1(v1, v2, w, y)

A2 is a non-Gaussian PDF, separable by construction but generally not
radially symmetric. The taps are placed by importance sampling A1 built from
the widest channel, so that no channel is under-sampled in its tails.

All helpers accept scalars or arrays and an optional array module `xp`
(numpy or cupy).
"""

from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple

import numpy as np

from .constants import (
    NUM_SAMPLES,
    NUM_CHANNELS,
    KERNEL_VECTOR_SIZE,
    RATIONAL_APPROX_C,
    RATIONAL_APPROX_D,
)
from .parameters import ScatteringProfile


@dataclass(frozen=True, eq=False)
class FilterKernel:
    """
    Precomputed blur taps for one profile.

    Attributes:
        weights: Per-channel tap weights, shape (N, 3). Each column sums to 1.
        positions: Radial tap offsets in world units, shape (N,), ascending.
    """
    weights: np.ndarray
    positions: np.ndarray

    def __post_init__(self):
        weights = np.array(self.weights, dtype=np.float64)
        positions = np.array(self.positions, dtype=np.float64)
        if weights.ndim != 2 or weights.shape[1] != NUM_CHANNELS:
            raise ValueError(f"weights must be shape (N, {NUM_CHANNELS}), got {weights.shape}")
        if positions.shape != (weights.shape[0],):
            raise ValueError(f"positions must be shape ({weights.shape[0]},), "
                             f"got {positions.shape}")
        weights.flags.writeable = False
        positions.flags.writeable = False
        object.__setattr__(self, 'weights', weights)
        object.__setattr__(self, 'positions', positions)

    @property
    def num_samples(self) -> int:
        return len(self.positions)

    def __len__(self) -> int:
        return len(self.positions)

    def __iter__(self) -> Iterator[Tuple[np.ndarray, float]]:
        """Iterate over (weight, position) taps."""
        for weight, position in zip(self.weights, self.positions):
            yield weight, float(position)

    def weight_sums(self) -> np.ndarray:
        """Sum of weights per channel (1.0 for an energy-conserving kernel)."""
        return self.weights.sum(axis=0)

    def as_vector4(self) -> np.ndarray:
        """
        Pack the kernel for shader upload.

        Returns:
            float32 array of shape (N, 4): xyz = weights, w = position
        """
        packed = np.empty((self.num_samples, KERNEL_VECTOR_SIZE), dtype=np.float32)
        packed[:, :NUM_CHANNELS] = self.weights
        packed[:, NUM_CHANNELS] = self.positions
        return packed


def lerp(a, b, t):
    """Linear interpolation, returns a at t = 0 and b at t = 1."""
    return a + (b - a) * t


def gaussian(x, std_dev, xp=np):
    """Normalized zero-mean 1D Gaussian density."""
    variance = std_dev * std_dev
    return xp.exp(-x * x / (2.0 * variance)) / xp.sqrt(2.0 * np.pi * variance)


def gaussian_combination(x, std_dev1, std_dev2, lerp_weight, xp=np):
    """Density of the two-lobe mixture A1."""
    return lerp(gaussian(x, std_dev1, xp), gaussian(x, std_dev2, xp), lerp_weight)


def rational_approximation(t):
    """
    Abramowitz and Stegun formula 26.2.23.

    The absolute value of the error should be less than 4.5e-4.
    """
    c = RATIONAL_APPROX_C
    d = RATIONAL_APPROX_D
    return t - ((c[2] * t + c[1]) * t + c[0]) / (((d[2] * t + d[1]) * t + d[0]) * t + 1.0)


def normal_cdf_inverse(p, std_dev=1.0, xp=np):
    """
    Quantile function of a zero-mean Gaussian.

    Ref: https://www.johndcook.com/blog/csharp_phi_inverse/

    Args:
        p: Probability (scalar or array), strictly inside (0, 1)
        std_dev: Standard deviation of the Gaussian
        xp: Array module

    Returns:
        x such that CDF(x) = p, to within 4.5e-4 * std_dev
    """
    p = xp.asarray(p, dtype=xp.float64)
    if bool(xp.any((p <= 0.0) | (p >= 1.0))):
        raise ValueError("p must be in the open interval (0, 1)")

    lower = p < 0.5
    # F^-1(p) = -G^-1(p) below the median, G^-1(1 - p) above it
    tail = xp.where(lower, p, 1.0 - p)
    x = rational_approximation(xp.sqrt(-2.0 * xp.log(tail)))
    x = xp.where(lower, -x, x)

    return x * std_dev


def gaussian_combination_cdf_inverse(p, std_dev1, std_dev2, lerp_weight, xp=np):
    """Approximate quantile function of the two-lobe mixture."""
    return lerp(
        normal_cdf_inverse(p, std_dev1, xp),
        normal_cdf_inverse(p, std_dev2, xp),
        lerp_weight,
    )


def check_num_samples(num_samples: int) -> int:
    """Validate a tap count (positive and odd, so there is a center tap)."""
    if isinstance(num_samples, (bool, np.bool_)):
        raise ValueError(f"num_samples must be a positive odd integer, got {num_samples}")
    n = int(num_samples)
    if n != num_samples or n <= 0 or n % 2 == 0:
        raise ValueError(f"num_samples must be a positive odd integer, got {num_samples}")
    return n


def synthesize(std_dev1, std_dev2, lerp_weight, num_samples: int = NUM_SAMPLES, xp=np):
    """
    Importance sample the mixture for a batch of profiles.

    Args:
        std_dev1: (P, 3) 1st lobe radii
        std_dev2: (P, 3) 2nd lobe radii
        lerp_weight: (P,) lobe interpolation weights
        num_samples: Taps per profile
        xp: Array module

    Returns:
        Tuple of (weights (P, N, 3), positions (P, N)) in the xp module
    """
    std_dev1 = xp.asarray(std_dev1, dtype=xp.float64)
    std_dev2 = xp.asarray(std_dev2, dtype=xp.float64)
    w = xp.asarray(lerp_weight, dtype=xp.float64)[:, None]

    # Find the widest Gaussian across the color channels
    max_std_dev1 = std_dev1.max(axis=1)[:, None]
    max_std_dev2 = std_dev2.max(axis=1)[:, None]

    # Stratified midpoints of the unit interval
    u = (xp.arange(num_samples, dtype=xp.float64) + 0.5) / num_samples

    pos = gaussian_combination_cdf_inverse(u[None, :], max_std_dev1, max_std_dev2, w, xp)
    pdf = gaussian_combination(pos, max_std_dev1, max_std_dev2, w, xp)

    val = gaussian_combination(
        pos[:, :, None],
        std_dev1[:, None, :],
        std_dev2[:, None, :],
        w[:, :, None],
        xp,
    )

    weights = val / (pdf * num_samples)[:, :, None]
    weight_sum = weights.sum(axis=1)

    # Renormalize the weights to conserve energy
    weights = weights * (1.0 / weight_sum)[:, None, :]

    return weights, pos


def compute_kernel(profile: ScatteringProfile, num_samples: int = NUM_SAMPLES) -> FilterKernel:
    """
    Compute the filter kernel of a single profile.

    Args:
        profile: Scattering profile (validated, not clamped)
        num_samples: Odd number of taps

    Returns:
        FilterKernel with num_samples taps

    Raises:
        InvalidParameterError: if the profile is not a valid distribution
        ValueError: if num_samples is not a positive odd integer
    """
    num_samples = check_num_samples(num_samples)
    profile.validate()

    weights, positions = synthesize(
        np.array([profile.std_dev1]),
        np.array([profile.std_dev2]),
        np.array([profile.lerp_weight]),
        num_samples,
    )
    return FilterKernel(weights=weights[0], positions=positions[0])


def compute_kernels(
    profiles: Sequence[ScatteringProfile],
    num_samples: int = NUM_SAMPLES,
    backend=None,
) -> List[FilterKernel]:
    """
    Compute the filter kernels of several profiles in one vectorized pass.

    Args:
        profiles: Scattering profiles
        num_samples: Odd number of taps
        backend: Optional ComputeBackend (NumPy when None)

    Returns:
        One FilterKernel per profile, in order
    """
    num_samples = check_num_samples(num_samples)
    if len(profiles) == 0:
        return []
    for profile in profiles:
        profile.validate()

    xp = backend.xp if backend is not None else np

    weights, positions = synthesize(
        [p.std_dev1 for p in profiles],
        [p.std_dev2 for p in profiles],
        [p.lerp_weight for p in profiles],
        num_samples,
        xp,
    )

    if backend is not None:
        weights = backend.to_numpy(weights)
        positions = backend.to_numpy(positions)

    return [FilterKernel(weights=weights[i], positions=positions[i])
            for i in range(len(profiles))]
