"""
Kernel Validation Script - Checks precomputed SSS kernels against reference values.

Compares:
- the Abramowitz-Stegun quantile approximation against the exact inverse normal CDF
- per-channel energy of the kernel taps
- the second moment of the taps against the analytic variance of the profile

Usage:
    python validate_kernel.py
    python validate_kernel.py <s1_r> <s1_g> <s1_b> <s2_r> <s2_g> <s2_b> <lerp_weight>

Example:
    python validate_kernel.py 0.3 0.2 0.1 1.0 0.6 0.3 0.5
"""

import sys
from statistics import NormalDist

import numpy as np

from dermis.core.constants import NUM_SAMPLES, RATIONAL_APPROX_MAX_ERROR
from dermis.core.parameters import ScatteringProfile, InvalidParameterError
from dermis.core.kernel import compute_kernel, normal_cdf_inverse, gaussian_combination


def parse_profile(args):
    """Build a profile from command-line values (default profile if none given)."""
    if not args:
        return ScatteringProfile.default()
    if len(args) != 7:
        raise ValueError("Expected 7 values: s1_r s1_g s1_b s2_r s2_g s2_b lerp_weight")
    values = [float(a) for a in args]
    return ScatteringProfile(std_dev1=values[0:3], std_dev2=values[3:6], lerp_weight=values[6])


def quantile_error():
    """Maximum absolute error of the quantile approximation on a dense grid."""
    p = np.linspace(1e-6, 1.0 - 1e-6, 20001)
    approx = normal_cdf_inverse(p, 1.0)
    exact = np.array([NormalDist().inv_cdf(v) for v in p])
    err = np.abs(approx - exact)
    return err.max(), p[err.argmax()]


def mixture_integral(std_dev1, std_dev2, lerp_weight):
    """Trapezoid integral of the mixture density (should be 1)."""
    extent = 8.0 * max(std_dev1, std_dev2)
    x = np.linspace(-extent, extent, 16001)
    y = gaussian_combination(x, std_dev1, std_dev2, lerp_weight)
    return float(np.sum(0.5 * (y[1:] + y[:-1]) * np.diff(x)))


def main():
    try:
        profile = parse_profile(sys.argv[1:])
        kernel = compute_kernel(profile)
    except (ValueError, InvalidParameterError) as e:
        print(f"Error: {e}")
        print(__doc__)
        return 1

    print("=" * 60)
    print("Dermis Kernel Validation")
    print("=" * 60)
    print(f"std_dev1:    {profile.std_dev1}")
    print(f"std_dev2:    {profile.std_dev2}")
    print(f"lerp_weight: {profile.lerp_weight}")
    print(f"taps:        {NUM_SAMPLES}")

    print("\nTaps (position | weight R, G, B):")
    for i, (weight, position) in enumerate(kernel):
        print(f"  [{i}] {position:+.6f} | {weight[0]:.6f} {weight[1]:.6f} {weight[2]:.6f}")

    max_err, at_p = quantile_error()
    status = "✓" if max_err < RATIONAL_APPROX_MAX_ERROR else "✗"
    print(f"\n{status} Quantile max error: {max_err:.2e} at p={at_p:.6f} "
          f"(bound {RATIONAL_APPROX_MAX_ERROR:.1e})")

    sums = kernel.weight_sums()
    status = "✓" if np.all(np.abs(sums - 1.0) < 1e-4) else "✗"
    print(f"{status} Channel energy: R={sums[0]:.8f} G={sums[1]:.8f} B={sums[2]:.8f}")

    print("\nSecond moment per channel (taps vs analytic):")
    w = profile.lerp_weight
    for c, name in enumerate("RGB"):
        s1 = profile.std_dev1[c]
        s2 = profile.std_dev2[c]
        analytic = (1.0 - w) * s1 * s1 + w * s2 * s2
        sampled = float(np.sum(kernel.weights[:, c] * kernel.positions ** 2))
        integral = mixture_integral(s1, s2, w)
        print(f"  {name}: taps={sampled:.6f} analytic={analytic:.6f} "
              f"ratio={sampled / analytic:.4f} (density integral {integral:.6f})")

    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
