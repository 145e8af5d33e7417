"""
Dermis Kernel Tests - Validate kernel synthesis and the quantile approximation.

Run with: python -m pytest tests/test_kernel.py
Or standalone: python tests/test_kernel.py
"""

import sys
import os
from statistics import NormalDist

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np
import pytest


def _profiles():
    from dermis.core.parameters import ScatteringProfile

    return [
        ScatteringProfile.default(),
        ScatteringProfile(std_dev1=(0.3, 0.2, 0.1), std_dev2=(1.0, 0.6, 0.3), lerp_weight=0.5),
        ScatteringProfile(std_dev1=(0.05, 0.5, 1.0), std_dev2=(0.2, 1.0, 2.0), lerp_weight=0.3),
        ScatteringProfile(std_dev1=(2.0, 2.0, 2.0), std_dev2=(0.05, 0.05, 0.05), lerp_weight=0.9),
        ScatteringProfile(std_dev1=(0.7, 0.4, 0.2), std_dev2=(1.5, 1.2, 0.8), lerp_weight=0.0),
        ScatteringProfile(std_dev1=(0.7, 0.4, 0.2), std_dev2=(1.5, 1.2, 0.8), lerp_weight=1.0),
    ]


def test_constants():
    """Test that the kernel layout constants are consistent."""
    from dermis.core.constants import NUM_SAMPLES, NUM_CHANNELS, MAX_NUM_PROFILES

    assert NUM_SAMPLES == 7
    assert NUM_SAMPLES % 2 == 1
    assert NUM_CHANNELS == 3
    assert MAX_NUM_PROFILES == 8

    print("✓ Constants test passed")


def test_gaussian_is_normalized():
    """Test the Gaussian density integrates to one and peaks at 1/sqrt(2 pi v)."""
    from dermis.core.kernel import gaussian

    std_dev = 0.7
    x = np.linspace(-8 * std_dev, 8 * std_dev, 20001)
    y = gaussian(x, std_dev)
    integral = np.sum(0.5 * (y[1:] + y[:-1]) * np.diff(x))

    assert abs(integral - 1.0) < 1e-6
    assert abs(gaussian(0.0, std_dev) - 1.0 / np.sqrt(2 * np.pi * std_dev ** 2)) < 1e-12

    print("✓ Gaussian normalization test passed")


def test_gaussian_combination_endpoints():
    """Test the mixture reduces to either lobe at the ends of the lerp range."""
    from dermis.core.kernel import gaussian, gaussian_combination

    x = np.linspace(-3.0, 3.0, 61)
    assert np.array_equal(gaussian_combination(x, 0.3, 1.0, 0.0), gaussian(x, 0.3))
    assert np.allclose(gaussian_combination(x, 0.3, 1.0, 1.0), gaussian(x, 1.0), rtol=1e-12)

    mid = gaussian_combination(x, 0.3, 1.0, 0.5)
    assert np.allclose(mid, 0.5 * (gaussian(x, 0.3) + gaussian(x, 1.0)), rtol=1e-12)

    print("✓ Gaussian combination test passed")


def test_quantile_accuracy():
    """Test the rational approximation stays within its documented error bound."""
    from dermis.core.kernel import normal_cdf_inverse

    p = np.concatenate([
        [1e-6, 1e-5, 1e-4],
        np.linspace(0.0005, 0.9995, 1999),
        [1 - 1e-4, 1 - 1e-5, 1 - 1e-6],
    ])
    approx = normal_cdf_inverse(p, 1.0)
    exact = np.array([NormalDist().inv_cdf(v) for v in p])

    max_err = np.max(np.abs(approx - exact))
    assert max_err < 5e-4, f"Quantile error {max_err} exceeds bound"

    print(f"✓ Quantile accuracy test passed (max error {max_err:.2e})")


def test_quantile_scales_with_std_dev():
    """Test the quantile is linear in the standard deviation and odd around 0.5."""
    from dermis.core.kernel import normal_cdf_inverse

    p = np.array([0.05, 0.2, 0.35])
    unit = normal_cdf_inverse(p, 1.0)

    assert np.allclose(normal_cdf_inverse(p, 2.5), 2.5 * unit, rtol=1e-12)
    assert np.allclose(normal_cdf_inverse(1.0 - p, 1.0), -unit, atol=1e-12)
    assert np.all(np.diff(normal_cdf_inverse(np.linspace(0.0005, 0.9995, 1999))) > 0)

    print("✓ Quantile scaling test passed")


def test_quantile_rejects_closed_interval():
    """Test p = 0 and p = 1 are rejected instead of producing NaN."""
    from dermis.core.kernel import normal_cdf_inverse

    with pytest.raises(ValueError):
        normal_cdf_inverse(0.0)
    with pytest.raises(ValueError):
        normal_cdf_inverse(np.array([0.5, 1.0]))

    print("✓ Quantile domain test passed")


def test_kernel_energy_conservation():
    """Test every kernel has NUM_SAMPLES taps and each channel sums to one."""
    from dermis.core.constants import NUM_SAMPLES
    from dermis.core.kernel import compute_kernel

    for profile in _profiles():
        kernel = compute_kernel(profile)

        assert len(kernel) == NUM_SAMPLES
        assert kernel.weights.shape == (NUM_SAMPLES, 3)
        assert kernel.positions.shape == (NUM_SAMPLES,)
        assert np.all(np.isfinite(kernel.weights))
        assert np.all(kernel.weights >= 0.0)
        assert np.all(np.abs(kernel.weight_sums() - 1.0) < 1e-4), \
            f"Channel sums {kernel.weight_sums()} for {profile}"

    print("✓ Energy conservation test passed")


def test_kernel_positions_sorted():
    """Test tap positions are non-decreasing."""
    from dermis.core.kernel import compute_kernel

    for profile in _profiles():
        positions = compute_kernel(profile).positions
        assert np.all(np.diff(positions) >= 0.0), f"Unsorted positions {positions}"

    print("✓ Position ordering test passed")


def test_kernel_symmetry_equal_lobes():
    """Test the kernel is symmetric about the center tap when both lobes match."""
    from dermis.core.parameters import ScatteringProfile
    from dermis.core.kernel import compute_kernel

    profile = ScatteringProfile(std_dev1=(0.4, 0.6, 0.9), std_dev2=(0.4, 0.6, 0.9), lerp_weight=0.25)
    kernel = compute_kernel(profile)
    n = kernel.num_samples

    for i in range(n):
        j = n - 1 - i
        assert abs(kernel.positions[i] + kernel.positions[j]) < 1e-9
        assert np.allclose(kernel.weights[i], kernel.weights[j], atol=1e-9)

    assert abs(kernel.positions[n // 2]) < 5e-4 * 0.9

    print("✓ Symmetry test passed")


def test_lerp_zero_matches_single_gaussian():
    """Test lerp_weight = 0 reduces to importance sampling the first lobe alone."""
    from dermis.core.constants import NUM_SAMPLES
    from dermis.core.parameters import ScatteringProfile
    from dermis.core.kernel import compute_kernel, gaussian, normal_cdf_inverse

    std_dev1 = np.array([0.3, 0.5, 0.8])
    profile = ScatteringProfile(std_dev1=std_dev1, std_dev2=(1.0, 1.5, 2.0), lerp_weight=0.0)
    kernel = compute_kernel(profile)

    s = std_dev1.max()
    u = (np.arange(NUM_SAMPLES) + 0.5) / NUM_SAMPLES
    pos = normal_cdf_inverse(u, s)
    pdf = gaussian(pos, s)
    weights = gaussian(pos[:, None], std_dev1[None, :]) / (pdf * NUM_SAMPLES)[:, None]
    weights /= weights.sum(axis=0)

    assert np.allclose(kernel.positions, pos, atol=1e-12)
    assert np.allclose(kernel.weights, weights, atol=1e-12)

    print("✓ Single Gaussian reduction test passed")


def test_default_profile_end_to_end():
    """Test the default profile (0.3 / 1.0 / 0.5) against the exact quantiles."""
    from dermis.core.parameters import ScatteringProfile
    from dermis.core.kernel import compute_kernel

    profile = ScatteringProfile(std_dev1=(0.3, 0.3, 0.3), std_dev2=(1.0, 1.0, 1.0), lerp_weight=0.5)
    kernel = compute_kernel(profile)

    assert len(kernel) == 7
    assert np.all(np.abs(kernel.weight_sums() - 1.0) < 1e-4)
    assert abs(kernel.positions[3]) < 1e-3
    for i in range(7):
        assert abs(kernel.positions[i] + kernel.positions[6 - i]) < 1e-9

    # The quantile mix of equal-shape lobes is 0.65 * z(u)
    u = (np.arange(7) + 0.5) / 7
    expected = np.array([0.65 * NormalDist().inv_cdf(v) for v in u])
    assert np.all(np.abs(kernel.positions - expected) < 0.65 * 5e-4)

    # Identical channels sample their own density: every tap weighs 1/7
    assert np.allclose(kernel.weights, 1.0 / 7.0, atol=1e-12)

    print("✓ Default profile test passed")


def test_compute_kernel_idempotent():
    """Test repeated computation yields identical kernels."""
    from dermis.core.kernel import compute_kernel

    for profile in _profiles():
        a = compute_kernel(profile)
        b = compute_kernel(profile)
        assert np.array_equal(a.weights, b.weights)
        assert np.array_equal(a.positions, b.positions)

    print("✓ Idempotence test passed")


def test_invalid_profiles_rejected():
    """Test non-positive radii and out of range weights raise InvalidParameterError."""
    from dermis.core.parameters import ScatteringProfile, InvalidParameterError
    from dermis.core.kernel import compute_kernel

    bad = [
        ScatteringProfile(std_dev1=(0.0, 0.3, 0.3)),
        ScatteringProfile(std_dev2=(1.0, -1.0, 1.0)),
        ScatteringProfile(std_dev1=(float('nan'), 0.3, 0.3)),
        ScatteringProfile(std_dev2=(1.0, float('inf'), 1.0)),
        ScatteringProfile(std_dev1=(0.3, 0.3)),
        ScatteringProfile(lerp_weight=1.5),
        ScatteringProfile(lerp_weight=-0.1),
    ]
    for profile in bad:
        with pytest.raises(InvalidParameterError):
            compute_kernel(profile)

    assert issubclass(InvalidParameterError, ValueError)

    print("✓ Invalid profile test passed")


def test_custom_sample_count():
    """Test odd sample counts are accepted and even ones rejected."""
    from dermis.core.parameters import ScatteringProfile
    from dermis.core.kernel import compute_kernel

    profile = ScatteringProfile(std_dev1=(0.3, 0.2, 0.1), std_dev2=(1.0, 0.6, 0.3))

    kernel = compute_kernel(profile, num_samples=11)
    assert len(kernel) == 11
    assert np.all(np.abs(kernel.weight_sums() - 1.0) < 1e-4)
    assert np.all(np.diff(kernel.positions) >= 0.0)

    for n in (0, 6, -3, 7.5, True, np.True_):
        with pytest.raises(ValueError):
            compute_kernel(profile, num_samples=n)

    print("✓ Sample count test passed")


def test_batch_matches_single():
    """Test the vectorized batch path matches per-profile computation."""
    from dermis.core.kernel import compute_kernel, compute_kernels
    from dermis.core.backend import ComputeBackend

    profiles = _profiles()
    backend = ComputeBackend(use_gpu=False, verbose=False)

    for kernels in (compute_kernels(profiles), compute_kernels(profiles, backend=backend)):
        assert len(kernels) == len(profiles)
        for profile, batched in zip(profiles, kernels):
            single = compute_kernel(profile)
            assert np.allclose(batched.weights, single.weights, rtol=1e-12, atol=0)
            assert np.allclose(batched.positions, single.positions, rtol=1e-12, atol=0)

    assert compute_kernels([]) == []

    print("✓ Batch computation test passed")


def test_kernel_packing_and_readonly():
    """Test the packed vec4 layout and that cached kernels cannot be mutated."""
    from dermis.core.parameters import ScatteringProfile
    from dermis.core.kernel import compute_kernel

    kernel = compute_kernel(ScatteringProfile(std_dev1=(0.3, 0.2, 0.1), std_dev2=(1.0, 0.6, 0.3)))
    packed = kernel.as_vector4()

    assert packed.shape == (7, 4)
    assert packed.dtype == np.float32
    assert np.allclose(packed[:, :3], kernel.weights, atol=1e-6)
    assert np.allclose(packed[:, 3], kernel.positions, atol=1e-6)

    taps = list(kernel)
    assert len(taps) == 7
    assert taps[0][1] == kernel.positions[0]

    with pytest.raises(ValueError):
        kernel.weights[0, 0] = 1.0

    print("✓ Kernel packing test passed")


def run_all_tests():
    """Run all tests."""
    print("\n" + "="*60)
    print("Dermis Kernel Tests")
    print("="*60 + "\n")

    tests = [
        test_constants,
        test_gaussian_is_normalized,
        test_gaussian_combination_endpoints,
        test_quantile_accuracy,
        test_quantile_scales_with_std_dev,
        test_quantile_rejects_closed_interval,
        test_kernel_energy_conservation,
        test_kernel_positions_sorted,
        test_kernel_symmetry_equal_lobes,
        test_lerp_zero_matches_single_gaussian,
        test_default_profile_end_to_end,
        test_compute_kernel_idempotent,
        test_invalid_profiles_rejected,
        test_custom_sample_count,
        test_batch_matches_single,
        test_kernel_packing_and_readonly,
    ]

    passed = 0
    failed = 0

    for test in tests:
        try:
            test()
            passed += 1
        except Exception as e:
            print(f"✗ {test.__name__} FAILED: {e}")
            failed += 1

    print("\n" + "="*60)
    print(f"Results: {passed} passed, {failed} failed")
    print("="*60 + "\n")

    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
