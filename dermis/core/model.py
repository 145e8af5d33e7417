"""
Dermis Scattering Model - Profile collection with cached filter kernels.

This module handles:
- Lazy kernel recomputation (a dirty flag per profile slot)
- Batched precomputation of every profile
- Shader uniforms and kernel persistence
"""

import threading
from typing import Callable, List, Optional, Sequence

import numpy as np

from .constants import NUM_SAMPLES, NUM_CHANNELS, MAX_NUM_PROFILES, KERNEL_VECTOR_SIZE
from .parameters import ScatteringParameters, ScatteringProfile, sanitize_profile
from .kernel import FilterKernel, compute_kernel, compute_kernels, check_num_samples
from .backend import ComputeBackend


class ScatteringModel:
    """
    Main subsurface scattering model class.

    Owns the profile collection and one cached kernel per profile. Each slot
    is either clean (kernel matches the profile) or dirty (kernel must be
    recomputed before it is read). All state changes go through the methods
    below and are serialized by an internal lock.
    """

    def __init__(
        self,
        params: Optional[ScatteringParameters] = None,
        num_samples: int = NUM_SAMPLES,
        use_gpu: bool = False,
    ):
        """
        Initialize the scattering model.

        Args:
            params: Profile collection. Uses a single default profile if None.
                Sanitized (clamped, truncated) on construction.
            num_samples: Odd number of taps per kernel
            use_gpu: Use CuPy for batched precomputation when available
        """
        self.params = (params or ScatteringParameters.default()).sanitized().validate()
        self.num_samples = check_num_samples(num_samples)
        self.backend = ComputeBackend(use_gpu=use_gpu, verbose=use_gpu)

        self._kernels: List[Optional[FilterKernel]] = [None] * self.params.num_profiles
        self._dirty: List[bool] = [True] * self.params.num_profiles
        self._is_initialized = False
        self._lock = threading.RLock()

    @property
    def is_initialized(self) -> bool:
        """Check if kernels have been precomputed."""
        return self._is_initialized

    @property
    def num_profiles(self) -> int:
        return self.params.num_profiles

    @property
    def profiles(self) -> List[ScatteringProfile]:
        return list(self.params.profiles)

    @property
    def bilateral_scale(self) -> float:
        return self.params.bilateral_scale

    def init(self, progress_callback: Optional[Callable[[float, str], None]] = None) -> None:
        """
        Precompute the kernels of all profiles.

        Args:
            progress_callback: Optional callback(progress, message) for progress updates
        """
        if progress_callback:
            progress_callback(0.0, f"Computing {self.num_profiles} scattering kernel(s)...")

        with self._lock:
            self._dirty = [True] * self.num_profiles
            self._recompute_dirty()
            self._is_initialized = True

        if progress_callback:
            progress_callback(1.0, "Precomputation complete.")

    # -------------------------------------------------------------------------
    # Profile edits
    # -------------------------------------------------------------------------

    def _check_index(self, index: int) -> None:
        if not 0 <= index < self.num_profiles:
            raise IndexError(f"Profile index {index} out of range [0, {self.num_profiles})")

    def set_profile(self, index: int, profile: ScatteringProfile) -> None:
        """Replace a profile; its kernel is invalidated only if the value changed."""
        profile = sanitize_profile(profile).validate()
        with self._lock:
            self._check_index(index)
            if self.params.profiles[index] != profile:
                self.params = self.params.with_profile(index, profile)
                self._dirty[index] = True

    def set_profiles(self, profiles: Sequence[ScatteringProfile]) -> None:
        """Replace the whole collection (at most MAX_NUM_PROFILES are kept)."""
        if len(profiles) > MAX_NUM_PROFILES:
            print(f"[Dermis] Truncating {len(profiles)} profiles to {MAX_NUM_PROFILES}")
        params = ScatteringParameters(
            profiles=list(profiles),
            bilateral_scale=self.params.bilateral_scale,
        ).sanitized().validate()
        with self._lock:
            self.params = params
            self._kernels = [None] * self.num_profiles
            self._dirty = [True] * self.num_profiles

    def set_bilateral_scale(self, value: float) -> None:
        """Set the depth tolerance of the blur pass (clamped to [0, 1])."""
        with self._lock:
            self.params.bilateral_scale = float(np.clip(value, 0.0, 1.0))

    def set_dirty_flag(self, index: Optional[int] = None) -> None:
        """Force recomputation of one kernel, or of all kernels if index is None."""
        with self._lock:
            if index is None:
                self._dirty = [True] * self.num_profiles
            else:
                self._check_index(index)
                self._dirty[index] = True

    def is_dirty(self, index: int) -> bool:
        with self._lock:
            self._check_index(index)
            return self._dirty[index]

    # -------------------------------------------------------------------------
    # Kernel access
    # -------------------------------------------------------------------------

    def filter_kernel(self, index: int) -> FilterKernel:
        """Get the kernel of one profile, recomputing it if dirty."""
        with self._lock:
            self._check_index(index)
            if self._dirty[index]:
                self._kernels[index] = compute_kernel(
                    self.params.profiles[index], self.num_samples)
                self._dirty[index] = False
            return self._kernels[index]

    def filter_kernels(self) -> List[FilterKernel]:
        """Get the kernels of all profiles, recomputing dirty ones in one batch."""
        with self._lock:
            self._recompute_dirty()
            return list(self._kernels)

    def _recompute_dirty(self) -> None:
        indices = [i for i, dirty in enumerate(self._dirty) if dirty]
        if not indices:
            return

        kernels = compute_kernels(
            [self.params.profiles[i] for i in indices],
            self.num_samples,
            self.backend,
        )
        for i, kernel in zip(indices, kernels):
            self._kernels[i] = kernel
            self._dirty[i] = False

    def packed_kernels(self) -> np.ndarray:
        """All kernels packed for shader upload, shape (P, N, 4) float32."""
        kernels = self.filter_kernels()
        if not kernels:
            return np.empty((0, self.num_samples, KERNEL_VECTOR_SIZE), dtype=np.float32)
        return np.stack([k.as_vector4() for k in kernels], axis=0)

    def get_shader_uniforms(self) -> dict:
        """
        Get dictionary of uniform values for the blur pass.

        Returns:
            Dictionary with uniform names and values
        """
        if not self._is_initialized:
            raise RuntimeError("Model not initialized. Call init() first.")

        return {
            'filter_kernels': self.packed_kernels(),
            'num_profiles': self.num_profiles,
            'num_samples': self.num_samples,
            'bilateral_scale': self.bilateral_scale,
        }

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def save_kernels(self, filepath: str) -> None:
        """Save profiles and precomputed kernels to a file (NumPy format)."""
        if not self._is_initialized:
            raise RuntimeError("Model not initialized.")

        kernels = self.filter_kernels()
        profiles = self.params.profiles
        np.savez_compressed(
            filepath,
            std_dev1=np.array([p.std_dev1 for p in profiles]).reshape(-1, NUM_CHANNELS),
            std_dev2=np.array([p.std_dev2 for p in profiles]).reshape(-1, NUM_CHANNELS),
            lerp_weight=np.array([p.lerp_weight for p in profiles], dtype=np.float64),
            bilateral_scale=np.array(self.bilateral_scale),
            weights=np.array([k.weights for k in kernels]).reshape(-1, self.num_samples, NUM_CHANNELS),
            positions=np.array([k.positions for k in kernels]).reshape(-1, self.num_samples),
        )

    def load_kernels(self, filepath: str) -> None:
        """Load profiles and precomputed kernels from a file."""
        with np.load(filepath) as data:
            weights = data['weights']
            positions = data['positions']
            params = ScatteringParameters(
                profiles=[
                    ScatteringProfile(std_dev1=s1, std_dev2=s2, lerp_weight=w)
                    for s1, s2, w in zip(data['std_dev1'], data['std_dev2'], data['lerp_weight'])
                ],
                bilateral_scale=float(data['bilateral_scale']),
            )

        with self._lock:
            self.params = params
            self.num_samples = check_num_samples(positions.shape[1])
            self._kernels = [FilterKernel(weights=weights[i], positions=positions[i])
                             for i in range(len(positions))]
            self._dirty = [False] * self.num_profiles
            self._is_initialized = True

    def save_kernels_exr(self, filepath: str, half_precision: bool = False) -> None:
        """Save the packed kernels as an RGBA EXR image (one row per profile)."""
        from ..utils.exr import KernelEXRWriter

        if not self._is_initialized:
            raise RuntimeError("Model not initialized.")

        KernelEXRWriter.write_kernels(filepath, self.packed_kernels(), half_precision)
        print(f"[Dermis] Saved EXR: {filepath}")
