"""
Dermis Parameters - Subsurface scattering profile structures.

A profile describes the diffusion of light under the surface as a linear
combination of two normalized Gaussians per color channel, following
Jimenez et al., "Separable Subsurface Scattering".
"""

import math
from dataclasses import dataclass, field, replace
from typing import List, Sequence, Tuple

import numpy as np

from .constants import (
    NUM_CHANNELS,
    MAX_NUM_PROFILES,
    MIN_STD_DEV,
    MAX_STD_DEV,
    DEFAULT_STD_DEV1,
    DEFAULT_STD_DEV2,
    DEFAULT_LERP_WEIGHT,
    DEFAULT_BILATERAL_SCALE,
)


class InvalidParameterError(ValueError):
    """Raised when a profile cannot produce a well-defined filter kernel."""


def _as_channels(value) -> Tuple[float, ...]:
    return tuple(float(v) for v in np.ravel(np.asarray(value, dtype=np.float64)))


@dataclass(frozen=True)
class ScatteringProfile:
    """
    Two-lobe Gaussian scattering profile for one material preset.

    Attributes:
        std_dev1: Standard deviation of the 1st Gaussian per channel (R, G, B)
        std_dev2: Standard deviation of the 2nd Gaussian per channel (R, G, B)
        lerp_weight: Interpolation between the lobes (0 = lobe 1, 1 = lobe 2)

    Instances are immutable and hashable, so they can key a kernel cache.
    """
    std_dev1: Tuple[float, float, float] = DEFAULT_STD_DEV1
    std_dev2: Tuple[float, float, float] = DEFAULT_STD_DEV2
    lerp_weight: float = DEFAULT_LERP_WEIGHT

    def __post_init__(self):
        """Normalize lobe radii to float tuples (accepts arrays and lists)."""
        object.__setattr__(self, 'std_dev1', _as_channels(self.std_dev1))
        object.__setattr__(self, 'std_dev2', _as_channels(self.std_dev2))
        object.__setattr__(self, 'lerp_weight', float(self.lerp_weight))

    @classmethod
    def default(cls) -> 'ScatteringProfile':
        """Create the default skin-like profile."""
        return cls()

    @classmethod
    def from_artistic_controls(
        cls,
        near_radius: float = 0.3,
        far_radius: float = 1.0,
        tint: Sequence[float] = (1.0, 1.0, 1.0),
        far_weight: float = DEFAULT_LERP_WEIGHT,
    ) -> 'ScatteringProfile':
        """
        Create a profile from artist-facing controls.

        Args:
            near_radius: Blur radius of the narrow lobe (world units)
            far_radius: Blur radius of the wide lobe (world units)
            tint: Per-channel radius multiplier (red scatters further in skin)
            far_weight: Contribution of the wide lobe (0-1)

        The result is clamped to the valid parameter range.
        """
        tint = np.asarray(tint, dtype=np.float64)
        profile = cls(
            std_dev1=near_radius * tint,
            std_dev2=far_radius * tint,
            lerp_weight=far_weight,
        )
        return sanitize_profile(profile)

    @classmethod
    def from_settings(cls, settings) -> 'ScatteringProfile':
        """
        Create a profile from an editor settings object.

        Args:
            settings: Any object exposing std_dev1, std_dev2 and lerp_weight
                attributes (e.g. a property group). Missing attributes fall
                back to the defaults.
        """
        return cls(
            std_dev1=getattr(settings, 'std_dev1', DEFAULT_STD_DEV1),
            std_dev2=getattr(settings, 'std_dev2', DEFAULT_STD_DEV2),
            lerp_weight=getattr(settings, 'lerp_weight', DEFAULT_LERP_WEIGHT),
        )

    @property
    def max_std_dev1(self) -> float:
        """Widest 1st-lobe radius across the color channels."""
        return max(self.std_dev1)

    @property
    def max_std_dev2(self) -> float:
        """Widest 2nd-lobe radius across the color channels."""
        return max(self.std_dev2)

    def validate(self) -> 'ScatteringProfile':
        """
        Check that the profile defines a proper probability distribution.

        Raises:
            InvalidParameterError: on a wrong channel count, a non-positive
                or non-finite standard deviation, or a lerp weight outside [0, 1]
        """
        for name in ('std_dev1', 'std_dev2'):
            values = getattr(self, name)
            if len(values) != NUM_CHANNELS:
                raise InvalidParameterError(
                    f"{name} must have {NUM_CHANNELS} channels, got {len(values)}")
            for v in values:
                if not math.isfinite(v) or v <= 0.0:
                    raise InvalidParameterError(
                        f"{name} must be positive and finite, got {values}")

        w = self.lerp_weight
        if not math.isfinite(w) or not (0.0 <= w <= 1.0):
            raise InvalidParameterError(f"lerp_weight must be in [0..1], got {w}")

        return self


def sanitize_profile(profile: ScatteringProfile) -> ScatteringProfile:
    """
    Clamp a profile into the editable range.

    Lobe radii are clamped to [MIN_STD_DEV, MAX_STD_DEV], the lerp weight
    to [0, 1]. Returns a new profile.
    """
    return replace(
        profile,
        std_dev1=np.clip(profile.std_dev1, MIN_STD_DEV, MAX_STD_DEV),
        std_dev2=np.clip(profile.std_dev2, MIN_STD_DEV, MAX_STD_DEV),
        lerp_weight=float(np.clip(profile.lerp_weight, 0.0, 1.0)),
    )


@dataclass
class ScatteringParameters:
    """
    Collection of scattering profiles shared by a renderer.

    The bilateral scale controls the depth-aware weighting of the blur pass
    and does not affect kernel synthesis.
    """
    profiles: List[ScatteringProfile] = field(
        default_factory=lambda: [ScatteringProfile.default()]
    )
    bilateral_scale: float = DEFAULT_BILATERAL_SCALE

    @classmethod
    def default(cls) -> 'ScatteringParameters':
        """Create a collection holding one default profile."""
        return cls()

    @property
    def num_profiles(self) -> int:
        return len(self.profiles)

    def sanitized(self) -> 'ScatteringParameters':
        """
        Return a copy limited to MAX_NUM_PROFILES profiles, with every
        profile and the bilateral scale clamped to their valid ranges.
        """
        return ScatteringParameters(
            profiles=[sanitize_profile(p) for p in self.profiles[:MAX_NUM_PROFILES]],
            bilateral_scale=float(np.clip(self.bilateral_scale, 0.0, 1.0)),
        )

    def validate(self) -> 'ScatteringParameters':
        """Validate every profile (see ScatteringProfile.validate)."""
        for profile in self.profiles:
            profile.validate()
        return self

    def with_profile(self, index: int, profile: ScatteringProfile) -> 'ScatteringParameters':
        """Return a copy with the profile at index replaced."""
        if not 0 <= index < len(self.profiles):
            raise IndexError(f"Profile index {index} out of range [0, {len(self.profiles)})")
        profiles = list(self.profiles)
        profiles[index] = profile
        return replace(self, profiles=profiles)
