"""
Dermis EXR Utilities - Filter kernel export as an RGBA lookup image.

Layout: one row per profile, one column per tap.
- R, G, B: per-channel tap weights
- A: radial tap position
"""

import numpy as np
from typing import Optional
import os

# Try to import OpenEXR - may not be available in all builds
try:
    import OpenEXR
    import Imath
    HAS_OPENEXR = True
except ImportError:
    HAS_OPENEXR = False


class KernelEXRWriter:
    """
    Writes packed filter kernels to an EXR file.

    Channel naming convention:
    - dermis.kernel.R, dermis.kernel.G, dermis.kernel.B, dermis.kernel.A
    """

    CHANNEL_PREFIX = "dermis"
    LAYER_NAME = "kernel"
    CHANNELS = ('R', 'G', 'B', 'A')

    def __init__(self, num_profiles: int, num_samples: int, half_precision: bool = False):
        """
        Initialize EXR writer.

        Args:
            num_profiles: Image height (one row per profile)
            num_samples: Image width (one column per tap)
            half_precision: Use 16-bit float (True) or 32-bit float (False)
        """
        self.width = num_samples
        self.height = num_profiles
        self.half_precision = half_precision
        self.kernels: Optional[np.ndarray] = None

    def set_kernels(self, packed: np.ndarray) -> None:
        """
        Set the kernel data.

        Args:
            packed: Packed kernels as (num_profiles, num_samples, 4) array
        """
        if packed.shape != (self.height, self.width, 4):
            raise ValueError(f"Kernel data must be shape ({self.height}, {self.width}, 4), "
                             f"got {packed.shape}")

        self.kernels = np.asarray(packed, dtype=np.float32)

    def write(self, filepath: str) -> None:
        """
        Write the EXR file.

        Args:
            filepath: Output file path
        """
        if not HAS_OPENEXR:
            raise RuntimeError("OpenEXR module not available. "
                               "Install with: pip install OpenEXR")

        if self.kernels is None:
            raise ValueError("No kernels set for EXR")

        if self.half_precision:
            pixel_type = Imath.PixelType(Imath.PixelType.HALF)
            dtype = np.float16
        else:
            pixel_type = Imath.PixelType(Imath.PixelType.FLOAT)
            dtype = np.float32

        header = OpenEXR.Header(self.width, self.height)
        channels = {}
        channel_data = {}

        for i, channel in enumerate(self.CHANNELS):
            full_name = f"{self.CHANNEL_PREFIX}.{self.LAYER_NAME}.{channel}"
            channels[full_name] = Imath.Channel(pixel_type)
            channel_data[full_name] = np.ascontiguousarray(
                self.kernels[:, :, i]).astype(dtype).tobytes()

        header['channels'] = channels

        exr_file = OpenEXR.OutputFile(filepath, header)
        exr_file.writePixels(channel_data)
        exr_file.close()

    @classmethod
    def write_kernels(cls, filepath: str, packed: np.ndarray, half_precision: bool = False) -> None:
        """
        Convenience method to write packed kernels.

        Args:
            filepath: Output file path
            packed: (num_profiles, num_samples, 4) array
            half_precision: Use half float precision
        """
        num_profiles, num_samples = packed.shape[:2]
        writer = cls(num_profiles, num_samples, half_precision)
        writer.set_kernels(packed)
        writer.write(filepath)


def read_kernel_exr(filepath: str) -> np.ndarray:
    """
    Read packed kernels from an EXR file.

    Args:
        filepath: Path to EXR file

    Returns:
        (num_profiles, num_samples, 4) float32 array
    """
    if not HAS_OPENEXR:
        raise RuntimeError("OpenEXR module not available")

    if not os.path.exists(filepath):
        raise FileNotFoundError(f"EXR file not found: {filepath}")

    exr_file = OpenEXR.InputFile(filepath)
    header = exr_file.header()

    dw = header['dataWindow']
    width = dw.max.x - dw.min.x + 1
    height = dw.max.y - dw.min.y + 1

    prefix = f"{KernelEXRWriter.CHANNEL_PREFIX}.{KernelEXRWriter.LAYER_NAME}."
    missing = [c for c in KernelEXRWriter.CHANNELS if prefix + c not in header['channels']]
    if missing:
        exr_file.close()
        raise ValueError(f"EXR file has no kernel channels {missing}: {filepath}")

    # Half channels are converted on read
    pt = Imath.PixelType(Imath.PixelType.FLOAT)
    planes = [
        np.frombuffer(exr_file.channel(prefix + c, pt), dtype=np.float32).reshape(height, width)
        for c in KernelEXRWriter.CHANNELS
    ]

    exr_file.close()
    return np.stack(planes, axis=2)
