"""
Dermis Utilities
"""

from .exr import HAS_OPENEXR, KernelEXRWriter, read_kernel_exr
