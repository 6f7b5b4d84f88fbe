"""gpusetup — CUDA, cuDNN and TensorFlow C API setup for PixInsight."""

__version__ = "0.1.0"
