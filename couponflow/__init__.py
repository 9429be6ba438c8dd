"""Load gzipped coupon-code files into MongoDB with resumable batch processing,
plus the configuration manager and logger it uses."""

__version__ = "0.1.0"

__all__ = ["config", "file_writer", "logger", "models", "processor", "repository"]