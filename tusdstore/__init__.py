"""S3-backed storage for resumable tus uploads, built on S3 multipart uploads."""

__version__ = "0.1.0"