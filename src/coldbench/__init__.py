"""coldbench: cold-start and latency benchmarks for AWS Lambda functions."""

__version__ = "0.1.0"
