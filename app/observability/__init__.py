"""Request instrumentation for the demo service.

Per-request timing and completion signalling, a prometheus-backed metrics
registry, and structlog logging to stdout plus Loki.
"""
