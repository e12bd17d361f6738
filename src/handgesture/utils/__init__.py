"""Configuration, logging and performance utilities."""
from .config import PipelineConfig, load_config
from .logger import setup_logging, GestureEventLogger, log_timing
from .performance import PerformanceMonitor

__all__ = [
    "PipelineConfig",
    "load_config",
    "setup_logging",
    "GestureEventLogger",
    "log_timing",
    "PerformanceMonitor",
]
