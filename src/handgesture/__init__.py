"""
Hand Gesture Recognition Pipeline
==================================

Turns a stream of camera frames into discrete, debounced hand-gesture
events.

Modules:
    - capture: Frame container and the bounded newest-frame-wins queue
    - detection: Landmark model inference and hand pose validation
    - recognition: Geometric gesture rules and temporal stabilization
    - core: Shared types, errors, event bus and the pipeline driver
    - utils: Configuration, logging and performance monitoring
"""

__version__ = "1.0.0"
__author__ = "HCI Team"
