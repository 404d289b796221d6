"""
Media engine loader.

RECORDER_MEDIA_ENGINE names a factory as "package.module:attribute". The
attribute is either a MediaEngine subclass or a callable returning a
MediaEngine instance.
"""

import importlib
import logging

from recorder.engine.base import MediaEngine

logger = logging.getLogger(__name__)


def load_engine(spec: str, **options) -> MediaEngine:
    """
    Import and instantiate the configured media engine.

    Raises:
        ValueError: If spec is malformed
        ImportError: If the module cannot be imported
        TypeError: If the factory does not produce a MediaEngine
    """
    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Invalid media engine spec: {spec!r} (format: 'package.module:factory')")

    module = importlib.import_module(module_name)
    try:
        factory = getattr(module, attr)
    except AttributeError:
        raise ImportError(f"Module {module_name!r} has no attribute {attr!r}")

    engine = factory(**options)
    if not isinstance(engine, MediaEngine):
        raise TypeError(f"{spec} returned {type(engine).__name__}, expected a MediaEngine")

    logger.info(f"Loaded media engine {spec}")
    return engine
