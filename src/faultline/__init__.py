"""
Faultline - resilience primitives for calls to unreliable dependencies.

- faultline.core: Error taxonomy, error handler, logging, settings
- faultline.execution: Circuit breaker, retry, timeout, composition facade
"""

__version__ = "0.1.0"

from faultline.core import *  # noqa
from faultline.execution import *  # noqa
