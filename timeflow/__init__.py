"""TimeFlow: resolve free-text activity descriptions into timed, tagged events."""

from .core.config import VERSION as __version__
