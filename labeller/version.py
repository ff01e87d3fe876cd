"""Version of the installed usb-node-labeller distribution."""

from importlib.metadata import PackageNotFoundError, version

DISTRIBUTION_NAME = "usb-node-labeller"


def get_version() -> str:
    """Return the installed distribution's version, or "0.0.0" when running
    from a source tree that was never installed."""
    try:
        return version(DISTRIBUTION_NAME)
    except PackageNotFoundError:
        return "0.0.0"


__version__ = get_version()
