"""binforge: prebuilt binary dependencies with a shared artifact cache.

Resolves source packages, prebuilt binaries and CocoaPods, builds each
product into a redistributable bundle, skips anything already present in
the configured cache (local directory, HTTP or S3) and publishes a
``Package.swift`` manifest pointing at the cached payloads.
"""

__version__ = "0.1.0"
__description__ = "Build, cache and publish prebuilt binary dependencies"

from binforge.core.runner import Runner

__all__ = ["Runner", "__version__"]
