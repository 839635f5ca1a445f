"""k8s-deploy - build and ship container images from a source directory.

This package archives a directory into a Docker build context, submits it
to a build daemon, and streams back the build output.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
