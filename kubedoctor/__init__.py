"""KubeDoctor - Kubernetes cluster health assessment."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kubedoctor")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"
