"""Exceptions raised by kubeseed."""


class KubeseedError(Exception):
    """Base class for all kubeseed errors."""
    pass


class ConfigurationError(KubeseedError):
    """Raised when the cluster definition or distribution config is invalid."""
    pass


class StagingError(KubeseedError):
    """Raised when artefacts cannot be staged on the build host."""
    pass


class ArtefactLayoutError(StagingError):
    """Raised when a staged directory does not have the expected shape."""
    pass


class DownloadError(StagingError):
    """Raised when an artefact cannot be fetched from upstream."""
    pass


class ManifestError(KubeseedError):
    """Raised when the manifests directory cannot be composed."""
    pass


class TemplateRenderError(KubeseedError):
    """Raised when an installer or manifest template fails to render."""
    pass


class BootError(KubeseedError):
    """Raised when the first-boot sequence cannot continue on a node."""
    pass
