class KubeConfigError(RuntimeError):
    """Raised when the Kubernetes client configuration cannot be loaded."""
