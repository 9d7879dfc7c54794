"""Exceptions related to kit-deploymentizer."""

__all__ = [
    "DeploymentizerException",
    "InputException",
    "ImageException",
    "PrimaryContainerException",
    "ImageNotFoundException",
    "CommitMismatchException",
    "ConfigFetchException",
    "FeatureFlagException",
    "FeatureFlagUnavailable",
]


class DeploymentizerException(Exception):
    """Generic base exception used for this library."""


class InputException(DeploymentizerException):
    """Raised when the input files or values are not formatted as expected."""


class ImageException(DeploymentizerException):
    """Raised when a container image could not be determined."""


class PrimaryContainerException(ImageException):
    """Raised when a resource with multiple containers has no primary container."""

    def __init__(self, resource_name: str) -> None:
        super().__init__(
            f"No primary set for the resource {resource_name} with containers > 1"
        )
        self.resource_name = resource_name


class ImageNotFoundException(ImageException):
    """Raised when the image tag has no image for the requested branch."""

    def __init__(self, image_tag: str, branch: str | None) -> None:
        super().__init__(f"Image {image_tag} not found for defined branch ({branch})")
        self.image_tag = image_tag
        self.branch = branch


class CommitMismatchException(DeploymentizerException):
    """Raised when none of the generated images match the requested commit."""

    def __init__(self, commit_id: str, image_shas: list[str]) -> None:
        super().__init__(
            f"This kit manifest generation was for commitId '{commit_id}', "
            f"but none of the SHAs from images ({','.join(image_shas)}) match that."
        )
        self.commit_id = commit_id
        self.image_shas = image_shas


class ConfigFetchException(DeploymentizerException):
    """Raised when the configuration plugin failed to fetch values."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FeatureFlagException(DeploymentizerException):
    """Raised when a feature flag could not be evaluated."""


class FeatureFlagUnavailable(FeatureFlagException):
    """Raised when no feature flag client has been configured."""
