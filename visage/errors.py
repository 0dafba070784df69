# visage/errors.py
"""
Error taxonomy for capture and remote calls.

Every error carries a user-facing message; `kind` is the stable name the
browser and the metrics use.
"""


class VisageError(Exception):
    kind = "VisageError"
    default_message = "Something went wrong during analysis."

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class PermissionDenied(VisageError):
    kind = "PermissionDenied"
    default_message = "Could not access camera. Please check permissions."


class DeviceUnavailable(VisageError):
    kind = "DeviceUnavailable"
    default_message = "No camera is available. Please connect a camera or upload a photo."


class MissingCredential(VisageError):
    kind = "MissingCredential"
    default_message = "API configuration missing. Please check your environment variables."


class NetworkOrServerError(VisageError):
    kind = "NetworkOrServerError"
    default_message = (
        "Failed to analyze image. Ensure the face is clear and the API key "
        "is correctly configured."
    )


class MalformedResponse(VisageError):
    kind = "MalformedResponse"
    default_message = "The analysis service returned an unexpected response. Please try again."


class NoImageProduced(VisageError):
    kind = "NoImageProduced"
    default_message = "No image data returned from model."


class InvalidImage(VisageError):
    kind = "InvalidImage"
    default_message = "Could not read the image. Please upload a JPG or PNG photo."


class AnalysisNotAllowed(VisageError):
    kind = "AnalysisNotAllowed"
    default_message = "Analysis is not available right now."
