class ApplicationError(Exception):
    pass


class TransportError(ApplicationError):
    """The request is unusable before an AdmissionReview can be decoded, so
    there is no UID to answer with."""

    status_code = 400


class EmptyBody(TransportError):
    def __init__(self):
        super().__init__("empty body")


class UnsupportedMediaType(TransportError):
    status_code = 415

    def __init__(self, content_type):
        super().__init__("invalid Content-Type, expect `application/json`")
        self.content_type = content_type


class DecodeError(ApplicationError):
    pass


class MalformedEnvelope(DecodeError):
    pass


class MalformedObject(DecodeError):
    pass


class AdmissionValidationError(ApplicationError):
    pass


class MissingOwnerAnnotation(AdmissionValidationError):
    pass


class PlanningError(ApplicationError):
    pass


class EncodeError(ApplicationError):
    pass
