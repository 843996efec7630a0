"""HTTP middleware."""

from tollgate.api.middleware.admission import AdmissionMiddleware

__all__ = ["AdmissionMiddleware"]
