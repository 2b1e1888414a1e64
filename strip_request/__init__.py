from .codec import parse, parse_response, serialize
from .minimizer import RequestMinimizer, minimize, probe_baseline
from .models import BodyType, Location, ProbeResult, RemovalDescriptor, Request, ResponseFingerprint

__version__ = "0.1.0"

__all__ = [
    "BodyType",
    "Location",
    "ProbeResult",
    "RemovalDescriptor",
    "Request",
    "RequestMinimizer",
    "ResponseFingerprint",
    "minimize",
    "parse",
    "parse_response",
    "probe_baseline",
    "serialize",
]
