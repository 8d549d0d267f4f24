# Models
from models.errors import ErrorResponse, ErrorType
from models.schemas import BiasReport, BiasType, ClarifyingAnswer, OptionWeight

__all__ = [
    "BiasReport",
    "BiasType",
    "ClarifyingAnswer",
    "ErrorResponse",
    "ErrorType",
    "OptionWeight",
]
