from .client import APIClient, APIError
from .schemas import CreateRunRequest, CreateRunResponse, RunStep

__all__ = ["APIClient", "APIError", "CreateRunRequest", "CreateRunResponse", "RunStep"]
