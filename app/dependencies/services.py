"""
Service dependencies.

The lifespan handler in ``app.main`` builds one instance of each service onto
``app.state``; these accessors hand them to the routers (and let tests swap
them by assigning ``app.state`` directly).
"""
from fastapi import Request

from app.services.document_store import DocumentStore
from app.services.generation import DocumentGenerationService
from app.services.template_registry import TemplateRegistry


def get_registry(request: Request) -> TemplateRegistry:
    return request.app.state.registry


def get_document_store(request: Request) -> DocumentStore:
    return request.app.state.document_store


def get_generation_service(request: Request) -> DocumentGenerationService:
    return request.app.state.generation_service
