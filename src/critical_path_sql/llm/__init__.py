"""
LLM Module
==========

Model gateway interfaces and clients.
"""

from critical_path_sql.llm.base import ModelGateway, call_gateway
from critical_path_sql.llm.http_gateway import HTTPModelGateway
from critical_path_sql.llm.mock import MockGateway

__all__ = [
    "ModelGateway",
    "call_gateway",
    "HTTPModelGateway",
    "MockGateway",
]
