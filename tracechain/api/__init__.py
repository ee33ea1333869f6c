# -*- coding: utf-8 -*-
"""TraceChain REST API."""

from tracechain.api.router import router

__all__ = ["router"]
