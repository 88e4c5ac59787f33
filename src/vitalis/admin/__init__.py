"""Vitalis Admin Module - Cache and session maintenance."""

from vitalis.admin.router import router

__all__ = ["router"]
