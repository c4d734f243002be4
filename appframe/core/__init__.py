"""
Core Module
============

Shared core utilities and abstractions used across the framework.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from appframe.core.exceptions import (
    ApplicationException,
    ConfigurationException,
    ExternalServiceException,
    DependencyLoadException,
    DatabaseConnectionException,
    TemplateException,
    RequestTerminated,
    FatalErrorLoop,
)

__all__ = [
    "ApplicationException",
    "ConfigurationException",
    "ExternalServiceException",
    "DependencyLoadException",
    "DatabaseConnectionException",
    "TemplateException",
    "RequestTerminated",
    "FatalErrorLoop",
]
