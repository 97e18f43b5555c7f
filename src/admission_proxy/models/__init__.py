"""
Models package - Pydantic models for type-safe resource handling.

Defines data models for:
- ProxyValidatingType specifications and matching rules
- Secondary webhook endpoint configuration
- The AdmissionReview wire format
"""
