"""
Handlers package - kopf event handlers for ProxyValidatingType resources.

Importing the modules of this package registers their handlers with kopf.
"""
