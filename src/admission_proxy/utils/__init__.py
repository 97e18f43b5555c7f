"""
Utils package - helpers for the admission proxy.

Contains helper modules for:
- Kubernetes client loading and API error translation
- Secondary webhook endpoint configuration
- Calling secondary webhooks
"""
