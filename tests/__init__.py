"""
Tests package - test suite for the admission proxy operator.

Contains:
- unit/: Unit tests for individual components
- fixtures/: Test certificates
"""
