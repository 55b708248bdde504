"""
Tests package - test suite for virt-api.

Contains:
- unit/: Unit tests for individual components, with the Kubernetes API mocked
"""
