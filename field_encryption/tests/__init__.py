"""
Test package for the field encryption framework.

This package contains tests for:
- Cipher backends and the legacy scheme
- Option resolution
- The field transform engine
- Django model integration
"""
