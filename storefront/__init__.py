"""Storefront Promotions — promotes products from the test payment environment to production."""

__version__ = "0.1.0"
