"""Storefront checkout service: cart, checkout and order pipeline."""
