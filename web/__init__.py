"""Flask API for the bicycle storefront."""
