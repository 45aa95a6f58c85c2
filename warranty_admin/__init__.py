"""Admin service for extended-warranty definitions on a Shopify store."""

__version__ = "0.1.0"
