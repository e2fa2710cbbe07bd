"""Relay Shopify order customizations into ShipStation gift notes."""

__version__ = "0.3.0"
