"""Webhook inbound system.

Receives Shopify orders/create webhooks, verifies the HMAC signature,
formats customer customizations into a gift note, and queues the order
for the reconciliation worker. No ShipStation call happens on ingest.
"""
