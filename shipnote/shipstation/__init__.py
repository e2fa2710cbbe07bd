"""ShipStation REST client and package selection."""
