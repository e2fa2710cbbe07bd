"""Durable order queue: record model and Postgres store."""
