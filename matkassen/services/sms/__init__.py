"""Outgoing SMS: gateways, templates and the delivery pipeline."""
